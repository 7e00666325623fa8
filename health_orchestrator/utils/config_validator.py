"""配置验证工具"""

from typing import Dict, Any

from .exceptions import ConfigError


class ConfigValidator:
    """配置验证器"""

    @staticmethod
    def validate_service_config(service_name: str, config: Dict[str, Any]) -> None:
        """
        验证被监控服务的配置

        Args:
            service_name: 服务名称
            config: 服务配置

        Raises:
            ConfigError: 配置验证失败
        """
        if not isinstance(config, dict):
            raise ConfigError(f"服务 '{service_name}' 的配置必须是字典类型")

        url = config.get('health_check_url') or config.get('url')
        if not url:
            raise ConfigError(f"服务 '{service_name}' 缺少必需的配置项: health_check_url")
        if not isinstance(url, str) or not url.startswith(('http://', 'https://')):
            raise ConfigError(f"服务 '{service_name}' 的健康检查地址必须以 http:// 或 https:// 开头")

        for key in ('timeout', 'max_response_time'):
            value = config.get(key)
            if value is not None and (not isinstance(value, (int, float)) or value <= 0):
                raise ConfigError(f"服务 '{service_name}' 的 {key} 必须是正数")

        threshold = config.get('alert_threshold')
        if threshold is not None and (not isinstance(threshold, int) or threshold < 1):
            raise ConfigError(f"服务 '{service_name}' 的 alert_threshold 必须是正整数")

        limit = config.get('max_recovery_attempts_before_alert')
        if limit is not None and (not isinstance(limit, int) or limit < 1):
            raise ConfigError(
                f"服务 '{service_name}' 的 max_recovery_attempts_before_alert 必须是正整数")

        actions = config.get('recovery_actions')
        if actions is not None and not isinstance(actions, list):
            raise ConfigError(f"服务 '{service_name}' 的 recovery_actions 必须是列表类型")

    @staticmethod
    def validate_notification_config(notification_config: Dict[str, Any]) -> None:
        """
        验证通知渠道配置

        Args:
            notification_config: 通知渠道配置

        Raises:
            ConfigError: 配置验证失败
        """
        if not isinstance(notification_config, dict):
            raise ConfigError("通知渠道配置必须是字典类型")

        required_fields = ['name', 'type']
        for field in required_fields:
            if field not in notification_config:
                raise ConfigError(f"通知渠道配置缺少必需的配置项: {field}")

        if notification_config.get('enabled') is not None and \
                not isinstance(notification_config['enabled'], bool):
            raise ConfigError(f"通知渠道 '{notification_config['name']}' 的 enabled 必须是布尔值")

    @staticmethod
    def validate_deployment_config(service_name: str, config: Dict[str, Any]) -> None:
        """
        验证部署配置的结构（字段取值由 DeploymentSpec.from_config 校验）

        Raises:
            ConfigError: 配置验证失败
        """
        if not isinstance(config, dict):
            raise ConfigError(f"服务 '{service_name}' 的部署配置必须是字典类型")

        for key in ('max_disk_percent', 'max_memory_percent'):
            value = config.get(key)
            if value is not None and (not isinstance(value, (int, float)) or not 0 < value <= 100):
                raise ConfigError(f"服务 '{service_name}' 的 {key} 必须在 (0, 100] 范围内")

        for key in ('dependencies', 'verification_checks', 'config_files'):
            value = config.get(key)
            if value is not None and not isinstance(value, list):
                raise ConfigError(f"服务 '{service_name}' 的 {key} 必须是列表类型")

        for dependency in config.get('dependencies') or []:
            if not isinstance(dependency, dict) or 'type' not in dependency:
                raise ConfigError(f"服务 '{service_name}' 的依赖检查项必须是包含 type 的字典")

    @staticmethod
    def validate_global_config(global_config: Dict[str, Any]) -> None:
        """
        验证全局配置

        Args:
            global_config: 全局配置

        Raises:
            ConfigError: 配置验证失败
        """
        if not isinstance(global_config, dict):
            raise ConfigError("全局配置必须是字典类型")

        for key in ('check_interval', 'notification_timeout'):
            value = global_config.get(key)
            if value is not None and (not isinstance(value, (int, float)) or value <= 0):
                raise ConfigError(f"{key} 必须是正数")

        max_concurrent = global_config.get('max_concurrent_checks')
        if max_concurrent is not None:
            if not isinstance(max_concurrent, int) or max_concurrent < 1:
                raise ConfigError("max_concurrent_checks 必须是正整数")

        # 验证日志级别
        valid_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
        log_level = global_config.get('log_level')
        if log_level is not None:
            if log_level not in valid_levels:
                raise ConfigError(f"log_level 必须是以下值之一: {valid_levels}")

        component_levels = global_config.get('log_component_levels')
        if component_levels is not None:
            if not isinstance(component_levels, dict):
                raise ConfigError("log_component_levels 必须是字典类型")
            for component, level in component_levels.items():
                if str(level).upper() not in valid_levels:
                    raise ConfigError(
                        f"组件 '{component}' 的日志级别必须是以下值之一: {valid_levels}")
