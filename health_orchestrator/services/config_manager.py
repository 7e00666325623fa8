"""配置管理器"""

import os
import yaml
from typing import Dict, Any, List, Optional

from ..models.deployment import DeploymentSpec
from ..models.health_check import ServiceSpec
from ..notifications.base import BaseNotifier, create_notifier
from ..utils.exceptions import ConfigError, ErrorCode, NotificationConfigError
from ..utils.config_validator import ConfigValidator
from ..utils.log_manager import get_logger

DEFAULT_GLOBAL_CONFIG = {
    'check_interval': 60,
    'max_concurrent_checks': 10,
    'notification_timeout': 5,
    'log_level': 'INFO',
}


class ConfigManager:
    """配置管理器，负责YAML配置文件的加载、解析和验证

    配置只在进程启动时加载一次，由此构建的 ServiceSpec / DeploymentSpec 均为只读对象。
    """

    def __init__(self, config_path: str):
        """
        初始化配置管理器

        Args:
            config_path: 配置文件路径
        """
        self.config_path = config_path
        self.config: Dict[str, Any] = {}
        self.logger = get_logger('config_manager')

    def load_config(self) -> Dict[str, Any]:
        """
        加载YAML配置文件

        Returns:
            Dict[str, Any]: 配置字典

        Raises:
            ConfigError: 配置加载或验证失败
        """
        self.logger.info(f"开始加载配置文件: {self.config_path}")

        try:
            if not os.path.exists(self.config_path):
                raise ConfigError(f"配置文件不存在: {self.config_path}",
                                  ErrorCode.CONFIG_FILE_NOT_FOUND, config_path=self.config_path)

            with open(self.config_path, 'r', encoding='utf-8') as file:
                config = yaml.safe_load(file)

            if config is None:
                raise ConfigError("配置文件为空", config_path=self.config_path)

            self.logger.debug("开始验证配置文件内容")
            self._validate_config(config)

            self.config = config
            self.logger.info(
                f"配置验证成功，包含 {len(config.get('services') or {})} 个服务、"
                f"{len(config.get('notifications') or [])} 个通知渠道和 "
                f"{len(config.get('deployments') or {})} 个部署配置")
            return self.config

        except ConfigError as e:
            self.logger.error(e.message)
            raise
        except yaml.YAMLError as e:
            self.logger.error(f"YAML格式错误: {e}")
            raise ConfigError(f"YAML格式错误: {e}", ErrorCode.CONFIG_PARSE_ERROR,
                              config_path=self.config_path, cause=e)
        except PermissionError as e:
            self.logger.error(f"没有权限读取配置文件: {self.config_path}")
            raise ConfigError(f"没有权限读取配置文件: {self.config_path}",
                              config_path=self.config_path, cause=e)
        except OSError as e:
            self.logger.error(f"读取配置文件失败: {e}")
            raise ConfigError(f"读取配置文件失败: {e}", config_path=self.config_path, cause=e)

    def _validate_config(self, config: Dict[str, Any]) -> None:
        """
        验证配置文件内容

        Raises:
            ConfigError: 配置验证失败
        """
        if not isinstance(config, dict):
            raise ConfigError("配置文件根节点必须是字典类型")

        if 'global' in config:
            ConfigValidator.validate_global_config(config['global'])

        services = config.get('services')
        if services is not None:
            if not isinstance(services, dict):
                raise ConfigError("services配置必须是字典类型")
            for service_name, service_config in services.items():
                ConfigValidator.validate_service_config(service_name, service_config)

        notifications = config.get('notifications')
        if notifications is not None:
            if not isinstance(notifications, list):
                raise ConfigError("notifications配置必须是列表类型")
            for notification_config in notifications:
                ConfigValidator.validate_notification_config(notification_config)

        deployments = config.get('deployments')
        if deployments is not None:
            if not isinstance(deployments, dict):
                raise ConfigError("deployments配置必须是字典类型")
            for service_name, deployment_config in deployments.items():
                ConfigValidator.validate_deployment_config(service_name, deployment_config)

    def get_global_config(self) -> Dict[str, Any]:
        """获取全局配置（已合并默认值）"""
        return {**DEFAULT_GLOBAL_CONFIG, **(self.config.get('global') or {})}

    def get_services_config(self) -> Dict[str, Any]:
        return self.config.get('services') or {}

    def get_notifications_config(self) -> List[Dict[str, Any]]:
        return self.config.get('notifications') or []

    def get_deployments_config(self) -> Dict[str, Any]:
        return self.config.get('deployments') or {}

    def get_service_config(self, service_name: str) -> Optional[Dict[str, Any]]:
        """
        获取指定服务的配置

        Returns:
            Optional[Dict[str, Any]]: 服务配置，如果不存在返回None
        """
        return self.get_services_config().get(service_name)

    def get_log_config(self) -> Dict[str, Any]:
        """将全局配置中的日志相关项转换为 LogManager 配置"""
        global_config = self.get_global_config()
        log_config = {'log_level': global_config.get('log_level', 'INFO')}
        if global_config.get('log_file'):
            log_config['log_file'] = global_config['log_file']
        if global_config.get('max_log_size'):
            log_config['max_file_size'] = global_config['max_log_size']
        if global_config.get('log_backup_count'):
            log_config['backup_count'] = global_config['log_backup_count']
        if global_config.get('log_component_levels'):
            log_config['component_levels'] = global_config['log_component_levels']
        return log_config

    def build_service_specs(self) -> List[ServiceSpec]:
        """
        构建所有被监控服务的描述

        Raises:
            ConfigError: 恢复动作类型未知或参数无效
        """
        return [
            ServiceSpec.from_config(name, service_config)
            for name, service_config in self.get_services_config().items()
        ]

    def build_deployment_spec(self, service_name: str) -> DeploymentSpec:
        """
        构建指定服务的部署参数

        Raises:
            ConfigError: 服务没有部署配置或配置无效
        """
        deployment_config = self.get_deployments_config().get(service_name)
        if deployment_config is None:
            raise ConfigError(f"服务 '{service_name}' 没有部署配置")
        return DeploymentSpec.from_config(service_name, deployment_config)

    def build_notifiers(self) -> List[BaseNotifier]:
        """
        创建所有启用的通知渠道

        Raises:
            ConfigError: 通知渠道类型未知或配置无效
        """
        notifiers = []
        for notification_config in self.get_notifications_config():
            if not notification_config.get('enabled', True):
                self.logger.info(f"通知渠道 {notification_config['name']} 已禁用，跳过")
                continue
            try:
                notifiers.append(create_notifier(notification_config))
            except NotificationConfigError as e:
                raise ConfigError(f"通知渠道配置无效: {e.message}", cause=e)
        return notifiers
