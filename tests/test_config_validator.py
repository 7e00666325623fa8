"""配置验证器测试"""

import pytest

from health_orchestrator.utils.config_validator import ConfigValidator
from health_orchestrator.utils.exceptions import ConfigError


class TestConfigValidator:
    """配置验证器测试类"""

    def test_valid_service_config(self):
        ConfigValidator.validate_service_config('api', {
            'health_check_url': 'https://api.example.com/health',
            'timeout': 5,
            'max_response_time': 1.5,
            'alert_threshold': 3,
            'max_recovery_attempts_before_alert': 2,
            'recovery_actions': []
        })

    @pytest.mark.parametrize('config', [
        'not a dict',
        {},
        {'health_check_url': 'api.example.com/health'},
        {'health_check_url': 'http://api/health', 'timeout': 0},
        {'health_check_url': 'http://api/health', 'max_response_time': -1},
        {'health_check_url': 'http://api/health', 'alert_threshold': 0},
        {'health_check_url': 'http://api/health', 'alert_threshold': 2.5},
        {'health_check_url': 'http://api/health', 'max_recovery_attempts_before_alert': 0},
        {'health_check_url': 'http://api/health', 'recovery_actions': {'type': 'x'}},
    ])
    def test_invalid_service_config(self, config):
        with pytest.raises(ConfigError):
            ConfigValidator.validate_service_config('api', config)

    def test_notification_config(self):
        ConfigValidator.validate_notification_config({'name': 'bot', 'type': 'webhook'})

        with pytest.raises(ConfigError, match="type"):
            ConfigValidator.validate_notification_config({'name': 'bot'})
        with pytest.raises(ConfigError, match="enabled"):
            ConfigValidator.validate_notification_config(
                {'name': 'bot', 'type': 'webhook', 'enabled': 'no'})

    def test_deployment_config(self):
        ConfigValidator.validate_deployment_config('api', {
            'max_disk_percent': 85,
            'dependencies': [{'type': 'tcp', 'host': 'db', 'port': 5432}],
            'verification_checks': [],
            'config_files': ['/etc/api.yaml']
        })

    @pytest.mark.parametrize('config', [
        {'max_disk_percent': 0},
        {'max_memory_percent': 120},
        {'dependencies': {'type': 'tcp'}},
        {'dependencies': [{'host': 'db'}]},
        {'config_files': '/etc/api.yaml'},
    ])
    def test_invalid_deployment_config(self, config):
        with pytest.raises(ConfigError):
            ConfigValidator.validate_deployment_config('api', config)

    def test_global_config(self):
        ConfigValidator.validate_global_config({
            'check_interval': 30, 'max_concurrent_checks': 5,
            'notification_timeout': 2.5, 'log_level': 'WARNING',
            'log_component_levels': {'deployment': 'debug'}
        })

    @pytest.mark.parametrize('config', [
        {'check_interval': 0},
        {'notification_timeout': -1},
        {'max_concurrent_checks': 0},
        {'log_level': 'VERBOSE'},
        {'log_component_levels': ['deployment']},
        {'log_component_levels': {'probe': 'LOUD'}},
    ])
    def test_invalid_global_config(self, config):
        with pytest.raises(ConfigError):
            ConfigValidator.validate_global_config(config)
