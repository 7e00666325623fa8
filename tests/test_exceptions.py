"""异常类测试"""

from datetime import datetime

from health_orchestrator.utils.exceptions import (
    OrchestratorError, ErrorCode, ConfigError, ProbeError, CommandError, RecoveryActionError,
    NotificationConfigError, NotificationSendError, PrecheckError, DeploymentPhaseError,
    DeploymentInProgressError, RollbackError
)


class TestErrorCode:
    """错误代码测试"""

    def test_error_code_values(self):
        assert ErrorCode.UNKNOWN_ERROR.value == 1000
        assert ErrorCode.CONFIG_FILE_NOT_FOUND.value == 2000
        assert ErrorCode.COMMAND_TIMEOUT.value == 4001
        assert ErrorCode.ROLLBACK_FAILED.value == 7004


class TestOrchestratorError:
    """基础异常测试"""

    def test_basic_error_creation(self):
        error = OrchestratorError("测试错误")

        assert str(error) == "测试错误"
        assert error.message == "测试错误"
        assert error.error_code == ErrorCode.UNKNOWN_ERROR
        assert error.details == {}
        assert error.cause is None
        assert error.recoverable is True
        assert isinstance(error.timestamp, datetime)

    def test_to_dict(self):
        cause = ValueError("原始错误")
        error = OrchestratorError("包装错误", ErrorCode.VALIDATION_ERROR,
                                  details={'key': 'value'}, cause=cause)

        data = error.to_dict()

        assert data['error_code'] == 1002
        assert data['error_name'] == 'VALIDATION_ERROR'
        assert data['details'] == {'key': 'value'}
        assert data['cause'] == '原始错误'

    def test_format_error(self):
        error = OrchestratorError("失败", ErrorCode.TIMEOUT_ERROR, details={'timeout': 5},
                                  cause=TimeoutError("slow"))

        assert error.format_error() == "[TIMEOUT_ERROR] 失败 (详情: timeout=5) (原因: slow)"


class TestSpecificErrors:
    """具体异常测试"""

    def test_config_error(self):
        error = ConfigError("配置错误", config_path='/etc/app.yaml')

        assert error.error_code == ErrorCode.CONFIG_VALIDATION_ERROR
        assert error.details['config_path'] == '/etc/app.yaml'
        assert error.recoverable is False

    def test_probe_error(self):
        error = ProbeError("地址无效", service_name='api')

        assert error.details['service_name'] == 'api'
        assert error.recoverable is False

    def test_command_error(self):
        error = CommandError("失败", command='systemctl restart api', exit_code=1,
                             stderr='x' * 1000)

        assert error.exit_code == 1
        assert len(error.details['stderr']) == 500

    def test_recovery_action_error(self):
        error = RecoveryActionError("失败", action_kind='webhook', service_name='api')

        assert error.error_code == ErrorCode.RECOVERY_ACTION_FAILED
        assert error.details == {'action_kind': 'webhook', 'service_name': 'api'}

    def test_notification_errors(self):
        assert NotificationConfigError("x", notifier_name='bot').recoverable is False
        send_error = NotificationSendError("x", notifier_name='bot')
        assert send_error.recoverable is True
        assert send_error.details['notifier_name'] == 'bot'

    def test_deployment_errors(self):
        precheck = PrecheckError("失败", failures=['磁盘'], service_name='api')
        assert precheck.failures == ['磁盘']
        assert precheck.phase == 'prechecking'
        assert precheck.details['service_name'] == 'api'

        phase_error = DeploymentPhaseError("失败", phase='verifying')
        assert phase_error.error_code == ErrorCode.PHASE_FAILED
        assert phase_error.phase == 'verifying'

        in_progress = DeploymentInProgressError('api')
        assert 'api' in in_progress.message
        assert in_progress.recoverable is False

        assert RollbackError("失败").error_code == ErrorCode.ROLLBACK_FAILED
