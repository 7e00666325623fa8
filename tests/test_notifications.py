"""通知渠道与分发器测试"""

import asyncio
import aiohttp
import aiosmtplib
import pytest
from datetime import datetime
from unittest.mock import AsyncMock, patch

from health_orchestrator.models.health_check import NotificationEvent, EventType, Severity
from health_orchestrator.notifications import (
    BaseNotifier, EmailNotifier, NotificationDispatcher, WebhookNotifier, create_notifier,
    supported_notifier_types
)
from health_orchestrator.utils.exceptions import NotificationConfigError, NotificationSendError

WEBHOOK_SESSION_PATH = 'health_orchestrator.notifications.webhook_notifier.aiohttp.ClientSession'


def make_event(**kwargs) -> NotificationEvent:
    defaults = dict(
        event_type=EventType.ALERT,
        service_name='api',
        status='DOWN',
        severity=Severity.CRITICAL,
        error_message='连接被拒绝',
        consecutive_failures=3,
        response_time=0.5,
        timestamp=datetime(2024, 1, 1, 12, 0, 0)
    )
    defaults.update(kwargs)
    return NotificationEvent(**defaults)


class RecordingNotifier(BaseNotifier):
    """记录收到事件的通知渠道"""

    def __init__(self, name: str, delay: float = 0, error: Exception = None,
                 result: bool = True):
        super().__init__(name, {})
        self.delay = delay
        self.error = error
        self.result = result
        self.events = []

    async def send(self, event: NotificationEvent) -> bool:
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        self.events.append(event)
        return self.result

    def validate_config(self) -> bool:
        return True


class TestNotifierRegistry:
    """通知渠道注册测试"""

    def test_supported_types(self):
        assert supported_notifier_types() == ['email', 'webhook']

    def test_create_webhook(self):
        notifier = create_notifier({'name': 'bot', 'type': 'webhook',
                                    'url': 'https://hooks.example.com/x'})

        assert isinstance(notifier, WebhookNotifier)
        assert notifier.name == 'bot'
        assert notifier.notifier_type == 'webhook'

    def test_create_unknown_type(self):
        with pytest.raises(NotificationConfigError, match="不支持的通知渠道类型"):
            create_notifier({'name': 'sms', 'type': 'aliyun_sms'})


class TestEmailNotifier:
    """邮件通知渠道测试"""

    def setup_method(self):
        self.config = {
            'smtp_server': 'smtp.example.com',
            'smtp_port': 465,
            'use_tls': True,
            'start_tls': False,
            'username': 'alert@example.com',
            'password': 'secret',
            'from_email': 'alert@example.com',
            'to_emails': ['ops@example.com'],
            'retry_delay': 0
        }

    def test_invalid_config(self):
        """测试无效配置"""
        for override in ({'smtp_server': ''}, {'to_emails': []},
                         {'to_emails': ['not-an-email']}, {'start_tls': True},
                         {'smtp_port': 0}):
            with pytest.raises(NotificationConfigError):
                EmailNotifier('mail', {**self.config, **override})

    def test_build_message(self):
        notifier = EmailNotifier('mail', self.config)

        message = notifier.build_message(make_event())

        assert message['Subject'] == '[critical] api - DOWN'
        assert message['To'] == 'ops@example.com'
        body = message.get_payload()[0].get_payload(decode=True).decode('utf-8')
        assert '连续失败次数: 3' in body
        assert '连接被拒绝' in body

    def test_custom_templates(self):
        config = {**self.config, 'subject_template': '{{title}}',
                  'body_template': '{{service_name}}/{{metadata_phase}}'}
        notifier = EmailNotifier('mail', config)

        message = notifier.build_message(make_event(
            event_type=EventType.DEPLOYMENT_PHASE, status='deploying', title='部署中',
            metadata={'phase': 'deploying'}))

        assert message['Subject'] == '部署中'
        assert message.get_payload()[0].get_payload(decode=True).decode('utf-8') == \
            'api/deploying'

    @pytest.mark.asyncio
    @patch('health_orchestrator.notifications.email_notifier.aiosmtplib.send',
           new_callable=AsyncMock)
    async def test_send_success(self, mock_send):
        notifier = EmailNotifier('mail', self.config)

        assert await notifier.send(make_event()) is True

        mock_send.assert_called_once()
        kwargs = mock_send.call_args.kwargs
        assert kwargs['hostname'] == 'smtp.example.com'
        assert kwargs['port'] == 465
        assert kwargs['use_tls'] is True

    @pytest.mark.asyncio
    @patch('health_orchestrator.notifications.email_notifier.aiosmtplib.send',
           new_callable=AsyncMock)
    async def test_send_retries_then_raises(self, mock_send):
        mock_send.side_effect = aiosmtplib.SMTPException('rejected')
        notifier = EmailNotifier('mail', {**self.config, 'max_retries': 2})

        with pytest.raises(NotificationSendError):
            await notifier.send(make_event())

        assert mock_send.call_count == 3


class TestWebhookNotifier:
    """Webhook通知渠道测试"""

    def setup_method(self):
        self.config = {'url': 'https://oapi.dingtalk.com/robot/send?access_token=x',
                       'retry_delay': 0}

    def test_invalid_url(self):
        with pytest.raises(NotificationConfigError):
            WebhookNotifier('bot', {'url': 'not a url'})
        with pytest.raises(NotificationConfigError):
            WebhookNotifier('bot', {})

    def test_default_payload(self):
        notifier = WebhookNotifier('bot', self.config)

        payload = notifier.build_payload(make_event())

        assert payload['service_name'] == 'api'
        assert payload['color'] == Severity.CRITICAL.color

    def test_template_payload_escapes_values(self):
        """测试模板变量按JSON转义"""
        template = '{"msgtype": "text", "text": {"content": "{{service_name}}: {{error_message}}"}}'
        notifier = WebhookNotifier('bot', {**self.config, 'template': template})

        payload = notifier.build_payload(make_event(error_message='bad "quote"\nline'))

        assert payload['text']['content'] == 'api: bad "quote"\nline'

    def test_template_invalid_json(self):
        notifier = WebhookNotifier('bot', {**self.config, 'template': '{"a": {{status}}}'})

        with pytest.raises(NotificationSendError):
            notifier.build_payload(make_event())

    @pytest.mark.asyncio
    async def test_send_success(self, http_session):
        session_ctx = http_session(200, '{"errcode": 0, "errmsg": "ok"}')
        notifier = WebhookNotifier('bot', self.config)

        with patch(WEBHOOK_SESSION_PATH, return_value=session_ctx):
            assert await notifier.send(make_event()) is True

        session_ctx.session.post.assert_called_once()

    @pytest.mark.asyncio
    async def test_send_robot_errcode(self, http_session):
        """测试机器人在200响应中返回错误码"""
        notifier = WebhookNotifier('bot', {**self.config, 'max_retries': 0})

        with patch(WEBHOOK_SESSION_PATH,
                   return_value=http_session(200, '{"errcode": 310000, "errmsg": "sign"}')):
            with pytest.raises(NotificationSendError):
                await notifier.send(make_event())

    @pytest.mark.asyncio
    async def test_send_retries_on_client_error(self, http_session):
        notifier = WebhookNotifier('bot', {**self.config, 'max_retries': 1})
        failing = http_session(error=aiohttp.ClientConnectionError('refused'))
        succeeding = http_session(200, 'ok')

        with patch(WEBHOOK_SESSION_PATH, side_effect=[failing, succeeding]):
            assert await notifier.send(make_event()) is True


class TestNotificationDispatcher:
    """通知分发器测试"""

    @pytest.mark.asyncio
    async def test_fan_out(self):
        first, second = RecordingNotifier('first'), RecordingNotifier('second')
        dispatcher = NotificationDispatcher([first, second])
        event = make_event()

        results = await dispatcher.notify(event)

        assert first.events == [event]
        assert second.events == [event]
        assert all(r['success'] for r in results)
        assert dispatcher.stats['deliveries'] == 2

    @pytest.mark.asyncio
    async def test_failing_sink_isolated(self):
        """测试单个渠道失败不影响其他渠道"""
        broken = RecordingNotifier('broken', error=NotificationSendError("HTTP 500"))
        healthy = RecordingNotifier('healthy')
        dispatcher = NotificationDispatcher([broken, healthy])

        results = await dispatcher.notify(make_event())

        assert results[0] == {'notifier': 'broken', 'success': False, 'error': 'HTTP 500'}
        assert results[1]['success'] is True
        assert len(healthy.events) == 1
        assert dispatcher.stats['failures'] == 1

    @pytest.mark.asyncio
    async def test_slow_sink_times_out(self):
        """测试慢渠道超时不阻塞调用方"""
        slow = RecordingNotifier('slow', delay=5)
        fast = RecordingNotifier('fast')
        dispatcher = NotificationDispatcher([slow, fast], sink_timeout=0.05)

        results = await asyncio.wait_for(dispatcher.notify(make_event()), timeout=1)

        assert results[0] == {'notifier': 'slow', 'success': False, 'error': 'timeout'}
        assert results[1]['success'] is True
        assert dispatcher.stats['timeouts'] == 1

    @pytest.mark.asyncio
    async def test_unexpected_exception_contained(self):
        dispatcher = NotificationDispatcher([RecordingNotifier('odd', error=RuntimeError('x'))])

        results = await dispatcher.notify(make_event())

        assert results[0]['success'] is False

    @pytest.mark.asyncio
    async def test_no_notifiers(self):
        dispatcher = NotificationDispatcher()

        assert await dispatcher.notify(make_event()) == []
        assert dispatcher.stats['events'] == 1
        assert len(dispatcher.history) == 1

    def test_add_and_remove(self):
        dispatcher = NotificationDispatcher()
        dispatcher.add_notifier(RecordingNotifier('one'))

        with pytest.raises(NotificationConfigError):
            dispatcher.add_notifier(object())

        assert dispatcher.get_notifier_names() == ['one']
        assert dispatcher.remove_notifier('one') is True
        assert dispatcher.remove_notifier('one') is False

    def test_from_config(self):
        dispatcher = NotificationDispatcher.from_config(
            [{'name': 'bot', 'type': 'webhook', 'url': 'https://hooks.example.com/x'}],
            sink_timeout=3)

        assert dispatcher.sink_timeout == 3
        assert dispatcher.get_stats()['notifier_names'] == ['bot']
