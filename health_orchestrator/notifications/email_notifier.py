"""邮件通知渠道"""

import asyncio
import re
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formataddr
from typing import Dict, Any

import aiosmtplib

from .base import BaseNotifier, register_notifier
from ..models.health_check import NotificationEvent
from ..utils.exceptions import NotificationConfigError, NotificationSendError
from ..utils.log_manager import get_logger

EMAIL_PATTERN = re.compile(r'^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$')

DEFAULT_SUBJECT_TEMPLATE = '[{{severity}}] {{service_name}} - {{status}}'

DEFAULT_BODY_TEMPLATE = """服务健康与部署编排通知

事件类型: {{event_type}}
服务名称: {{service_name}}
当前状态: {{status}}
严重程度: {{severity}}
连续失败次数: {{consecutive_failures}}
发生时间: {{timestamp}}
响应时间: {{response_time}}s
错误信息: {{error_message}}

---
此邮件由系统自动发送，请勿回复。
"""


@register_notifier('email')
class EmailNotifier(BaseNotifier):
    """通过SMTP提交邮件的通知渠道"""

    def __init__(self, name: str, config: Dict[str, Any]):
        super().__init__(name, config)
        self.logger = get_logger(f'notifier.email.{self.name}')

        # SMTP配置
        self.smtp_server = config.get('smtp_server', '')
        self.smtp_port = config.get('smtp_port', 587)
        self.username = config.get('username', '')
        self.password = config.get('password', '')
        self.use_tls = config.get('use_tls', False)
        self.start_tls = config.get('start_tls', True)

        # 邮件配置
        self.from_email = config.get('from_email', self.username)
        self.from_name = config.get('from_name', '健康监控与部署编排')
        self.to_emails = list(config.get('to_emails', []))
        self.cc_emails = list(config.get('cc_emails', []))

        self.subject_template = config.get('subject_template', DEFAULT_SUBJECT_TEMPLATE)
        self.body_template = config.get('body_template', DEFAULT_BODY_TEMPLATE)

        self.max_retries = config.get('max_retries', 1)
        self.retry_delay = config.get('retry_delay', 0.5)

        if not self.validate_config():
            raise NotificationConfigError(f"邮件通知渠道配置无效: {name}", notifier_name=name)

    def validate_config(self) -> bool:
        if not self.smtp_server:
            self.logger.error(f"邮件通知渠道 {self.name} 缺少SMTP服务器配置")
            return False

        if not self.from_email:
            self.logger.error(f"邮件通知渠道 {self.name} 缺少发件人邮箱配置")
            return False

        if not self.to_emails:
            self.logger.error(f"邮件通知渠道 {self.name} 缺少收件人邮箱配置")
            return False

        for email in self.to_emails + self.cc_emails + [self.from_email]:
            if not EMAIL_PATTERN.match(email):
                self.logger.error(f"邮件通知渠道 {self.name} 邮箱格式无效: {email}")
                return False

        if not isinstance(self.smtp_port, int) or self.smtp_port <= 0:
            self.logger.error(f"邮件通知渠道 {self.name} SMTP端口无效: {self.smtp_port}")
            return False

        if self.use_tls and self.start_tls:
            self.logger.error(f"邮件通知渠道 {self.name} 不能同时启用 use_tls 和 start_tls")
            return False

        return True

    async def send(self, event: NotificationEvent) -> bool:
        """
        发送通知邮件，失败时按指数退避重试

        Raises:
            NotificationSendError: 所有尝试均失败
        """
        message = self.build_message(event)

        for attempt in range(self.max_retries + 1):
            try:
                await aiosmtplib.send(
                    message,
                    hostname=self.smtp_server,
                    port=self.smtp_port,
                    username=self.username or None,
                    password=self.password or None,
                    use_tls=self.use_tls,
                    start_tls=self.start_tls,
                    timeout=self.get_timeout()
                )
                self.logger.info(
                    f"邮件通知发送成功: {event.service_name} {event.status} -> "
                    f"{', '.join(self.to_emails)}")
                return True

            except (aiosmtplib.SMTPException, OSError, asyncio.TimeoutError) as e:
                self.logger.warning(
                    f"邮件通知渠道 {self.name} 发送失败 "
                    f"(尝试 {attempt + 1}/{self.max_retries + 1}): {e}")

                if attempt < self.max_retries:
                    await asyncio.sleep(self.retry_delay * (2 ** attempt))
                else:
                    raise NotificationSendError(f"SMTP发送失败: {e}", notifier_name=self.name)

        return False

    def build_message(self, event: NotificationEvent) -> MIMEMultipart:
        """构建邮件消息"""
        email_msg = MIMEMultipart()
        email_msg['From'] = formataddr((self.from_name, self.from_email))
        email_msg['To'] = ', '.join(self.to_emails)
        if self.cc_emails:
            email_msg['Cc'] = ', '.join(self.cc_emails)
        email_msg['Subject'] = self.render(self.subject_template, event)
        email_msg.attach(MIMEText(self.render(self.body_template, event), 'plain', 'utf-8'))
        return email_msg
