"""聊天机器人 Webhook 通知渠道"""

import asyncio
import json
from typing import Dict, Any
from urllib.parse import urlparse

import aiohttp

from .base import BaseNotifier, register_notifier
from ..models.health_check import NotificationEvent
from ..utils.exceptions import NotificationConfigError, NotificationSendError
from ..utils.log_manager import get_logger


@register_notifier('webhook')
class WebhookNotifier(BaseNotifier):
    """通过 HTTP POST JSON 推送通知，兼容钉钉/飞书/Slack 等机器人"""

    def __init__(self, name: str, config: Dict[str, Any]):
        super().__init__(name, config)
        self.logger = get_logger(f'notifier.webhook.{self.name}')

        self.url = config.get('url', '')
        self.headers = config.get('headers', {})
        self.template = config.get('template', '')
        self.ssl_verify = config.get('ssl_verify', True)

        self.max_retries = config.get('max_retries', 1)
        self.retry_delay = config.get('retry_delay', 0.5)
        self.retry_backoff = config.get('retry_backoff', 2.0)

        if not self.validate_config():
            raise NotificationConfigError(f"Webhook通知渠道配置无效: {name}", notifier_name=name)

    def validate_config(self) -> bool:
        if not self.url:
            self.logger.error(f"Webhook通知渠道 {self.name} 缺少URL配置")
            return False

        parsed_url = urlparse(self.url)
        if parsed_url.scheme not in ('http', 'https') or not parsed_url.netloc:
            self.logger.error(f"Webhook通知渠道 {self.name} URL格式无效: {self.url}")
            return False

        if self.max_retries < 0 or self.retry_delay < 0:
            self.logger.error(f"Webhook通知渠道 {self.name} 重试配置不能为负数")
            return False

        if self.template and not self.template.strip():
            self.logger.error(f"Webhook通知渠道 {self.name} 模板不能为空")
            return False

        return True

    async def send(self, event: NotificationEvent) -> bool:
        """
        推送通知，失败时按退避重试

        Raises:
            NotificationSendError: 所有尝试均失败
        """
        payload = self.build_payload(event)
        last_error = None

        for attempt in range(self.max_retries + 1):
            try:
                if await self._post(payload):
                    return True
                last_error = "接收方返回失败"
            except NotificationSendError as e:
                last_error = e.message

            self.logger.warning(
                f"Webhook通知渠道 {self.name} 发送失败 "
                f"(尝试 {attempt + 1}/{self.max_retries + 1}): {last_error}")
            if attempt < self.max_retries:
                await asyncio.sleep(self.retry_delay * (self.retry_backoff ** attempt))

        raise NotificationSendError(f"Webhook通知发送失败: {last_error}", notifier_name=self.name)

    async def _post(self, payload: Dict[str, Any]) -> bool:
        timeout = aiohttp.ClientTimeout(total=self.get_timeout())
        connector = aiohttp.TCPConnector(ssl=bool(self.ssl_verify))

        try:
            async with aiohttp.ClientSession(timeout=timeout, connector=connector) as session:
                async with session.post(self.url, json=payload, headers=self.headers) as response:
                    response_text = await response.text(errors='replace')
                    if not 200 <= response.status < 300:
                        self.logger.warning(
                            f"Webhook通知渠道 {self.name} 收到错误响应 "
                            f"(状态码: {response.status}, 响应: {response_text[:200]})")
                        return False

                    # 钉钉机器人在200响应中用 errcode 表示失败
                    try:
                        body = json.loads(response_text)
                    except ValueError:
                        return True
                    if isinstance(body, dict) and body.get('errcode', 0) != 0:
                        self.logger.error(
                            f"Webhook通知渠道 {self.name} 机器人返回错误: "
                            f"errcode={body.get('errcode')}, errmsg={body.get('errmsg')}")
                        return False
                    return True

        except aiohttp.ClientError as e:
            raise NotificationSendError(f"HTTP请求失败: {e}", notifier_name=self.name)
        except asyncio.TimeoutError:
            raise NotificationSendError("HTTP请求超时", notifier_name=self.name)

    def build_payload(self, event: NotificationEvent) -> Dict[str, Any]:
        """构建推送负载：配置了模板时渲染模板，否则使用默认 JSON 结构"""
        if not self.template:
            return event.to_payload()

        variables = {
            key: json.dumps(value, ensure_ascii=False)[1:-1]
            for key, value in event.template_vars().items()
        }
        rendered = self.template
        for key, value in variables.items():
            rendered = rendered.replace(f'{{{{{key}}}}}', value)

        try:
            return json.loads(rendered)
        except ValueError as e:
            raise NotificationSendError(f"渲染后的JSON格式无效: {e}", notifier_name=self.name)
