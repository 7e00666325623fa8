"""通知模块"""

from .base import BaseNotifier, create_notifier, register_notifier, supported_notifier_types
from .dispatcher import NotificationDispatcher
from .email_notifier import EmailNotifier
from .webhook_notifier import WebhookNotifier

__all__ = [
    'BaseNotifier',
    'NotificationDispatcher',
    'EmailNotifier',
    'WebhookNotifier',
    'create_notifier',
    'register_notifier',
    'supported_notifier_types'
]
