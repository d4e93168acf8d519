# app/notifications/__init__.py
# 通知层：文案、卡片渲染、多渠道分发

from app.notifications.dispatcher import (
    NotificationDispatcher,
    NotificationTarget,
    DeliveryAttempt,
    DeliveryReport,
    notification_dispatcher,
    resolve_recipients,
)
from app.notifications.renderer import CardRenderer, card_renderer

__all__ = [
    "NotificationDispatcher",
    "NotificationTarget",
    "DeliveryAttempt",
    "DeliveryReport",
    "notification_dispatcher",
    "resolve_recipients",
    "CardRenderer",
    "card_renderer",
]
