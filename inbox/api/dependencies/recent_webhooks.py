"""
גישה ל-buffer של המשלוחים האחרונים.

ה-buffer נוצר ב-main ונשמר ב-app.state; אין מופע ברמת המודול.
"""
from fastapi import Request

from inbox.domain.services.recent_webhooks import RecentWebhookBuffer


def get_recent_webhooks(request: Request) -> RecentWebhookBuffer:
    return request.app.state.recent_webhooks


def find_recent_webhooks(request: Request) -> RecentWebhookBuffer | None:
    """כמו get_recent_webhooks, אבל None כשהאפליקציה לא אתחלה buffer"""
    return getattr(request.app.state, "recent_webhooks", None)
