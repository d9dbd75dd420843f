"""
עזרי בדיקה משותפים: חתימת body ו-payloads של Instagram.
"""
import hashlib
import hmac
from typing import Any

from inbox.core.config import settings


def sign_body(body: bytes, secret: str | None = None) -> str:
    """כותרת X-Hub-Signature-256 תקינה עבור body"""
    secret = settings.INSTAGRAM_APP_SECRET if secret is None else secret
    return "sha256=" + hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


def comment_payload(
    page_id: str,
    comment_id: str = "C123",
    text: str | None = "כמה זה עולה?",
    sender_id: str = "user-1",
    username: str | None = "customer_one",
    field: str = "comments",
) -> dict:
    sender = {"id": sender_id}
    if username:
        sender["username"] = username
    value: dict[str, Any] = {
        "id": comment_id,
        "from": sender,
        "media": {"id": "media-1"},
    }
    if text is not None:
        value["text"] = text
    return {
        "object": "instagram",
        "entry": [
            {
                "id": page_id,
                "time": 1700000000,
                "changes": [{"field": field, "value": value}],
            }
        ],
    }


def dm_payload(
    page_id: str,
    recipient_id: str,
    sender_id: str = "user-1",
    mid: str = "m_1",
    text: str | None = "שלום",
    is_echo: bool = False,
    attachments: list[dict] | None = None,
) -> dict:
    message: dict[str, Any] = {"mid": mid}
    if text is not None:
        message["text"] = text
    if is_echo:
        message["is_echo"] = True
    if attachments:
        message["attachments"] = attachments
    return {
        "object": "instagram",
        "entry": [
            {
                "id": page_id,
                "time": 1700000000,
                "messaging": [
                    {
                        "sender": {"id": sender_id},
                        "recipient": {"id": recipient_id},
                        "timestamp": 1700000000,
                        "message": message,
                    }
                ],
            }
        ],
    }
