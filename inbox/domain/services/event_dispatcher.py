"""
Event Dispatcher - פירוק payload מאומת של Instagram לאירועים מנורמלים.

מבנה ה-payload:
    {"object": "instagram",
     "entry": [{"id": <page id>,
                "changes": [{"field": "comments" | "mentions", "value": {...}}],
                "messaging": [{"sender": {...}, "recipient": {...}, "message": {...}}]}]}

כל אירוע מתויג ב-page id של ה-entry שהכיל אותו. טרנספורמציה טהורה:
ללא I/O וללא גישה ל-DB.
"""
from dataclasses import dataclass
from typing import Any

from inbox.core.exceptions import UnknownObjectTypeError
from inbox.core.logging import get_logger
from inbox.db.models.resolved_event import EventKind

logger = get_logger(__name__)

_CHANGE_FIELDS = {
    "comments": EventKind.COMMENT,
    "mentions": EventKind.MENTION,
}

# נרמול סוגי קבצים מצורפים לשמות אחידים
_MEDIA_TYPE_ALIASES = {
    "image": "image",
    "video": "video",
    "reel": "video",
    "ig_reel": "video",
    "audio": "audio",
    "animated_image": "gif",
    "gif": "gif",
    "story_mention": "story_mention",
    "sticker": "sticker",
    "share": "share",
}


@dataclass(frozen=True)
class SkippedItem:
    kind: EventKind
    external_id: str | None
    reason: str


@dataclass(frozen=True)
class Attachment:
    media_type: str
    url: str | None


@dataclass(frozen=True)
class InboundEvent:
    """אירוע בודד (תגובה / אזכור / הודעה ישירה) לפני זיהוי tenant"""

    kind: EventKind
    page_id: str
    external_id: str
    sender_id: str | None = None
    sender_username: str | None = None
    recipient_id: str | None = None
    text: str | None = None
    is_echo: bool = False
    parent_id: str | None = None
    post_id: str | None = None
    attachments: tuple[Attachment, ...] = ()

    @property
    def is_direct_message(self) -> bool:
        return self.kind == EventKind.DIRECT_MESSAGE

    @property
    def lookup_id(self) -> str | None:
        """
        המזהה שלפיו מחפשים tenant.

        תגובות ואזכורים: ה-page id של ה-entry.
        הודעות ישירות: ה-recipient, ובהודעת echo ה-sender (חשבון העסק הוא השולח).
        """
        if not self.is_direct_message:
            return self.page_id
        if self.is_echo:
            return self.sender_id or self.page_id
        return self.recipient_id or self.page_id

    @property
    def primary_media(self) -> Attachment | None:
        return self.attachments[0] if self.attachments else None


def _as_list(value: Any) -> list[Any]:
    return value if isinstance(value, list) else []


def _is_object_or_missing(*values: Any) -> bool:
    """ערכים מקוננים (from, media, sender...) חייבים להיות אובייקט JSON או חסרים"""
    return all(v is None or isinstance(v, dict) for v in values)


def normalize_attachment(raw: dict[str, Any]) -> Attachment:
    """
    נרמול קובץ מצורף: סוג אחיד + URL.

    story_mention מגיע לעיתים עם preview_url בלבד, share עם cover_url.
    """
    raw_type = str(raw.get("type") or "").lower()
    media_type = _MEDIA_TYPE_ALIASES.get(raw_type, raw_type or "unknown")
    payload = raw.get("payload")
    if not isinstance(payload, dict):
        payload = {}
    url = payload.get("url") or payload.get("preview_url") or payload.get("cover_url")
    return Attachment(media_type=media_type, url=url)


def _skip(
    skipped: list[SkippedItem] | None,
    kind: EventKind,
    page_id: str,
    external_id: str | None,
    reason: str,
) -> None:
    logger.info(
        "Skipping webhook item",
        extra_data={
            "page_id": page_id,
            "kind": kind.value,
            "external_id": external_id,
            "reason": reason,
        },
    )
    if skipped is not None:
        skipped.append(SkippedItem(kind, external_id, reason))


def _comment_event(
    kind: EventKind,
    page_id: str,
    value: Any,
    skipped: list[SkippedItem] | None = None,
) -> InboundEvent | None:
    if value is None:
        value = {}
    if not isinstance(value, dict):
        _skip(skipped, kind, page_id, None, "malformed")
        return None

    external_id = value.get("id") or value.get("comment_id")
    text = value.get("text")
    if not external_id:
        _skip(skipped, kind, page_id, None, "missing_id")
        return None

    sender = value.get("from")
    media = value.get("media")
    if not _is_object_or_missing(sender, media):
        _skip(skipped, kind, page_id, str(external_id), "malformed")
        return None
    # אזכור יכול להגיע בלי טקסט (אזכור בכיתוב של פוסט)
    if kind == EventKind.COMMENT and not text:
        _skip(skipped, kind, page_id, str(external_id), "missing_text")
        return None

    sender = sender or {}
    media = media or {}
    return InboundEvent(
        kind=kind,
        page_id=page_id,
        external_id=str(external_id),
        sender_id=sender.get("id"),
        sender_username=sender.get("username"),
        text=text,
        parent_id=value.get("parent_id"),
        post_id=media.get("id") or value.get("media_id"),
    )


def _message_event(
    page_id: str,
    item: dict[str, Any],
    skipped: list[SkippedItem] | None = None,
) -> InboundEvent | None:
    message = item.get("message")
    if not message:
        # read receipts, reactions, postbacks: לא נשמרים
        return None

    sender = item.get("sender")
    recipient = item.get("recipient")
    if not isinstance(message, dict) or not _is_object_or_missing(sender, recipient):
        mid = message.get("mid") if isinstance(message, dict) else None
        _skip(skipped, EventKind.DIRECT_MESSAGE, page_id, str(mid) if mid else None, "malformed")
        return None

    mid = message.get("mid")
    text = message.get("text")
    raw_attachments = [a for a in _as_list(message.get("attachments")) if isinstance(a, dict)]
    if not mid:
        _skip(skipped, EventKind.DIRECT_MESSAGE, page_id, None, "missing_id")
        return None
    if not _is_object_or_missing(*(a.get("payload") for a in raw_attachments)):
        _skip(skipped, EventKind.DIRECT_MESSAGE, page_id, str(mid), "malformed")
        return None

    attachments = tuple(normalize_attachment(a) for a in raw_attachments)
    if not (text or attachments):
        _skip(skipped, EventKind.DIRECT_MESSAGE, page_id, str(mid), "empty_message")
        return None

    return InboundEvent(
        kind=EventKind.DIRECT_MESSAGE,
        page_id=page_id,
        external_id=str(mid),
        sender_id=(sender or {}).get("id"),
        recipient_id=(recipient or {}).get("id"),
        text=text,
        is_echo=bool(message.get("is_echo")),
        attachments=attachments,
    )


def dispatch_payload(
    payload: Any,
    expected_object: str,
    skipped: list[SkippedItem] | None = None,
) -> list[InboundEvent]:
    """
    פירוק payload לרשימת אירועים.

    פריט שמבנהו שגוי (למשל value או sender שאינם אובייקט) מדולג עם
    reason="malformed" ולא מפיל את שאר המשלוח.

    Args:
        skipped: אם הועברה רשימה, פריטים שדולגו (בלי מזהה / בלי תוכן / מבנה שגוי) נוספים אליה

    Raises:
        UnknownObjectTypeError: payload שלא מצהיר על סוג האובייקט הצפוי (404)
    """
    received = payload.get("object") if isinstance(payload, dict) else None
    if received != expected_object:
        raise UnknownObjectTypeError(received, expected_object)

    events: list[InboundEvent] = []
    for entry in _as_list(payload.get("entry")):
        if not isinstance(entry, dict) or not entry.get("id"):
            logger.warning("Skipping malformed webhook entry")
            continue
        page_id = str(entry["id"])

        for change in _as_list(entry.get("changes")):
            field = change.get("field") if isinstance(change, dict) else None
            kind = _CHANGE_FIELDS.get(field) if isinstance(field, str) else None
            if kind is None:
                continue
            event = _comment_event(kind, page_id, change.get("value"), skipped)
            if event:
                events.append(event)

        for item in _as_list(entry.get("messaging")):
            if not isinstance(item, dict):
                continue
            event = _message_event(page_id, item, skipped)
            if event:
                events.append(event)

    return events
