"""
אימות חתימת webhook נכנס מ-Meta (Instagram).

Meta שולח את הכותרת ``X-Hub-Signature-256: sha256=<hex>`` עם כל משלוח,
כאשר ה-hex הוא HMAC-SHA256 של ה-body הגולמי עם ה-App Secret.
האימות נכשל סגור: כותרת חסרה, סוד לא מוגדר, prefix שגוי או אי-התאמה.

שימוש:
    @router.post("/webhook")
    async def instagram_webhook(
        body: bytes = Depends(require_valid_signature),
    ):
        ...
"""
import hashlib
import hmac
from dataclasses import dataclass

from fastapi import Request

from inbox.api.dependencies.recent_webhooks import find_recent_webhooks
from inbox.core.config import settings
from inbox.core.exceptions import AuthenticityFailure
from inbox.core.logging import get_logger

logger = get_logger(__name__)

SIGNATURE_HEADER = "X-Hub-Signature-256"
_SIGNATURE_PREFIX = "sha256="


@dataclass(frozen=True)
class SignatureCheck:
    valid: bool
    diagnostic: str


def verify_signature(body: bytes, signature_header: str | None, secret: str | None) -> SignatureCheck:
    """
    בדיקת HMAC-SHA256 של ה-body מול הכותרת, בהשוואה בזמן קבוע.

    ה-diagnostic מיועד ללוג ולעולם לא מכיל את הסוד או את החתימה המצופה.
    """
    if not secret:
        return SignatureCheck(False, "app secret is not configured")
    if not signature_header:
        return SignatureCheck(False, f"missing {SIGNATURE_HEADER} header")
    if not signature_header.startswith(_SIGNATURE_PREFIX):
        return SignatureCheck(False, "unsupported signature algorithm prefix")

    received = signature_header[len(_SIGNATURE_PREFIX):]
    # compare_digest זורק TypeError על str שאינו ASCII
    if not received.isascii():
        return SignatureCheck(False, "signature is not a hex digest")
    expected = hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()
    if not hmac.compare_digest(received.lower(), expected):
        return SignatureCheck(
            False,
            f"signature mismatch (body_length={len(body)}, received_length={len(received)})",
        )
    return SignatureCheck(True, "signature valid")


async def require_valid_signature(request: Request) -> bytes:
    """
    Dependency: מחזיר את ה-body הגולמי אחרי אימות חתימה.

    Raises:
        AuthenticityFailure: 401 ללא audit וללא עיבוד נוסף
    """
    body = await request.body()
    check = verify_signature(
        body,
        request.headers.get(SIGNATURE_HEADER),
        settings.INSTAGRAM_APP_SECRET,
    )
    if not check.valid:
        logger.warning(
            "Instagram webhook rejected: invalid signature",
            extra_data={
                "reason": check.diagnostic,
                "client_host": request.client.host if request.client else None,
            },
        )
        buffer = find_recent_webhooks(request)
        if buffer is not None:
            buffer.start(object_type=None, entry_count=0, signature_valid=False)
        raise AuthenticityFailure(check.diagnostic)
    return body
