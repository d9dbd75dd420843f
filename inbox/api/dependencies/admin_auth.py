"""
אימות מפתח API עבור endpoints דיאגנוסטיים של אדמין.

שימוש:
    @router.get("/recent-webhooks")
    async def recent_webhooks(
        _: None = Depends(require_admin_api_key),
    ):
        ...
"""
import hmac

from fastapi import Depends, HTTPException, status
from fastapi.security import APIKeyHeader

from inbox.core.config import settings
from inbox.core.logging import get_logger

logger = get_logger(__name__)

_api_key_header = APIKeyHeader(name="X-Admin-API-Key", auto_error=False)


async def require_admin_api_key(
    api_key: str | None = Depends(_api_key_header),
) -> None:
    """
    זורק 401 אם המפתח חסר, 403 אם לא תואם.
    אם ADMIN_API_KEY לא מוגדר בסביבה, הגישה חסומה לחלוטין.
    """
    if not settings.ADMIN_API_KEY:
        logger.warning("גישה ל-admin endpoint נדחתה: ADMIN_API_KEY לא מוגדר")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="ADMIN_API_KEY לא מוגדר בסביבה",
        )

    if not api_key:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="חסר מפתח API, נדרש header: X-Admin-API-Key",
        )

    if not hmac.compare_digest(api_key.encode(), settings.ADMIN_API_KEY.encode()):
        logger.warning("גישה ל-admin endpoint נדחתה: מפתח API שגוי")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="מפתח API לא תקין",
        )
