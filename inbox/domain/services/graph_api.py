"""
Graph API Client - קריאות קריאה-בלבד ל-Instagram / Facebook Graph API.

משמש לשני צרכים:
1. credential probe (אסטרטגיה 4 בזיהוי tenant, כבויה כברירת מחדל)
2. העשרת פרופיל שולח (שם, username, תמונת פרופיל)

כל קריאה מוגבלת ב-GRAPH_API_TIMEOUT_SECONDS ועוברת דרך circuit breaker,
כך שכשל upstream מתורגם ל-ExternalServiceException ולא תוקע את ה-webhook.
"""
from typing import Any

import httpx

from inbox.core.circuit_breaker import get_graph_api_circuit_breaker
from inbox.core.config import settings
from inbox.core.exceptions import GraphAPIError, ServiceTimeoutError
from inbox.core.logging import get_logger

logger = get_logger(__name__)

# סטטוסים שמעידים על תקלה ב-upstream (נספרים ב-circuit breaker).
# 4xx אחרים הם תשובה לגיטימית ("אין הרשאה", "לא קיים") ולא פוגעים ב-breaker.
_TRANSIENT_STATUS_CODES = {429, 500, 502, 503, 504}

_PROFILE_FIELDS_INSTAGRAM = "name,username,profile_pic"
_PROFILE_FIELDS_FACEBOOK = "name,profile_pic"


class GraphAPIClient:
    """Thin async client around the Graph API GET endpoints we rely on"""

    def __init__(
        self,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout_seconds: float | None = None,
    ) -> None:
        self._transport = transport
        self._timeout = timeout_seconds or settings.GRAPH_API_TIMEOUT_SECONDS

    def _url(self, base_url: str, object_id: str) -> str:
        return f"{base_url.rstrip('/')}/{settings.GRAPH_API_VERSION}/{object_id}"

    async def _get(self, operation: str, url: str, params: dict[str, str]) -> dict[str, Any]:
        breaker = get_graph_api_circuit_breaker()

        async def _send() -> httpx.Response:
            try:
                async with httpx.AsyncClient(
                    timeout=self._timeout, transport=self._transport
                ) as client:
                    response = await client.get(url, params=params)
            except httpx.TimeoutException as e:
                raise ServiceTimeoutError("graph_api", self._timeout) from e
            except httpx.HTTPError as e:
                raise GraphAPIError(f"{operation} transport error: {e}") from e
            if response.status_code in _TRANSIENT_STATUS_CODES:
                raise GraphAPIError.from_response(operation, response)
            return response

        response = await breaker.execute(_send)
        if response.status_code != 200:
            raise GraphAPIError.from_response(operation, response)
        try:
            data = response.json()
        except ValueError as e:
            raise GraphAPIError(f"{operation} returned invalid JSON") from e
        if not isinstance(data, dict) or "error" in data:
            raise GraphAPIError.from_response(operation, response, message=f"{operation} returned an error body")
        return data

    async def lookup_account(self, access_token: str, account_id: str) -> dict[str, Any]:
        """
        בדיקה האם הטוקן רואה את המזהה (credential probe).

        Returns:
            {"id": ..., "username": ...} כשהקריאה הצליחה

        Raises:
            ExternalServiceException: כל כשל (כולל 4xx של "אין גישה")
        """
        return await self._get(
            "lookup_account",
            self._url(settings.GRAPH_API_BASE_URL, account_id),
            {"fields": "id,username", "access_token": access_token},
        )

    async def fetch_instagram_profile(self, access_token: str, user_id: str) -> dict[str, Any]:
        return await self._get(
            "fetch_instagram_profile",
            self._url(settings.GRAPH_API_BASE_URL, user_id),
            {"fields": _PROFILE_FIELDS_INSTAGRAM, "access_token": access_token},
        )

    async def fetch_facebook_profile(self, access_token: str, user_id: str) -> dict[str, Any]:
        return await self._get(
            "fetch_facebook_profile",
            self._url(settings.FACEBOOK_GRAPH_API_BASE_URL, user_id),
            {"fields": _PROFILE_FIELDS_FACEBOOK, "access_token": access_token},
        )
