"""
הצפנת credentials של tenants (access tokens של Instagram).

מפתח Fernet נגזר מ-ENCRYPTION_KEY באמצעות SHA-256, כך שכל מחרוזת סודית
באורך כלשהו מתאימה. ערכים שאינם בפורמט Fernet נחשבים טוקנים ישנים שנשמרו
כ-plaintext לפני שההצפנה נוספה, ומוחזרים כמו שהם עם אזהרה בלוג.
"""
import base64
import hashlib

from cryptography.fernet import Fernet, InvalidToken

from inbox.core.config import settings
from inbox.core.exceptions import CredentialError
from inbox.core.logging import get_logger

logger = get_logger(__name__)

# כל טוקן Fernet מתחיל ב-version byte 0x80, שמקודד ב-base64 ל-"gAAAAA"
_FERNET_PREFIX = "gAAAAA"


def _derive_key(secret: str) -> bytes:
    return base64.urlsafe_b64encode(hashlib.sha256(secret.encode()).digest())


class CredentialVault:
    """Encrypt / decrypt tenant credentials at rest"""

    def __init__(self, secret: str | None = None) -> None:
        secret = secret if secret is not None else settings.ENCRYPTION_KEY
        if not secret:
            raise CredentialError("ENCRYPTION_KEY is not configured")
        self._fernet = Fernet(_derive_key(secret))

    @staticmethod
    def is_encrypted(value: str | None) -> bool:
        return bool(value) and value.startswith(_FERNET_PREFIX)

    def encrypt(self, plaintext: str) -> str:
        return self._fernet.encrypt(plaintext.encode()).decode()

    def decrypt(self, value: str, tenant_id: int | None = None) -> str:
        """
        פענוח credential שמור.

        Raises:
            CredentialError: הערך בפורמט Fernet אבל לא ניתן לפענוח
                (מפתח הוחלף או הערך נפגם).
        """
        if not self.is_encrypted(value):
            logger.warning(
                "Credential stored without encryption",
                extra_data={"tenant_id": tenant_id},
            )
            return value
        try:
            return self._fernet.decrypt(value.encode()).decode()
        except InvalidToken as e:
            raise CredentialError(
                "Stored credential could not be decrypted", tenant_id=tenant_id
            ) from e
