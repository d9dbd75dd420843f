"""
Tenant Service - טעינת tenants ועדכון מזהי הפלטפורמה שלהם.
"""
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from inbox.core.exceptions import CredentialError, TenantNotFoundError
from inbox.core.logging import get_logger
from inbox.core.security import CredentialVault
from inbox.db.models.tenant_account import TenantAccount

logger = get_logger(__name__)


class TenantService:
    def __init__(self, db: AsyncSession, vault: CredentialVault | None = None) -> None:
        self.db = db
        self._vault = vault

    @property
    def vault(self) -> CredentialVault:
        # נוצר בעצלות: רוב האירועים לא צריכים פענוח טוקן בכלל
        if self._vault is None:
            self._vault = CredentialVault()
        return self._vault

    async def list_active(self) -> list[TenantAccount]:
        """כל ה-tenants הפעילים, לפי id (סדר דטרמיניסטי לאסטרטגיות)"""
        result = await self.db.execute(
            select(TenantAccount)
            .where(TenantAccount.is_active.is_(True))
            .order_by(TenantAccount.id)
        )
        return list(result.scalars().all())

    async def get(self, tenant_id: int) -> TenantAccount:
        tenant = await self.db.get(TenantAccount, tenant_id)
        if tenant is None:
            raise TenantNotFoundError(tenant_id)
        return tenant

    async def update_platform_ids(
        self,
        tenant: TenantAccount,
        *,
        primary: str | None = None,
        secondary: str | None = None,
        reason: str,
    ) -> None:
        """
        כתיבת מזהי פלטפורמה (self-heal / שיוך אוטומטי) + commit.

        אין נעילה per-tenant: שני אירועים מקבילים עם אותו מזהה לא מוכר
        יכולים לכתוב את אותו שיוך פעמיים (ראו DESIGN.md).
        """
        changes = {}
        if primary is not None and primary != tenant.primary_platform_id:
            changes["primary_platform_id"] = (tenant.primary_platform_id, primary)
            tenant.primary_platform_id = primary
        if secondary is not None and secondary != tenant.secondary_platform_id:
            changes["secondary_platform_id"] = (tenant.secondary_platform_id, secondary)
            tenant.secondary_platform_id = secondary
        if not changes:
            return

        await self.db.commit()
        logger.info(
            "Tenant platform ids updated",
            extra_data={
                "tenant_id": tenant.id,
                "reason": reason,
                "changes": {k: {"old": old, "new": new} for k, (old, new) in changes.items()},
            },
        )

    def reveal_credential(self, tenant: TenantAccount) -> str | None:
        """פענוח ה-access token של tenant. None אם אין טוקן שמור."""
        if not tenant.encrypted_credential:
            return None
        return self.vault.decrypt(tenant.encrypted_credential, tenant_id=tenant.id)

    def try_reveal_credential(self, tenant: TenantAccount) -> str | None:
        """כמו reveal_credential, אבל טוקן פגום נרשם בלוג ומחזיר None"""
        try:
            return self.reveal_credential(tenant)
        except CredentialError as e:
            logger.error(
                "Tenant credential unreadable",
                extra_data={"tenant_id": tenant.id, "error": e.message},
            )
            return None

    async def copy_missing_primary_ids(self) -> int:
        """
        תיקון startup: tenant עם טוקן ועם secondary אבל בלי primary
        מקבל primary := secondary. אידמפוטנטי (copy-if-missing).
        """
        result = await self.db.execute(
            select(TenantAccount).where(
                TenantAccount.primary_platform_id.is_(None),
                TenantAccount.secondary_platform_id.is_not(None),
                TenantAccount.encrypted_credential.is_not(None),
            )
        )
        fixed = 0
        for tenant in result.scalars().all():
            tenant.primary_platform_id = tenant.secondary_platform_id
            fixed += 1
            logger.info(
                "Copied secondary platform id into missing primary id",
                extra_data={"tenant_id": tenant.id, "platform_id": tenant.secondary_platform_id},
            )
        if fixed:
            await self.db.commit()
        return fixed
