"""
בדיקות להצפנת credentials של tenants (Fernet).
"""
import pytest
from hypothesis import given, settings as h_settings
from hypothesis.strategies import text

from inbox.core.exceptions import CredentialError
from inbox.core.security import CredentialVault


class TestCredentialVault:

    @pytest.mark.unit
    def test_encrypted_value_is_not_plaintext(self, vault: CredentialVault) -> None:
        encrypted = vault.encrypt("IGQVJ-long-lived-token")
        assert "IGQVJ" not in encrypted
        assert CredentialVault.is_encrypted(encrypted)
        assert vault.decrypt(encrypted) == "IGQVJ-long-lived-token"

    @pytest.mark.unit
    def test_legacy_plaintext_passes_through(self, vault: CredentialVault) -> None:
        """טוקן שנשמר לפני שההצפנה נוספה מוחזר כמו שהוא"""
        assert vault.decrypt("IGQVJ-legacy-token", tenant_id=4) == "IGQVJ-legacy-token"

    @pytest.mark.unit
    def test_other_key_cannot_decrypt(self, vault: CredentialVault) -> None:
        encrypted = CredentialVault("a-different-key").encrypt("token")
        with pytest.raises(CredentialError) as exc_info:
            vault.decrypt(encrypted, tenant_id=9)
        assert exc_info.value.details["tenant_id"] == 9

    @pytest.mark.unit
    def test_missing_key_rejected(self) -> None:
        with pytest.raises(CredentialError):
            CredentialVault("")

    @pytest.mark.unit
    def test_is_encrypted_on_empty(self) -> None:
        assert CredentialVault.is_encrypted(None) is False
        assert CredentialVault.is_encrypted("") is False

    @pytest.mark.unit
    @given(token=text(min_size=1, max_size=200))
    @h_settings(max_examples=30)
    def test_any_token_survives_encryption(self, token: str) -> None:
        vault = CredentialVault("property-test-key")
        assert vault.decrypt(vault.encrypt(token)) == token
