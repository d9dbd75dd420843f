"""
בדיקות לאימות חתימת webhook (X-Hub-Signature-256).

מכסה:
- חתימה תקינה / שגויה / חסרה / prefix שגוי
- סוד לא מוגדר נכשל סגור
- ה-diagnostic לא חושף את הסוד
- property: שינוי בית אחד ב-body פוסל את החתימה
"""
import hashlib
import hmac

import pytest
from hypothesis import given, settings as h_settings
from hypothesis.strategies import binary, integers

from inbox.api.dependencies.webhook_auth import verify_signature

_SECRET = "unit-test-app-secret"


def _sign(body: bytes, secret: str = _SECRET) -> str:
    return "sha256=" + hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


class TestVerifySignature:
    """בדיקות לפונקציה verify_signature"""

    @pytest.mark.unit
    def test_valid_signature(self) -> None:
        body = b'{"object":"instagram","entry":[]}'
        check = verify_signature(body, _sign(body), _SECRET)
        assert check.valid is True

    @pytest.mark.unit
    def test_uppercase_hex_accepted(self) -> None:
        body = b"{}"
        header = "sha256=" + _sign(body)[len("sha256="):].upper()
        assert verify_signature(body, header, _SECRET).valid is True

    @pytest.mark.unit
    def test_wrong_signature_rejected(self) -> None:
        body = b"{}"
        check = verify_signature(body, _sign(b"{ }"), _SECRET)
        assert check.valid is False
        assert "mismatch" in check.diagnostic

    @pytest.mark.unit
    def test_signed_with_other_secret_rejected(self) -> None:
        body = b"{}"
        assert verify_signature(body, _sign(body, "other"), _SECRET).valid is False

    @pytest.mark.unit
    @pytest.mark.parametrize("header", [None, ""])
    def test_missing_header_rejected(self, header) -> None:
        check = verify_signature(b"{}", header, _SECRET)
        assert check.valid is False
        assert "missing" in check.diagnostic

    @pytest.mark.unit
    def test_sha1_prefix_rejected(self) -> None:
        body = b"{}"
        digest = hmac.new(_SECRET.encode(), body, hashlib.sha1).hexdigest()
        check = verify_signature(body, f"sha1={digest}", _SECRET)
        assert check.valid is False
        assert "prefix" in check.diagnostic

    @pytest.mark.unit
    def test_missing_secret_fails_closed(self) -> None:
        """גם חתימה שחושבה עם סוד ריק נדחית כשהסוד לא מוגדר"""
        body = b"{}"
        check = verify_signature(body, _sign(body, ""), "")
        assert check.valid is False
        assert "not configured" in check.diagnostic

    @pytest.mark.unit
    def test_non_ascii_signature_rejected(self) -> None:
        check = verify_signature(b"{}", "sha256=חתימה", _SECRET)
        assert check.valid is False

    @pytest.mark.unit
    def test_diagnostic_never_contains_secret(self) -> None:
        body = b"payload"
        for header in (None, "md5=abc", "sha256=00", _sign(b"other")):
            check = verify_signature(body, header, _SECRET)
            assert _SECRET not in check.diagnostic
            assert _sign(body)[len("sha256="):] not in check.diagnostic


class TestSignatureProperties:
    """אינווריאנטים על חתימות עם hypothesis"""

    @pytest.mark.unit
    @given(body=binary(min_size=0, max_size=512))
    @h_settings(max_examples=50)
    def test_own_signature_always_valid(self, body: bytes) -> None:
        assert verify_signature(body, _sign(body), _SECRET).valid is True

    @pytest.mark.unit
    @given(body=binary(min_size=1, max_size=512), position=integers(min_value=0), flip=integers(1, 255))
    @h_settings(max_examples=50)
    def test_any_byte_change_invalidates(self, body: bytes, position: int, flip: int) -> None:
        index = position % len(body)
        tampered = bytearray(body)
        tampered[index] ^= flip
        assert verify_signature(bytes(tampered), _sign(body), _SECRET).valid is False
