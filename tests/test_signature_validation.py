"""
Tests for webhook signature validation, the subscription handshake and
sender profile matching.
"""

import hashlib
import hmac

from whatsapp_crm.providers.meta_cloud.webhook import WebhookChange, validate_signature
from whatsapp_crm.providers.stub import StubWhatsAppProvider


def sign(payload: bytes, secret: str) -> str:
    return "sha256=" + hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()


class TestSignatureValidation:
    """Tests for webhook signature validation."""

    def test_valid_signature(self):
        """Test valid HMAC-SHA256 signature validation."""
        payload = b'{"test": "data"}'
        assert validate_signature(payload, sign(payload, "test_secret_key"), "test_secret_key") is True

    def test_invalid_signature(self):
        """Test invalid signature is rejected."""
        payload = b'{"test": "data"}'
        assert validate_signature(payload, "sha256=invalid_signature_here", "test_secret_key") is False

    def test_signature_from_other_secret(self):
        """Test signature computed with another secret is rejected."""
        payload = b'{"test": "data"}'
        assert validate_signature(payload, sign(payload, "other"), "test_secret_key") is False

    def test_tampered_body(self):
        """Test a valid signature over a different body is rejected."""
        signature = sign(b'{"amount": 1}', "secret")
        assert validate_signature(b'{"amount": 100}', signature, "secret") is False

    def test_missing_signature_prefix(self):
        """Test signature without sha256= prefix is rejected."""
        payload = b'{"test": "data"}'
        bare = sign(payload, "secret")[len("sha256="):]
        assert validate_signature(payload, bare, "secret") is False

    def test_empty_signature(self):
        """Test empty signature is rejected."""
        assert validate_signature(b"payload", "", "secret") is False
        assert validate_signature(b"payload", None, "secret") is False

    def test_missing_secret(self):
        """Test nothing validates when the app secret is not configured."""
        payload = b"payload"
        assert validate_signature(payload, sign(payload, ""), "") is False
        assert validate_signature(payload, sign(payload, "x"), None) is False


class TestWebhookChallenge:
    """Tests for the GET subscription handshake."""

    def test_matching_token_returns_challenge(self):
        """Test subscribe with the right token echoes the challenge."""
        provider = StubWhatsAppProvider()
        assert provider.verify_webhook_challenge("subscribe", "tok", "12345", "tok") == "12345"

    def test_wrong_token(self):
        """Test a wrong token is refused."""
        provider = StubWhatsAppProvider()
        assert provider.verify_webhook_challenge("subscribe", "bad", "12345", "tok") is None

    def test_wrong_mode(self):
        """Test a mode other than subscribe is refused."""
        provider = StubWhatsAppProvider()
        assert provider.verify_webhook_challenge("unsubscribe", "tok", "12345", "tok") is None

    def test_unconfigured_token(self):
        """Test an empty configured token never matches."""
        provider = StubWhatsAppProvider()
        assert provider.verify_webhook_challenge("subscribe", "", "12345", "") is None


class TestContactProfiles:
    """Tests for matching sender profiles in a change."""

    def test_profile_matched_by_wa_id(self):
        """Test the profile of the sending wa_id is returned."""
        change = WebhookChange(
            phone_number_id="PHONE_123",
            display_phone_number=None,
            contacts=[
                {"wa_id": "5511111110000", "profile": {"name": "Alice"}},
                {"wa_id": "5511222220000", "profile": {"name": "Bruno"}},
            ],
        )
        assert change.contact_for("5511222220000")["profile"]["name"] == "Bruno"

    def test_no_profile_for_other_sender(self):
        """Test another sender's profile is never returned."""
        change = WebhookChange(
            phone_number_id="PHONE_123",
            display_phone_number=None,
            contacts=[{"wa_id": "5511111110000", "profile": {"name": "Alice Other"}}],
        )
        assert change.contact_for("5511222220000") == {}
