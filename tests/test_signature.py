"""
Tests for webhook and checkout callback signature verification.
"""
import hashlib
import hmac

import pytest

from storefront_checkout.core.errors import InvalidSignature, Misconfigured
from storefront_checkout.core.signature import SignatureVerifier, compute_signature

SECRET = "whsec_unit_secret"
KEY_SECRET = "key_unit_secret"
BODY = b'{"event":"payment.captured","payload":{}}'


class TestWebhookSignature:
    """Signatures over the raw webhook body."""

    @pytest.mark.unit
    def test_compute_signature_is_hex_hmac_sha256(self) -> None:
        expected = hmac.new(SECRET.encode(), BODY, hashlib.sha256).hexdigest()
        assert compute_signature(SECRET, BODY) == expected

    @pytest.mark.unit
    def test_valid_signature_passes(self) -> None:
        verifier = SignatureVerifier(SECRET)
        verifier.verify_webhook(BODY, compute_signature(SECRET, BODY))

    @pytest.mark.unit
    def test_uppercase_hex_is_accepted(self) -> None:
        verifier = SignatureVerifier(SECRET)
        verifier.verify_webhook(BODY, compute_signature(SECRET, BODY).upper())

    @pytest.mark.unit
    def test_altered_body_is_rejected(self) -> None:
        """Changing a single byte invalidates the signature."""
        verifier = SignatureVerifier(SECRET)
        signature = compute_signature(SECRET, BODY)
        tampered = BODY.replace(b"captured", b"capturex")

        with pytest.raises(InvalidSignature, match="Invalid signature"):
            verifier.verify_webhook(tampered, signature)

    @pytest.mark.unit
    def test_reserialized_body_is_rejected(self) -> None:
        """Verification is over the exact bytes, not the JSON value."""
        verifier = SignatureVerifier(SECRET)
        signature = compute_signature(SECRET, BODY)
        reserialized = b'{"event": "payment.captured", "payload": {}}'

        with pytest.raises(InvalidSignature):
            verifier.verify_webhook(reserialized, signature)

    @pytest.mark.unit
    def test_wrong_secret_is_rejected(self) -> None:
        verifier = SignatureVerifier(SECRET)
        with pytest.raises(InvalidSignature):
            verifier.verify_webhook(BODY, compute_signature("whsec_other", BODY))

    @pytest.mark.unit
    @pytest.mark.parametrize("signature", [None, ""])
    def test_missing_signature_is_rejected(self, signature: str) -> None:
        verifier = SignatureVerifier(SECRET)
        with pytest.raises(InvalidSignature, match="Missing signature"):
            verifier.verify_webhook(BODY, signature)

    @pytest.mark.unit
    def test_non_ascii_signature_is_rejected_not_crashing(self) -> None:
        verifier = SignatureVerifier(SECRET)
        with pytest.raises(InvalidSignature):
            verifier.verify_webhook(BODY, "é" * 64)

    @pytest.mark.unit
    @pytest.mark.parametrize("secret", [None, ""])
    def test_missing_secret_is_misconfiguration(self, secret: str) -> None:
        verifier = SignatureVerifier(secret)
        with pytest.raises(Misconfigured):
            verifier.verify_webhook(BODY, compute_signature(SECRET, BODY))


class TestCheckoutCallbackSignature:
    """Signatures the payment UI returns after a successful payment."""

    @pytest.mark.unit
    def test_valid_callback_passes(self) -> None:
        verifier = SignatureVerifier(SECRET, key_secret=KEY_SECRET)
        signature = compute_signature(KEY_SECRET, b"order_abc|pay_xyz")

        verifier.verify_checkout_callback("order_abc", "pay_xyz", signature)

    @pytest.mark.unit
    def test_swapped_ids_are_rejected(self) -> None:
        verifier = SignatureVerifier(SECRET, key_secret=KEY_SECRET)
        signature = compute_signature(KEY_SECRET, b"order_abc|pay_xyz")

        with pytest.raises(InvalidSignature):
            verifier.verify_checkout_callback("pay_xyz", "order_abc", signature)

    @pytest.mark.unit
    def test_webhook_secret_does_not_sign_callbacks(self) -> None:
        verifier = SignatureVerifier(SECRET, key_secret=KEY_SECRET)
        signature = compute_signature(SECRET, b"order_abc|pay_xyz")

        with pytest.raises(InvalidSignature):
            verifier.verify_checkout_callback("order_abc", "pay_xyz", signature)

    @pytest.mark.unit
    def test_missing_key_secret_is_misconfiguration(self) -> None:
        verifier = SignatureVerifier(SECRET)
        with pytest.raises(Misconfigured):
            verifier.verify_checkout_callback("order_abc", "pay_xyz", "deadbeef")
