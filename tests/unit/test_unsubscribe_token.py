"""Tests for unsubscribe link tokens."""

import base64
import hashlib

from maturamente.services.mailing import unsubscribe_token, verify_unsubscribe_token

SECRET = "s3cret"


class TestUnsubscribeToken:
    """Tests for token derivation and verification."""

    def test_token_is_unpadded_base64url_sha256(self) -> None:
        expected = (
            base64.urlsafe_b64encode(hashlib.sha256(b"anna@example.coms3cret").digest())
            .rstrip(b"=")
            .decode()
        )

        token = unsubscribe_token("anna@example.com", SECRET)

        assert token == expected
        assert len(token) == 43
        assert "=" not in token
        assert "+" not in token and "/" not in token

    def test_token_is_deterministic(self) -> None:
        assert unsubscribe_token("anna@example.com", SECRET) == unsubscribe_token(
            "anna@example.com", SECRET
        )

    def test_token_depends_on_email_and_secret(self) -> None:
        token = unsubscribe_token("anna@example.com", SECRET)

        assert token != unsubscribe_token("luca@example.com", SECRET)
        assert token != unsubscribe_token("anna@example.com", "other")

    def test_verify(self) -> None:
        token = unsubscribe_token("anna@example.com", SECRET)

        assert verify_unsubscribe_token("anna@example.com", token, SECRET)
        assert not verify_unsubscribe_token("luca@example.com", token, SECRET)
        assert not verify_unsubscribe_token("anna@example.com", token[:-1], SECRET)
