"""Unit tests for access-token signing and verification."""

import base64
import json
from datetime import timedelta

import pytest

from sessionguard.service.tokens import TokenSigner, generate_token_id
from sessionguard.storage.models import User


@pytest.fixture
def alice():
    return User(id="user-1", email="alice@example.com", name="Alice")


def _segment(data: dict) -> str:
    return base64.urlsafe_b64encode(json.dumps(data).encode()).decode().rstrip("=")


class TestIssueAndVerify:
    def test_round_trip_preserves_claims(self, signer, alice, clock):
        access = signer.issue_access_token(alice)
        claims = signer.verify_access_token(access.token)

        assert claims is not None
        assert claims.subject == "user-1"
        assert claims.email == "alice@example.com"
        assert claims.name == "Alice"
        assert claims.expires_at - claims.issued_at == timedelta(minutes=15)
        assert claims.expires_at == clock.now() + timedelta(minutes=15)

    def test_tokens_for_same_user_are_distinct(self, signer, alice):
        first = signer.issue_access_token(alice).token
        second = signer.issue_access_token(alice).token

        assert first != second
        assert signer.token_id(first) != signer.token_id(second)

    def test_expired_token_rejected(self, signer, alice, clock):
        token = signer.issue_access_token(alice).token

        clock.advance(timedelta(minutes=14))
        assert signer.verify_access_token(token) is not None

        clock.advance(seconds=60)
        assert signer.verify_access_token(token) is None

    def test_wrong_secret_rejected(self, signer, alice, clock):
        token = signer.issue_access_token(alice).token
        other = TokenSigner("another-secret-that-is-long-enough-000000", clock=clock)

        assert other.verify_access_token(token) is None

    def test_wrong_issuer_rejected(self, alice, clock):
        token = TokenSigner("s" * 40, issuer="a", clock=clock).issue_access_token(alice).token

        assert TokenSigner("s" * 40, issuer="b", clock=clock).verify_access_token(token) is None

    def test_tampered_payload_rejected(self, signer, alice):
        token = signer.issue_access_token(alice).token
        header, payload, sig = token.split(".")
        claims = json.loads(base64.urlsafe_b64decode(payload + "=" * (-len(payload) % 4)))
        claims["sub"] = "someone-else"
        forged = ".".join([header, _segment(claims), sig])

        assert signer.verify_access_token(forged) is None

    def test_none_algorithm_rejected(self, signer, alice):
        token = signer.issue_access_token(alice).token
        _, payload, _ = token.split(".")
        forged = ".".join([_segment({"alg": "none", "typ": "JWT"}), payload, ""])

        assert signer.verify_access_token(forged) is None

    @pytest.mark.parametrize(
        "token", ["", "not-a-jwt", "a.b", "a.b.c.d", "####.####.####", None]
    )
    def test_malformed_input_returns_none(self, signer, token):
        assert signer.verify_access_token(token) is None


class TestLifetimes:
    def test_default_lifetimes(self, signer):
        assert signer.access_token_lifetime() == timedelta(minutes=15)
        assert signer.refresh_token_lifetime() == timedelta(days=7)
        assert signer.access_token_max_age() == 900
        assert signer.refresh_token_max_age() == 604800

    def test_remaining_lifetime_never_negative(self, signer, alice, clock):
        access = signer.issue_access_token(alice)

        clock.advance(seconds=300)
        assert signer.remaining_lifetime(access.claims) == timedelta(minutes=10)

        clock.advance(seconds=3600)
        assert signer.remaining_lifetime(access.claims) == timedelta(0)

    def test_empty_secret_refused(self):
        with pytest.raises(ValueError):
            TokenSigner("")


def test_token_id_is_sha256_hex(signer):
    digest = signer.token_id("abc")
    assert digest == "ba7816bf8f01cfea414140de5dae2223b00361a396177a9cb410ff61f20015ad"


def test_generated_ids_are_long_and_unique():
    ids = {generate_token_id() for _ in range(200)}
    assert len(ids) == 200
    # 32 random bytes encode to 43 url-safe characters
    assert all(len(token_id) >= 43 for token_id in ids)
