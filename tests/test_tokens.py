"""Token issuance and validation, including expiry boundaries and forged tokens."""

import uuid

import jwt
import pytest

from vexillum.service.errors import InternalError, UnauthorizedError
from vexillum.service.keys import KeyPair
from vexillum.service.tokens import TokenClass, TokenService

ACCESS_TTL = 3600
REFRESH_TTL = 86400


@pytest.fixture
def tokens(key_pair, clock):
    return TokenService(
        key_pair,
        access_ttl_seconds=ACCESS_TTL,
        refresh_ttl_seconds=REFRESH_TTL,
        clock=clock,
    )


class TestIssueAndValidate:
    def test_round_trip_preserves_subject(self, tokens):
        user_id = uuid.uuid4()
        claims = tokens.validate(tokens.issue(user_id, 60))
        assert claims.sub == str(user_id)

    def test_claims_are_exactly_sub_iat_exp(self, tokens, key_pair):
        token = tokens.issue(uuid.uuid4(), 60)
        payload = jwt.decode(
            token, key_pair.public_pem, algorithms=["RS256"], options={"verify_exp": False}
        )
        assert set(payload) == {"sub", "iat", "exp"}
        assert jwt.get_unverified_header(token)["alg"] == "RS256"

    def test_exp_is_iat_plus_ttl(self, tokens, clock):
        claims = tokens.validate(tokens.issue(uuid.uuid4(), 900))
        assert claims.iat == int(clock.now)
        assert claims.exp - claims.iat == 900

    def test_issue_for_uses_class_ttl(self, tokens):
        claims = tokens.validate(tokens.issue_for(uuid.uuid4(), TokenClass.LONG))
        assert claims.exp - claims.iat == REFRESH_TTL * 7

    @pytest.mark.parametrize("ttl", [0, -1])
    def test_non_positive_ttl_is_rejected(self, tokens, ttl):
        with pytest.raises(ValueError):
            tokens.issue(uuid.uuid4(), ttl)

    def test_public_key_pem_is_the_configured_half(self, tokens, key_pair):
        assert tokens.public_key_pem == key_pair.public_pem

    def test_third_party_can_verify_with_public_key_only(self, tokens):
        token = tokens.issue(uuid.uuid4(), 60)
        payload = jwt.decode(
            token,
            tokens.public_key_pem,
            algorithms=["RS256"],
            options={"verify_exp": False},
        )
        assert "sub" in payload


class TestTtlPolicy:
    def test_policy_table(self, tokens):
        assert tokens.ttl_for(TokenClass.ACCESS) == ACCESS_TTL
        assert tokens.ttl_for(TokenClass.REFRESH) == REFRESH_TTL
        assert tokens.ttl_for(TokenClass.LONG) == REFRESH_TTL * 7

    def test_accepts_string_class(self, tokens):
        assert tokens.ttl_for("long") == REFRESH_TTL * 7


class TestExpiryBoundary:
    def test_valid_one_second_before_exp(self, tokens, clock):
        token = tokens.issue(uuid.uuid4(), 60)
        clock.advance(59)
        assert tokens.validate(token).sub

    def test_invalid_at_exp(self, tokens, clock):
        token = tokens.issue(uuid.uuid4(), 60)
        clock.advance(60)
        with pytest.raises(UnauthorizedError):
            tokens.validate(token)

    def test_invalid_one_second_after_exp(self, tokens, clock):
        token = tokens.issue(uuid.uuid4(), 60)
        clock.advance(61)
        with pytest.raises(UnauthorizedError) as excinfo:
            tokens.validate(token)
        assert excinfo.value.message.startswith("Invalid token")

    def test_leeway_extends_acceptance(self, key_pair, clock):
        service = TokenService(
            key_pair,
            access_ttl_seconds=ACCESS_TTL,
            refresh_ttl_seconds=REFRESH_TTL,
            leeway_seconds=5,
            clock=clock,
        )
        token = service.issue(uuid.uuid4(), 60)
        clock.advance(64)
        assert service.validate(token)
        clock.advance(1)
        with pytest.raises(UnauthorizedError):
            service.validate(token)


class TestRejection:
    def test_garbage_string(self, tokens):
        with pytest.raises(UnauthorizedError):
            tokens.validate("not-a-token")

    def test_empty_string(self, tokens):
        with pytest.raises(UnauthorizedError):
            tokens.validate("")

    def test_signed_by_another_key(self, key_pair, other_key_pair, clock):
        foreign = TokenService(
            other_key_pair, access_ttl_seconds=60, refresh_ttl_seconds=60, clock=clock
        )
        service = TokenService(key_pair, access_ttl_seconds=60, refresh_ttl_seconds=60, clock=clock)
        with pytest.raises(UnauthorizedError):
            service.validate(foreign.issue(uuid.uuid4(), 60))

    def test_tampered_payload(self, tokens, key_pair, clock):
        token = tokens.issue(uuid.uuid4(), 60)
        header, _, signature = token.split(".")
        forged_body = jwt.encode(
            {"sub": str(uuid.uuid4()), "iat": int(clock.now), "exp": int(clock.now) + 60},
            key_pair.private_pem,
            algorithm="RS256",
        ).split(".")[1]
        with pytest.raises(UnauthorizedError):
            tokens.validate(".".join([header, forged_body, signature]))

    def test_unsigned_token(self, tokens, clock):
        unsigned = jwt.encode(
            {"sub": str(uuid.uuid4()), "iat": int(clock.now), "exp": int(clock.now) + 60},
            None,
            algorithm="none",
        )
        with pytest.raises(UnauthorizedError) as excinfo:
            tokens.validate(unsigned)
        assert "algorithm" in excinfo.value.message

    def test_hmac_token(self, tokens, clock):
        hmac_token = jwt.encode(
            {"sub": str(uuid.uuid4()), "iat": int(clock.now), "exp": int(clock.now) + 60},
            "a-shared-secret-that-is-long-enough-for-hs256",
            algorithm="HS256",
        )
        with pytest.raises(UnauthorizedError):
            tokens.validate(hmac_token)

    @pytest.mark.parametrize("missing", ["sub", "iat", "exp"])
    def test_missing_claim(self, tokens, key_pair, clock, missing):
        payload = {"sub": str(uuid.uuid4()), "iat": int(clock.now), "exp": int(clock.now) + 60}
        payload.pop(missing)
        token = jwt.encode(payload, key_pair.private_pem, algorithm="RS256")
        with pytest.raises(UnauthorizedError):
            tokens.validate(token)

    def test_fractional_exp(self, tokens, key_pair, clock):
        token = jwt.encode(
            {"sub": "someone", "iat": int(clock.now), "exp": clock.now + 60.5},
            key_pair.private_pem,
            algorithm="RS256",
        )
        with pytest.raises(UnauthorizedError):
            tokens.validate(token)


def test_unloadable_key_material_is_internal_error():
    with pytest.raises(InternalError):
        TokenService(
            KeyPair(private_pem=b"garbage", public_pem=b"garbage"),
            access_ttl_seconds=60,
            refresh_ttl_seconds=60,
        )
