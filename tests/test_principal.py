import uuid

import pytest

from vexillum.service.errors import InternalError, UnauthorizedError
from vexillum.service.principal import PrincipalResolver
from vexillum.service.tokens import TokenService


@pytest.fixture
def tokens(key_pair, clock):
    return TokenService(key_pair, access_ttl_seconds=60, refresh_ttl_seconds=600, clock=clock)


@pytest.fixture
def resolver(tokens):
    return PrincipalResolver(tokens)


class TestBearer:
    def test_resolves_principal_id(self, resolver, tokens):
        user_id = uuid.uuid4()
        principal = resolver.from_authorization(f"Bearer {tokens.issue(user_id, 60)}")
        assert principal.user_id == user_id
        assert principal.claims.sub == str(user_id)

    def test_scheme_is_case_insensitive(self, resolver, tokens):
        user_id = uuid.uuid4()
        assert resolver.from_authorization(f"bearer {tokens.issue(user_id, 60)}").user_id == user_id

    @pytest.mark.parametrize("header", [None, "", "Bearer", "Bearer   ", "Basic dXNlcjpwYXNz", "Token abc"])
    def test_missing_or_malformed_header(self, resolver, header):
        with pytest.raises(UnauthorizedError) as excinfo:
            resolver.from_authorization(header)
        assert excinfo.value.message == "Missing or invalid authorization header"

    def test_expired_token(self, resolver, tokens, clock):
        token = tokens.issue(uuid.uuid4(), 60)
        clock.advance(61)
        with pytest.raises(UnauthorizedError):
            resolver.from_authorization(f"Bearer {token}")

    def test_non_uuid_subject_is_internal_error(self, resolver, tokens):
        token = tokens.issue("not-a-uuid", 60)
        with pytest.raises(InternalError) as excinfo:
            resolver.from_authorization(f"Bearer {token}")
        assert excinfo.value.message == "Invalid user ID in token"


class TestCookie:
    def test_resolves_refresh_cookie(self, resolver, tokens):
        user_id = uuid.uuid4()
        principal = resolver.from_cookie({"refresh_token": tokens.issue(user_id, 600)})
        assert principal.user_id == user_id

    @pytest.mark.parametrize("cookies", [{}, {"refresh_token": ""}, {"other": "x"}])
    def test_missing_cookie(self, resolver, cookies):
        with pytest.raises(UnauthorizedError) as excinfo:
            resolver.from_cookie(cookies)
        assert excinfo.value.message == "Refresh token not found"

    def test_custom_cookie_name(self, resolver, tokens):
        user_id = uuid.uuid4()
        principal = resolver.from_cookie({"rt": tokens.issue(user_id, 600)}, name="rt")
        assert principal.user_id == user_id


class TestDenylist:
    def test_revoked_claims_are_rejected(self, tokens):
        revoked = set()

        class SetDenylist:
            def is_revoked(self, claims):
                return claims.sub in revoked

        resolver = PrincipalResolver(tokens, denylist=SetDenylist())
        user_id = uuid.uuid4()
        token = tokens.issue(user_id, 60)
        assert resolver.from_authorization(f"Bearer {token}").user_id == user_id

        revoked.add(str(user_id))
        with pytest.raises(UnauthorizedError):
            resolver.from_authorization(f"Bearer {token}")
