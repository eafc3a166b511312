import pytest

from vexillum.service.errors import InternalError
from vexillum.service.passwords import CredentialVerifier


def test_default_hasher_is_argon2id():
    encoded = CredentialVerifier().hash("correct horse battery staple")
    assert encoded.startswith("$argon2id$")


def test_hash_is_salted(fast_verifier):
    assert fast_verifier.hash("TestPassword123!") != fast_verifier.hash("TestPassword123!")


def test_verify_accepts_the_right_password(fast_verifier):
    encoded = fast_verifier.hash("TestPassword123!")
    assert fast_verifier.verify("TestPassword123!", encoded) is True


def test_verify_rejects_the_wrong_password(fast_verifier):
    encoded = fast_verifier.hash("TestPassword123!")
    assert fast_verifier.verify("WrongPassword123!", encoded) is False


def test_unparsable_hash_is_internal_error(fast_verifier):
    with pytest.raises(InternalError) as excinfo:
        fast_verifier.verify("whatever", "plaintext-not-a-hash")
    assert excinfo.value.message == "Failed to process password"


def test_hash_embeds_its_own_parameters(fast_verifier):
    # a verifier with default cost still checks hashes made with other parameters
    encoded = fast_verifier.hash("TestPassword123!")
    assert CredentialVerifier().verify("TestPassword123!", encoded)


async def test_async_wrappers(fast_verifier):
    encoded = await fast_verifier.hash_async("TestPassword123!")
    assert await fast_verifier.verify_async("TestPassword123!", encoded)
    assert not await fast_verifier.verify_async("nope", encoded)


def test_dummy_hash_is_stable_and_matches_nothing_real(fast_verifier):
    assert fast_verifier.dummy_hash is fast_verifier.dummy_hash
    assert fast_verifier.dummy_hash.startswith("$argon2id$")
    assert fast_verifier.verify("TestPassword123!", fast_verifier.dummy_hash) is False


async def test_burn_async_runs_a_verification(fast_verifier, monkeypatch):
    calls = []
    real_verify = fast_verifier.verify

    def recording_verify(password, hash_string):
        calls.append(hash_string)
        return real_verify(password, hash_string)

    monkeypatch.setattr(fast_verifier, "verify", recording_verify)
    assert await fast_verifier.burn_async("TestPassword123!") is None
    assert calls == [fast_verifier.dummy_hash]
