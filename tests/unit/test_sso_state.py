"""
Tests des helpers SSO: etat CSRF, verification du state, normalisation
du profil fournisseur.
"""
from unittest.mock import MagicMock

import pytest

from dottir.core.transient_store import MemoryTransientStore
from dottir.services.exceptions import UserInfoFailedError
from dottir.services.sso import CSRFState, SSOService
from tests.fakes import START_TIME, FakeClock


@pytest.fixture
def clock():
    return FakeClock(START_TIME)


@pytest.fixture
def service(clock):
    return SSOService(
        user_repository=MagicMock(),
        provider_repository=MagicMock(),
        connection_repository=MagicMock(),
        state_ttl_seconds=600,
        nonce_store=MemoryTransientStore(clock=clock.timestamp),
        clock=clock,
    )


@pytest.fixture
def state(clock):
    return CSRFState(provider_id="idp", issued_at=int(clock.timestamp()), nonce="nonce-abc")


class TestCSRFState:

    @pytest.mark.unit
    def test_serialize_parse(self, state):
        assert CSRFState.parse(state.serialize()) == state

    @pytest.mark.unit
    @pytest.mark.parametrize("raw", [None, "", "idp|123", "idp|abc|nonce", "|123|nonce", "a|1|b|c"])
    def test_parse_malformed(self, raw):
        assert CSRFState.parse(raw) is None


class TestVerifyState:

    @pytest.mark.unit
    def test_valid_state(self, service, state):
        assert service.verify_state("idp", "nonce-abc", state) is True

    @pytest.mark.unit
    def test_serialized_state_accepted(self, service, state):
        assert service.verify_state("idp", "nonce-abc", state.serialize()) is True

    @pytest.mark.unit
    def test_wrong_nonce(self, service, state):
        assert service.verify_state("idp", "nonce-xyz", state) is False

    @pytest.mark.unit
    def test_missing_returned_state(self, service, state):
        assert service.verify_state("idp", None, state) is False

    @pytest.mark.unit
    def test_missing_stored_state(self, service):
        assert service.verify_state("idp", "nonce-abc", None) is False

    @pytest.mark.unit
    def test_other_provider(self, service, state):
        assert service.verify_state("other", "nonce-abc", state) is False

    @pytest.mark.unit
    def test_state_at_ttl_boundary(self, service, state, clock):
        clock.advance(seconds=600)
        assert service.verify_state("idp", "nonce-abc", state) is True

    @pytest.mark.unit
    def test_state_older_than_ttl(self, service, state, clock):
        clock.advance(seconds=601)
        assert service.verify_state("idp", "nonce-abc", state) is False

    @pytest.mark.unit
    def test_state_from_the_future(self, service, clock):
        future = CSRFState(provider_id="idp", issued_at=int(clock.timestamp()) + 5, nonce="nonce-abc")
        assert service.verify_state("idp", "nonce-abc", future) is False

    @pytest.mark.unit
    def test_nonce_single_use(self, service, state):
        assert service.verify_state("idp", "nonce-abc", state) is True
        assert service.verify_state("idp", "nonce-abc", state) is False

    @pytest.mark.unit
    def test_without_nonce_store(self, state, clock):
        service = SSOService(MagicMock(), MagicMock(), MagicMock(), clock=clock)

        assert service.verify_state("idp", "nonce-abc", state) is True
        assert service.verify_state("idp", "nonce-abc", state) is True


class TestNormalizeProfile:

    @pytest.mark.unit
    def test_oidc_claims(self):
        profile = SSOService._normalize_profile({
            "sub": "123",
            "email": " Ada@Example.COM ",
            "name": "Ada",
            "picture": "https://img/ada.png",
            "email_verified": True,
        })

        assert profile.subject == "123"
        assert profile.email == "ada@example.com"
        assert profile.avatar_url == "https://img/ada.png"
        assert profile.email_verified is True

    @pytest.mark.unit
    def test_github_style_claims(self):
        profile = SSOService._normalize_profile({
            "id": 987,
            "email": "ada@example.com",
            "avatar_url": "https://img/ada.png",
        })

        assert profile.subject == "987"
        assert profile.avatar_url == "https://img/ada.png"
        assert profile.email_verified is None

    @pytest.mark.unit
    @pytest.mark.parametrize("value,expected", [("true", True), ("false", False), (False, False), (None, None)])
    def test_email_verified_parsing(self, value, expected):
        profile = SSOService._normalize_profile({"sub": "1", "email": "a@b.c", "email_verified": value})
        assert profile.email_verified is expected

    @pytest.mark.unit
    @pytest.mark.parametrize("data", [{"email": "a@b.c"}, {"sub": "1"}, ["not", "a", "dict"]])
    def test_incomplete_profile(self, data):
        with pytest.raises(UserInfoFailedError):
            SSOService._normalize_profile(data)
