"""
Shared fixtures: a controllable clock, a mock token endpoint, test providers.
"""
import pytest

from openid_flow.provider import Provider
from openid_flow.tests.fakes import AUTHORIZE_URI, REDIRECT_URI, TOKEN_URI, FakeClock, TokenEndpoint
from openid_flow.verifiers import unverified


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def token_endpoint():
    return TokenEndpoint()


@pytest.fixture
def confidential_provider():
    return Provider(
        authorization_uri=AUTHORIZE_URI,
        token_uri=TOKEN_URI,
        client_id="abc123",
        client_secret="secret",
        verify_identity_token=unverified,
        options={"redirect_uri": REDIRECT_URI},
    )


@pytest.fixture
def public_provider():
    return Provider(
        authorization_uri="https://public.example/auth",
        token_uri="https://public.example/token",
        client_id="public-client",
        verify_identity_token=unverified,
        options={"redirect_uri": REDIRECT_URI},
    )
