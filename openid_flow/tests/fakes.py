"""
Test doubles: a controllable clock and a mock token endpoint.
"""
import json
import time

import httpx
import jwt

AUTHORIZE_URI = "https://idp.example/authorize"
TOKEN_URI = "https://idp.example/token"
REDIRECT_URI = "https://app.example/callback"


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_id_token(**claims) -> str:
    """HS256 token with a throwaway secret; only ever read by non-verifying decoders in tests."""
    now = int(time.time())
    payload = {"iss": "https://idp.example", "sub": "248289761001", "aud": "abc123", "iat": now, "exp": now + 3600}
    payload.update(claims)
    return jwt.encode(payload, "test-secret-not-checked-by-echo-verifier", algorithm="HS256")


def token_response(**overrides) -> dict:
    body = {
        "access_token": "SlAV32hkKG",
        "token_type": "Bearer",
        "refresh_token": "8xLOxBtZp8",
        "expires_in": 3600,
        "id_token": make_id_token(),
    }
    body.update(overrides)
    return body


class TokenEndpoint:
    """httpx.MockTransport handler that records requests and replies with a canned response."""

    def __init__(self, status_code: int = 200, body=None):
        self.status_code = status_code
        self.body = token_response() if body is None else body
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if isinstance(self.body, (dict, list)):
            return httpx.Response(
                self.status_code,
                content=json.dumps(self.body),
                headers={"Content-Type": "application/json", "Cache-Control": "no-store"},
            )
        return httpx.Response(self.status_code, content=self.body)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self))
