"""
PKCE (RFC 7636) and state generation for the authorization request.
S256 only; plain-text challenges are not supported.
"""
import hashlib
import secrets
from base64 import urlsafe_b64encode
from typing import NamedTuple

CODE_CHALLENGE_METHOD = "S256"


class PKCEChallenge(NamedTuple):
    code_verifier: str
    code_challenge: str


def generate_state() -> str:
    """Opaque value for CSRF protection; keys the pending flow and is returned in callback."""
    return secrets.token_urlsafe(32)


def create_challenge() -> PKCEChallenge:
    """
    Generate code_verifier and code_challenge (S256).
    Verifier is 43 chars (32 random bytes, base64url without padding).
    """
    code_verifier = secrets.token_urlsafe(32)
    digest = hashlib.sha256(code_verifier.encode("ascii")).digest()
    code_challenge = urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")
    return PKCEChallenge(code_verifier, code_challenge)
