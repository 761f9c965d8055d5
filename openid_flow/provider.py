"""
Static configuration for one OpenID provider.
"""
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Mapping

from openid_flow.verifiers import IdentityTokenVerifier


@dataclass(frozen=True)
class Provider:
    authorization_uri: str
    token_uri: str
    # OAuth 2.0 client identifier valid at the authorization server
    client_id: str
    verify_identity_token: IdentityTokenVerifier
    # Confidential clients only; public clients send client_id in the token request body
    client_secret: str | None = field(default=None, repr=False)
    options: Mapping[str, Any] | None = None

    def __post_init__(self):
        if self.options is not None:
            object.__setattr__(self, "options", MappingProxyType(dict(self.options)))
