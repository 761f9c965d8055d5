"""
Identity token verifiers. A verifier is any callable raw_token -> claims dict,
sync or async. Built in: unverified (insecure default, warns) and JWKSVerifier
(signature checked against the provider's published key set).
"""
import asyncio
import logging
from typing import Any, Awaitable, Callable, Sequence

import jwt
from jwt import PyJWKClient

from openid_flow.errors import VerificationError

logger = logging.getLogger(__name__)

Claims = dict[str, Any]
IdentityTokenVerifier = Callable[[str], Claims | Awaitable[Claims]]


def unverified(raw: str) -> Claims:
    """Decode the identity token payload without checking its signature."""
    logger.warning("No identity token verification configured, using unverified identity token!")
    try:
        return jwt.decode(raw, options={"verify_signature": False})
    except jwt.PyJWTError as e:
        raise VerificationError(f"Malformed identity token: {e}") from e


class JWKSVerifier:
    """
    Verify identity tokens via the provider's JWKS. The key set is cached by PyJWKClient;
    the (blocking) fetch runs in a worker thread when called from async code.
    """

    def __init__(
        self,
        jwks_uri: str,
        *,
        audience: str | None = None,
        issuer: str | None = None,
        algorithms: Sequence[str] = ("RS256",),
        lifespan: int = 300,
    ):
        self.jwks_uri = jwks_uri
        self.audience = audience
        self.issuer = issuer
        self.algorithms = list(algorithms)
        self._client = PyJWKClient(uri=jwks_uri, cache_jwk_set=True, lifespan=lifespan)

    async def __call__(self, raw: str) -> Claims:
        return await asyncio.to_thread(self.verify, raw)

    def verify(self, raw: str) -> Claims:
        """Check signature, exp, and aud/iss when configured. Returns decoded claims."""
        try:
            signing_key = self._client.get_signing_key_from_jwt(raw)
            return jwt.decode(
                raw,
                signing_key.key,
                algorithms=self.algorithms,
                audience=self.audience,
                issuer=self.issuer,
                options={
                    "verify_exp": True,
                    "verify_aud": self.audience is not None,
                    "verify_iss": self.issuer is not None,
                },
            )
        except jwt.ExpiredSignatureError as e:
            raise VerificationError("Identity token expired") from e
        except jwt.InvalidAudienceError as e:
            raise VerificationError("Invalid audience") from e
        except jwt.InvalidIssuerError as e:
            raise VerificationError("Invalid issuer") from e
        except jwt.PyJWTError as e:
            logger.debug("Identity token verification failed: %s", e)
            raise VerificationError("Identity token verification failed") from e
