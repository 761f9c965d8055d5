"""
Preset providers. Client id and secret come from the arguments, or else from
{PREFIX}_CLIENT_ID / {PREFIX}_CLIENT_SECRET in the environment. Identity tokens
are verified against the provider's published JWKS.
"""
import os
from typing import Any, Callable, Mapping

from openid_flow.errors import ConfigurationError
from openid_flow.provider import Provider
from openid_flow.verifiers import JWKSVerifier, unverified


def google(environ: Mapping[str, str] | None = None, **overrides: Any) -> Provider:
    return _create_provider(
        "GOOGLE",
        overrides,
        environ,
        auth="https://accounts.google.com/o/oauth2/v2/auth",
        token="https://oauth2.googleapis.com/token",
        keys="https://www.googleapis.com/oauth2/v3/certs",
    )


def facebook(environ: Mapping[str, str] | None = None, **overrides: Any) -> Provider:
    return _create_provider(
        "FACEBOOK",
        overrides,
        environ,
        auth="https://www.facebook.com/v18.0/dialog/oauth",
        token="https://graph.facebook.com/v18.0/oauth/access_token",
        keys="https://www.facebook.com/.well-known/oauth/openid/jwks/",
    )


PRESETS: dict[str, Callable[..., Provider]] = {
    "facebook": facebook,
    "google": google,
}


def _create_provider(
    prefix: str,
    overrides: dict[str, Any],
    environ: Mapping[str, str] | None,
    *,
    auth: str,
    token: str,
    keys: str | None = None,
) -> Provider:
    env = os.environ if environ is None else environ
    values = dict(overrides)
    if not values.get("client_id"):
        values["client_id"] = _get_from_env(env, prefix, "CLIENT_ID")
    if not values.get("client_secret"):
        values["client_secret"] = _get_from_env(env, prefix, "CLIENT_SECRET")
    values.setdefault("authorization_uri", auth)
    values.setdefault("token_uri", token)
    if "verify_identity_token" not in values:
        values["verify_identity_token"] = JWKSVerifier(keys, audience=values["client_id"]) if keys else unverified
    return Provider(**values)


def _get_from_env(env: Mapping[str, str], prefix: str, suffix: str) -> str:
    key = f"{prefix}_{suffix}"
    value = env.get(key)
    if not value:
        raise ConfigurationError(f"Missing {key} environment variable")
    return value


def read_from_env(environ: Mapping[str, str] | None = None) -> dict[str, Provider]:
    """Every preset whose {PREFIX}_CLIENT_ID is set. A client id without a secret is an error."""
    env = os.environ if environ is None else environ
    result: dict[str, Provider] = {}
    for provider_id, factory in PRESETS.items():
        prefix = provider_id.upper()
        if not env.get(f"{prefix}_CLIENT_ID"):
            continue
        if not env.get(f"{prefix}_CLIENT_SECRET"):
            raise ConfigurationError(
                f"{prefix}_CLIENT_ID exists in environment, but {prefix}_CLIENT_SECRET is missing"
            )
        result[provider_id] = factory(env)
    return result
