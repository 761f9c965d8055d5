"""
Client side of the OpenID Connect Authorization Code Flow with PKCE
(https://openid.net/specs/openid-connect-core-1_0.html#CodeFlowAuth).

Two phases, one method each:

1. authenticate: build the authentication request, store a pending flow keyed by a fresh
   state value, return the redirect to the provider's authorization endpoint.
2. code_exchange: consume the pending flow for the returned state (single use), exchange
   the authorization code at the token endpoint, verify the identity token.

A pending flow that is never completed expires from the store after flow_ttl seconds.
"""
import base64
import inspect
import logging
from dataclasses import asdict, dataclass, field
from typing import Any, Mapping
from urllib.parse import urlencode, urlsplit, urlunsplit

import httpx

from openid_flow.config import FLOW_TTL_SECONDS, HTTP_TIMEOUT
from openid_flow.errors import ConfigurationError, FlowStateError, ProtocolError, TransportError
from openid_flow.options import Options, create_search_params, merge_options
from openid_flow.pkce import CODE_CHALLENGE_METHOD, create_challenge, generate_state
from openid_flow.provider import Provider
from openid_flow.store import MemoryStore, Store
from openid_flow.verifiers import Claims

logger = logging.getLogger(__name__)

# Token response fields without which the exchange is unusable
REQUIRED_TOKEN_FIELDS = ("access_token", "token_type", "id_token")


@dataclass(frozen=True)
class RedirectDescriptor:
    """Where to send the user agent. Mapped onto a framework response by the caller."""

    location: str
    permanent: bool = False

    @property
    def status_code(self) -> int:
        return 301 if self.permanent else 302


@dataclass
class PendingFlow:
    provider_id: str
    code_verifier: str
    # redirect_uri actually sent in the authentication request; must be repeated verbatim
    redirect_uri: str
    info: Any = None

    def to_record(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "PendingFlow":
        return cls(
            provider_id=record["provider_id"],
            code_verifier=record["code_verifier"],
            redirect_uri=record["redirect_uri"],
            info=record.get("info"),
        )


@dataclass
class TokenBundle:
    access_token: str
    token_type: str
    claims: Claims
    provider_id: str
    info: Any = None
    expires_in: int | None = None
    refresh_token: str | None = field(default=None, repr=False)
    scope: str | None = None
    # Any other token response fields, as returned
    extra: dict[str, Any] = field(default_factory=dict)


class OpenIDFlow:
    def __init__(
        self,
        providers: Mapping[str, Provider],
        *,
        store: Store | None = None,
        global_options: Options | None = None,
        http_client: httpx.AsyncClient | None = None,
        flow_ttl: float = FLOW_TTL_SECONDS,
    ):
        self._providers = dict(providers)
        self._store = store if store is not None else MemoryStore()
        self._global_options = global_options
        self._http_client = http_client
        self._owns_client = http_client is None
        self._flow_ttl = flow_ttl
        self._validate_configuration()

    def _validate_configuration(self) -> None:
        if not self._providers:
            raise ConfigurationError("No OpenID providers configured")
        for provider_id, provider in self._providers.items():
            if not provider.authorization_uri:
                raise ConfigurationError(f"OpenID provider {provider_id} is missing authorization_uri")
            if not provider.token_uri:
                raise ConfigurationError(f"OpenID provider {provider_id} is missing token_uri")
        if self._flow_ttl <= 0:
            raise ConfigurationError("flow_ttl must be positive")

    @property
    def provider_ids(self) -> list[str]:
        return list(self._providers)

    def _get_provider(self, provider_id: str) -> Provider:
        provider = self._providers.get(provider_id)
        if provider is None:
            raise ConfigurationError(
                f"No OpenID client configured for ID '{provider_id}'. "
                f"Known client IDs are {', '.join(self._providers)}."
            )
        return provider

    async def authenticate(
        self,
        provider_id: str,
        per_call_options: Options | None = None,
        info: Any = None,
    ) -> RedirectDescriptor:
        """
        Phase 1. Returns a temporary redirect to the provider's authorization endpoint.
        info is stored with the pending flow and handed back by code_exchange.
        """
        provider = self._get_provider(provider_id)
        options = merge_options(self._global_options, provider.options, per_call_options)

        code_verifier, code_challenge = create_challenge()
        state = generate_state()
        params = create_search_params(
            [
                *options.items(),
                ("client_id", provider.client_id),
                ("response_type", "code"),
                ("code_challenge_method", CODE_CHALLENGE_METHOD),
                ("code_challenge", code_challenge),
                ("state", state),
            ]
        )
        url = urlunsplit(urlsplit(provider.authorization_uri)._replace(query=urlencode(params), fragment=""))

        pending = PendingFlow(
            provider_id=provider_id,
            code_verifier=code_verifier,
            redirect_uri=options.redirect_uri,
            info=info,
        )
        await self._store.set(state, pending.to_record(), self._flow_ttl)
        logger.info("Authorization code flow started for provider=%s", provider_id)
        return RedirectDescriptor(location=url)

    async def _consume(self, state: str | None, code: str | None) -> PendingFlow:
        """Take the pending flow out of the store. At most one caller per state gets it."""
        if not state:
            raise FlowStateError("No OpenID session found.")
        if not code:
            # Leave the pending flow in place; the provider may still redirect with a code
            if await self._store.get(state) is None:
                raise FlowStateError("No OpenID session found.")
            raise FlowStateError("No authorization code provided.")
        record = await self._store.take(state)
        if record is None:
            raise FlowStateError("No OpenID session found.")
        return PendingFlow.from_record(record)

    async def code_exchange(self, state: str | None, code: str | None) -> TokenBundle:
        """
        Phase 2. The pending flow is deleted before the token request, so a failed
        exchange cannot be retried with the same state.
        """
        pending = await self._consume(state, code)
        provider = self._get_provider(pending.provider_id)

        headers = {
            "Accept": "application/json",
            "Content-Type": "application/x-www-form-urlencoded",
        }
        data = {
            "grant_type": "authorization_code",
            "code": code,
            "code_verifier": pending.code_verifier,
            "redirect_uri": pending.redirect_uri,
        }
        if provider.client_secret:
            credentials = f"{provider.client_id}:{provider.client_secret}".encode("utf-8")
            headers["Authorization"] = "Basic " + base64.b64encode(credentials).decode("ascii")
        else:
            # Public client: no client authentication, identify by client_id only
            data["client_id"] = provider.client_id

        request = httpx.Request("POST", provider.token_uri, headers=headers, data=data)
        token_response = await self._fetch_tokens(request)

        raw_id_token = token_response.pop("id_token")
        claims = provider.verify_identity_token(raw_id_token)
        if inspect.isawaitable(claims):
            claims = await claims

        logger.info("Authorization code exchanged for provider=%s", pending.provider_id)
        return TokenBundle(
            access_token=token_response.pop("access_token"),
            token_type=token_response.pop("token_type"),
            claims=claims,
            provider_id=pending.provider_id,
            info=pending.info,
            expires_in=token_response.pop("expires_in", None),
            refresh_token=token_response.pop("refresh_token", None),
            scope=token_response.pop("scope", None),
            extra=token_response,
        )

    async def _fetch_tokens(self, request: httpx.Request) -> dict[str, Any]:
        try:
            response = await self._client().send(request)
        except httpx.HTTPError as e:
            raise TransportError(f"Code exchange failed: {e}") from e
        if not response.is_success:
            raise TransportError(
                f"Code exchange failed: {response.reason_phrase}",
                status_code=response.status_code,
                status_text=response.reason_phrase,
            )
        try:
            body = response.json()
        except ValueError as e:
            raise ProtocolError("Token response is not valid JSON") from e
        if not isinstance(body, dict):
            raise ProtocolError("Token response is not a JSON object")
        missing = [name for name in REQUIRED_TOKEN_FIELDS if not body.get(name)]
        if missing:
            raise ProtocolError(f"Token response missing required field(s): {', '.join(missing)}")
        return body

    def _client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=HTTP_TIMEOUT)
        return self._http_client

    async def aclose(self) -> None:
        """Close the HTTP client if this instance created it."""
        if self._owns_client and self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None

    async def __aenter__(self) -> "OpenIDFlow":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()
