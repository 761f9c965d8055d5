"""
FastAPI routes for the two flow phases: GET {prefix}/signin and GET {prefix}/callback.
Maps the redirect descriptor and token bundle onto framework responses; user sessions
are left to on_authenticated listeners.
"""
import inspect
import logging
import re
from typing import Any, Awaitable, Callable

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import RedirectResponse

from openid_flow.errors import (
    ConfigurationError,
    FlowStateError,
    ProtocolError,
    TransportError,
    VerificationError,
)
from openid_flow.flow import OpenIDFlow, TokenBundle

logger = logging.getLogger(__name__)

OnAuthenticated = Callable[[Request, TokenBundle], Awaitable[str | None] | str | None]

_VALID_SEGMENT = re.compile(r"[A-Za-z0-9\-_.~]+")


def validate_path(name: str, value: str) -> None:
    """'/a/b' style: leading slash, no trailing slash, no empty or odd segments."""
    first, *segments = value.split("/")
    if first or not segments or not all(_VALID_SEGMENT.fullmatch(s) for s in segments):
        raise ConfigurationError(f"Invalid path '{name}' = '{value}' is not a valid pathname")


def _error(status_code: int, error: str, description: str) -> HTTPException:
    return HTTPException(status_code=status_code, detail={"error": error, "error_description": description})


class OpenIDRoutes:
    def __init__(
        self,
        flow: OpenIDFlow,
        *,
        prefix: str = "/openid",
        signin: str = "/signin",
        callback: str = "/callback",
        provider_param: str = "provider",
        redirect_param: str = "redirect",
    ):
        for name, value in (("prefix", prefix), ("signin", signin), ("callback", callback)):
            validate_path(name, value)
        self.flow = flow
        self.signin_path = f"{prefix}{signin}"
        self.callback_path = f"{prefix}{callback}"
        self.provider_param = provider_param
        self.redirect_param = redirect_param
        self._listeners: list[OnAuthenticated] = []

        self.router = APIRouter(tags=["openid"])
        self.router.add_api_route(self.signin_path, self.signin, methods=["GET"])
        self.router.add_api_route(self.callback_path, self.callback, methods=["GET"])

    def on_authenticated(self, listener: OnAuthenticated) -> OnAuthenticated:
        """Register a listener; usable as a decorator. Its return value, if any, is the redirect target."""
        self._listeners.append(listener)
        return listener

    def _pick_provider(self, request: Request) -> str:
        provider_ids = self.flow.provider_ids
        if len(provider_ids) == 1:
            return provider_ids[0]
        provider_id = request.query_params.get(self.provider_param)
        if not provider_id:
            raise _error(
                400,
                "invalid_request",
                f"No OpenID provider ID found for signin. Provide a '{self.provider_param}' query parameter.",
            )
        return provider_id

    async def signin(self, request: Request) -> RedirectResponse:
        """Start the flow; the callback URI is derived from the incoming request's origin."""
        provider_id = self._pick_provider(request)
        origin = f"{request.url.scheme}://{request.url.netloc}"
        # redirect_uri sent to the provider vs. where the user goes once signed in
        callback_uri = f"{origin}{self.callback_path}"
        return_to = (
            request.query_params.get(self.redirect_param) or request.headers.get("referer") or "/"
        )
        try:
            redirect = await self.flow.authenticate(
                provider_id,
                {"redirect_uri": callback_uri},
                {"redirect_uri": return_to},
            )
        except ConfigurationError as e:
            raise _error(400, "invalid_request", str(e))
        return RedirectResponse(url=redirect.location, status_code=redirect.status_code)

    async def callback(self, request: Request) -> RedirectResponse:
        """Handle redirect from the provider (?code=...&state=... or ?error=...)."""
        params = request.query_params
        error = params.get("error")
        if error:
            raise _error(400, error, params.get("error_description") or error)

        try:
            tokens = await self.flow.code_exchange(params.get("state"), params.get("code"))
        except FlowStateError as e:
            raise _error(400, "invalid_request", str(e))
        except VerificationError as e:
            raise _error(401, "invalid_token", str(e))
        except (TransportError, ProtocolError) as e:
            logger.warning("Code exchange failed: %s", e)
            raise _error(502, "server_error", str(e))

        location: Any = None
        for listener in self._listeners:
            result = listener(request, tokens)
            if inspect.isawaitable(result):
                result = await result
            location = result or location
        if not location and isinstance(tokens.info, dict):
            location = tokens.info.get("redirect_uri")
        return RedirectResponse(url=location or "/", status_code=302)
