"""
Error taxonomy for the authorization code flow.
"""


class OpenIDError(Exception):
    """Base class for every error raised by this package."""


class ConfigurationError(OpenIDError):
    """Invalid setup (providers, options, paths). Fatal, never retried."""


class FlowStateError(OpenIDError):
    """No pending flow for the given state, or no authorization code."""


class TransportError(OpenIDError):
    """Token endpoint answered with a non-2xx status, or the request itself failed."""

    def __init__(self, message: str, status_code: int | None = None, status_text: str | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.status_text = status_text


class ProtocolError(OpenIDError):
    """Token endpoint response is not a usable token response."""


class VerificationError(OpenIDError):
    """Identity token rejected by one of the built-in verifiers."""
