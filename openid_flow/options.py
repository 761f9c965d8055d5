"""
Authentication request options (OpenID Connect Core 1.0 §3.1.2.1).

Three layers are merged per call: global < provider defaults < per-call. A layer's keys
replace the previous layer's same keys entirely; None counts as "not set".

Not configurable on purpose: response_type (always "code"), response_mode (provider default)
and state (generated per flow).
"""
from dataclasses import dataclass, fields
from typing import Any, Iterable, Mapping, Sequence

from openid_flow.errors import ConfigurationError

OPTION_KEYS = (
    "scope",
    "redirect_uri",
    "display",
    "prompt",
    "max_age",
    "ui_locales",
    "acr_values",
    "nonce",
    "login_hint",
    "id_token_hint",
)

Options = Mapping[str, Any]


@dataclass(frozen=True)
class EffectiveOptions:
    """Merged options for one authentication attempt. scope always contains openid."""

    scope: str
    redirect_uri: str
    display: str | None = None  # page | popup | touch | wap
    prompt: str | Sequence[str] | None = None  # none | login | consent | select_account
    max_age: int | None = None
    ui_locales: str | Sequence[str] | None = None
    acr_values: str | Sequence[str] | None = None
    nonce: str | None = None
    login_hint: str | None = None
    id_token_hint: str | None = None

    def items(self) -> list[tuple[str, Any]]:
        """(name, value) pairs in declaration order, including unset ones."""
        return [(f.name, getattr(self, f.name)) for f in fields(self)]


def normalize_scope(scope: str | Sequence[str] | None) -> str:
    """
    Space-delimited scope string that always starts with openid when it was missing.
    Accepts a list or a space-delimited string; trims and drops empties, keeps order.
    Repeated scopes are passed through as given.
    """
    if not scope:
        return "openid"
    raw = scope.split() if isinstance(scope, str) else [str(s) for s in scope]
    scopes: list[str] = []
    for s in raw:
        s = s.strip()
        if s:
            scopes.append(s)
    if "openid" not in scopes:
        scopes.insert(0, "openid")
    return " ".join(scopes)


def merge_options(
    global_options: Options | None = None,
    provider_options: Options | None = None,
    per_call_options: Options | None = None,
) -> EffectiveOptions:
    """Merge the three layers, normalize scope, require redirect_uri."""
    merged: dict[str, Any] = {}
    for layer in (global_options, provider_options, per_call_options):
        if not layer:
            continue
        unknown = sorted(set(layer) - set(OPTION_KEYS))
        if unknown:
            raise ConfigurationError(f"Unknown authentication option(s): {', '.join(unknown)}")
        merged.update({k: v for k, v in layer.items() if v is not None})

    merged["scope"] = normalize_scope(merged.get("scope"))
    if not merged.get("redirect_uri"):
        raise ConfigurationError("Missing redirect_uri")
    return EffectiveOptions(**merged)


def create_search_params(items: Iterable[tuple[str, Any]]) -> list[tuple[str, str]]:
    """
    Serialize request parameters into ordered query pairs.

    Falsy values are left out. A list value is emitted both as one space-joined
    pair and as one pair per item (providers differ in which form they read).
    """
    params: list[tuple[str, str]] = []
    for key, value in items:
        if not value:
            continue
        if isinstance(value, (list, tuple)):
            params.append((key, " ".join(str(item) for item in value)))
            params.extend((key, str(item)) for item in value)
        else:
            params.append((key, str(value)))
    return params
