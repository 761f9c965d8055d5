"""
OpenID flow configuration. Read once from the environment; every value is only a
constructor default, callers inject their own at construction time.
"""
import os

# TTL seconds for a pending flow (user has to finish login at the provider within this window)
FLOW_TTL_SECONDS = float(os.environ.get("OIDC_FLOW_TTL_SECONDS", "600"))

# Token endpoint request timeout (seconds)
HTTP_TIMEOUT = float(os.environ.get("OIDC_HTTP_TIMEOUT", "10.0"))

# Global redirect_uri option for the demo app; empty = derived from the request
REDIRECT_URI = os.environ.get("OIDC_REDIRECT_URI", "").strip() or None

# SQLAlchemy URL for the database-backed flow store. Empty = in-memory store.
STORE_DATABASE_URL = os.environ.get("OIDC_STORE_DATABASE_URL", "").strip() or None

# Route prefix for signin/callback
PATH_PREFIX = os.environ.get("OIDC_PATH_PREFIX", "/openid").rstrip("/") or "/openid"
