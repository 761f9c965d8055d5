"""
Demo app: sign in with any provider configured in the environment
(GOOGLE_CLIENT_ID/GOOGLE_CLIENT_SECRET, FACEBOOK_CLIENT_ID/FACEBOOK_CLIENT_SECRET).
GET /health, {prefix}/signin, {prefix}/callback, /. Port 8000.
"""
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request

from openid_flow.config import PATH_PREFIX, REDIRECT_URI, STORE_DATABASE_URL
from openid_flow.flow import OpenIDFlow, TokenBundle
from openid_flow.provider import Provider
from openid_flow.providers import read_from_env
from openid_flow.routes import OpenIDRoutes
from openid_flow.sql_store import SQLStore
from openid_flow.store import MemoryStore, Store


def create_app(
    providers: dict[str, Provider] | None = None,
    *,
    store: Store | None = None,
    flow: OpenIDFlow | None = None,
) -> FastAPI:
    if flow is None:
        if store is None:
            store = SQLStore(STORE_DATABASE_URL) if STORE_DATABASE_URL else MemoryStore()
        flow = OpenIDFlow(
            providers if providers is not None else read_from_env(),
            store=store,
            global_options={"redirect_uri": REDIRECT_URI} if REDIRECT_URI else None,
        )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        await flow.aclose()

    app = FastAPI(title="OpenID Flow", version="0.1.0", lifespan=lifespan)
    routes = OpenIDRoutes(flow, prefix=PATH_PREFIX)
    app.include_router(routes.router)
    app.state.openid = routes

    @routes.on_authenticated
    def remember_subject(request: Request, tokens: TokenBundle) -> None:
        # Session handling belongs to the application; the demo only keeps the last subject
        request.app.state.last_subject = tokens.claims.get("sub")

    @app.get("/health")
    def health():
        """Health check endpoint."""
        return {"status": "ok", "service": "openid_flow", "providers": flow.provider_ids}

    @app.get("/")
    def home(request: Request):
        return {
            "signin": routes.signin_path,
            "last_subject": getattr(request.app.state, "last_subject", None),
        }

    return app


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "openid_flow.main:create_app",
        factory=True,
        host="127.0.0.1",
        port=8000,
        reload=True,
    )
