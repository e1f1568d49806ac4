import os
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from .config import Settings, is_store_configured, settings as default_settings
from .errors import PortalError
from .logging import get_logger, setup_logging, RequestIdMiddleware
from .auth.router import router as auth_router
from .routes.dashboard import router as dashboard_router
from .routes.documents import router as documents_router
from .routes.forum import router as forum_router
from .routes.leave import router as leave_router
from .routes.messages import router as messages_router
from .routes.notifications import router as notifications_router
from .routes.safety import router as safety_router
from .routes.tasks import router as tasks_router
from .routes.users import router as users_router
from .services.analysis import AnalysisClient
from .services.chat_hub import ChatHub
from .services.sessions import SessionManager
from .storage.provider import StorageProvider, get_storage_provider
from .store.provider import RemoteStore, get_remote_store


logger = get_logger(__name__)


def create_app(
    store: Optional[RemoteStore] = None,
    storage: Optional[StorageProvider] = None,
    cfg: Optional[Settings] = None,
    analyzer: Optional[AnalysisClient] = None,
) -> FastAPI:
    setup_logging()
    cfg = cfg or default_settings
    app = FastAPI(title=cfg.app_name)

    store = store or get_remote_store(cfg)
    storage = storage or get_storage_provider(cfg)
    hub = ChatHub()
    app.state.cfg = cfg
    app.state.store = store
    app.state.storage = storage
    app.state.hub = hub
    app.state.sessions = SessionManager(
        store,
        cfg,
        storage=storage,
        analyzer=analyzer or AnalysisClient(cfg),
        hub=hub,
    )

    # Middlewares
    app.add_middleware(RequestIdMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    limiter = Limiter(key_func=get_remote_address, default_limits=[cfg.rate_limit])
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_middleware(SlowAPIMiddleware)

    @app.exception_handler(PortalError)
    async def portal_error_handler(request: Request, exc: PortalError):
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})

    # Routers
    app.include_router(auth_router)
    app.include_router(dashboard_router)
    app.include_router(tasks_router)
    app.include_router(safety_router)
    app.include_router(leave_router)
    app.include_router(messages_router)
    app.include_router(forum_router)
    app.include_router(documents_router)
    app.include_router(users_router)
    app.include_router(notifications_router)

    # Metrics
    Instrumentator().instrument(app).expose(app)

    @app.get("/healthz")
    def healthz():
        return {
            "status": "ok",
            "store_provider": cfg.store_provider,
            "store_configured": store.is_configured(),
            "sessions": len(app.state.sessions),
        }

    @app.on_event("startup")
    async def _startup():
        if cfg.store_provider == "supabase" and not is_store_configured(cfg):
            logger.warning("store_not_configured", detail="SUPABASE_URL/SUPABASE_ANON_KEY missing; reads return nothing")
        logger.info("startup", store_provider=cfg.store_provider, storage_provider=cfg.storage_provider)

    @app.on_event("shutdown")
    async def _shutdown():
        await app.state.sessions.shutdown()
        await store.aclose()
        await storage.aclose()

    # React frontend (SPA) build, when present
    FRONT_DIST = os.path.join("frontend", "dist")
    if os.path.isdir(FRONT_DIST):
        INDEX_PATH = os.path.join(FRONT_DIST, "index.html")

        @app.get("/{full_path:path}", include_in_schema=False)
        def spa_fallback(full_path: str):
            # If a built asset exists, serve it; otherwise serve index.html
            asset_path = os.path.join(FRONT_DIST, full_path)
            if full_path and os.path.isfile(asset_path):
                return FileResponse(asset_path, headers={"Cache-Control": "public, max-age=3600"})
            return FileResponse(INDEX_PATH, headers={"Cache-Control": "no-cache, no-store, must-revalidate"})

    return app


app = create_app()
