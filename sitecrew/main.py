import os
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from prometheus_fastapi_instrumentator import Instrumentator
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy import inspect
import structlog

from .config import settings
from .db import Base, engine
from .logging import setup_logging, RequestIdMiddleware
from .auth.router import router as auth_router
from .routes.worker import router as worker_router
from .routes.attendance import router as attendance_router
from .routes.supervisor import router as supervisor_router
from .routes.projects import router as projects_router
from .services.maintenance import has_single_active_index


logger = structlog.get_logger(__name__)


def create_app() -> FastAPI:
    setup_logging()
    app = FastAPI(title=settings.app_name)

    # Middlewares
    app.add_middleware(RequestIdMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    limiter = Limiter(key_func=get_remote_address, default_limits=[settings.rate_limit])
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_middleware(SlowAPIMiddleware)

    # Routers
    app.include_router(auth_router)
    app.include_router(worker_router)
    app.include_router(attendance_router)
    app.include_router(supervisor_router)
    app.include_router(projects_router)

    # Metrics
    Instrumentator().instrument(app).expose(app)

    @app.get("/healthz")
    def healthz():
        return {"status": "ok"}

    @app.on_event("startup")
    def _startup():
        print("[startup] Initializing application...")
        # Ensure local SQLite directory exists
        if settings.database_url.startswith("sqlite:///./"):
            os.makedirs("var", exist_ok=True)
        if settings.auto_create_db:
            existing_tables = set(inspect(engine).get_table_names())
            missing = set(Base.metadata.tables.keys()) - existing_tables
            if missing:
                print(f"[startup] Creating {len(missing)} missing tables...")
                Base.metadata.create_all(bind=engine)
                print("[startup] Tables created/verified")
            else:
                print("[startup] All tables already exist")
        if "worker_task_assignments" in set(inspect(engine).get_table_names()) and not has_single_active_index(engine):
            logger.warning(
                "single_active_index_missing",
                hint="run scripts/add_single_active_task_index.py",
            )
        print("[startup] Application ready")

    return app


app = create_app()
