"""FastAPI application entry point."""
import asyncio
import logging
from contextlib import asynccontextmanager
from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.sessions import SessionMiddleware

from codedrop.config import DEFAULT_SESSION_SECRET, settings
from codedrop.dependencies import Services, build_services, get_services
from codedrop.services.errors import StorageUnavailable

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


def warn_on_default_session_secret(record_store_type: str, session_secret: str) -> bool:
    """Log a warning when a persistent deployment still signs sessions with the default secret."""
    if record_store_type == "database" and session_secret == DEFAULT_SESSION_SECRET:
        logger.warning("SESSION_SECRET is the default value; set it before exposing the API")
        return True
    return False


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create tables on startup, start the retention sweeper."""
    if settings.RECORD_STORE_TYPE == "database":
        from codedrop.database import engine
        from codedrop.models import Base
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
    else:
        logger.warning("Using in-memory record store: state is per-process and lost on restart")

    warn_on_default_session_secret(settings.RECORD_STORE_TYPE, settings.SESSION_SECRET)
    services = build_services()
    app.state.services = services

    # Purge anything that expired while the service was down, then keep sweeping
    sweeper_task = asyncio.create_task(services.sweeper.run_forever())

    yield

    # Cleanup
    sweeper_task.cancel()
    if settings.RECORD_STORE_TYPE == "database":
        from codedrop.database import engine
        await engine.dispose()


app = FastAPI(
    title="Codedrop API",
    version="1.0.0",
    description="Ephemeral file sharing with short share codes.",
    lifespan=lifespan,
)

# CORS
origins = [o.strip() for o in settings.CORS_ORIGINS.split(",")]
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(SessionMiddleware, secret_key=settings.SESSION_SECRET, same_site="lax")


@app.get("/api/health")
async def health_check(services: Services = Depends(get_services)):
    """Verify API and record store connectivity."""
    try:
        await services.store.ping()
    except StorageUnavailable as e:
        return {"status": "error", "store": str(e)}
    return {"status": "ok", "store": services.store.backend_name}


# Register routers
from codedrop.routes.files import router as files_router
from codedrop.routes.auth import router as auth_router
app.include_router(files_router)
app.include_router(auth_router)


def serve():
    """Console entry point: run the API with uvicorn."""
    import uvicorn
    uvicorn.run("codedrop.main:app", host="0.0.0.0", port=settings.API_PORT)
