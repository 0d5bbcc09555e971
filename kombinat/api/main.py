import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from kombinat.api.routes import router
from kombinat.config import CORS_ORIGINS_EXTRA, STATE_BACKEND, TICK_INTERVAL_SEC
from kombinat.core.session import SessionRegistry
from kombinat.infrastructure.cache import close_cache
from kombinat.infrastructure.database import close_db, init_db
from kombinat.infrastructure.persistence import get_state_store

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    use_postgres = STATE_BACKEND != "memory"
    if use_postgres:
        await init_db()
    registry = SessionRegistry(get_state_store())
    app.state.registry = registry
    stop_event = asyncio.Event()
    # Фоновый пересчёт исследований у открытых сессий
    ticker_task = asyncio.create_task(registry.run_ticker(stop_event, TICK_INTERVAL_SEC))
    logger.info("kombinat: started, backend=%s", STATE_BACKEND)
    yield
    stop_event.set()
    await ticker_task
    await registry.close_all()
    if use_postgres:
        await close_cache()
        await close_db()
    logger.info("kombinat: stopped")


# При allow_credentials=True нельзя использовать allow_origins=["*"] — браузер требует явный origin
CORS_ORIGINS = [
    "http://localhost:5173",
    "http://127.0.0.1:5173",
    "http://localhost:8080",
    "http://127.0.0.1:8080",
    "https://web.telegram.org",
    "https://t.me",
] + list(CORS_ORIGINS_EXTRA)

app = FastAPI(
    title="Kombinat Game API",
    version="1.0.0",
    lifespan=lifespan,
)
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.include_router(router)


def _cors_headers_for_request(request: Request) -> dict:
    origin = request.headers.get("origin")
    if origin and origin in CORS_ORIGINS:
        return {"Access-Control-Allow-Origin": origin}
    return {}


async def exception_handler_500(request: Request, exc: Exception) -> JSONResponse:
    """Необработанные исключения: 500 без stack trace. HTTPException обрабатывает FastAPI."""
    if isinstance(exc, HTTPException):
        raise exc
    logger.exception(exc)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal Server Error"},
        headers=_cors_headers_for_request(request),
    )


app.add_exception_handler(Exception, exception_handler_500)


@app.get("/health")
def health():
    return {"status": "ok"}
