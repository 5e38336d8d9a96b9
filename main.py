"""API principal - Punto de entrada del motor de tickets y check-in"""
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from sqlalchemy.exc import SQLAlchemyError
from redis.exceptions import RedisError
import logging
from contextlib import asynccontextmanager

from app.core.config import settings
from shared.database.connection import init_db, close_db, check_db
from shared.cache.redis_client import init_redis, close_redis, get_redis
from shared.utils.rate_limiter import limiter, rate_limit_exceeded_handler
from services.ticketing.routes.tickets import router as tickets_router
from services.checkin.routes.checkin import router as checkin_router, close_scanning

# Configurar logging
logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifecycle events de la aplicación"""
    # Startup
    logger.info("Iniciando aplicación...")
    await init_db()
    await init_redis()
    logger.info("Aplicación iniciada")
    yield
    # Shutdown
    logger.info("Cerrando aplicación...")
    await close_scanning()
    await close_db()
    await close_redis()
    logger.info("Aplicación cerrada")


app = FastAPI(
    title="Eventun Ticketing API",
    description="Emisión, compra atómica y check-in por QR de tickets para eventos",
    version="1.0.0",
    lifespan=lifespan
)

# CORS primero (antes de rate limiting)
if settings.APP_ENV == "development":
    logger.info("Modo desarrollo: CORS configurado para permitir todos los orígenes")
    allow_origins = ["*"]
    allow_credentials = False  # No se puede usar credentials con allow_origins=["*"]
else:
    allow_origins = [origin.strip() for origin in settings.CORS_ORIGINS.split(",") if origin.strip()]
    allow_credentials = True
    logger.info(f"CORS origins configurados: {allow_origins}")

app.add_middleware(
    CORSMiddleware,
    allow_origins=allow_origins,
    allow_credentials=allow_credentials,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["*"],
    max_age=3600,
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)

app.include_router(tickets_router, prefix="/api/v1/tickets", tags=["tickets"])
app.include_router(checkin_router, prefix="/api/v1/checkin", tags=["checkin"])


@app.get("/health")
async def health():
    """Health check endpoint"""
    return {"status": "ok", "service": "eventun-ticketing"}


@app.get("/ready")
async def ready():
    """Ready check endpoint - verifica conexiones"""
    try:
        await check_db(max_retries=1)
        redis = await get_redis()
        await redis.ping()
    except (SQLAlchemyError, RedisError, OSError, RuntimeError) as e:
        logger.error(f"Ready check failed: {e}")
        return JSONResponse(status_code=503, content={"status": "not ready", "error": str(e)})

    return {"status": "ready", "database": "connected", "redis": "connected"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.APP_DEBUG
    )
