"""Conexión a la base de datos (PostgreSQL en producción, SQLite en desarrollo/tests)"""
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.orm import declarative_base
import os
from typing import AsyncGenerator, Optional
import logging
import asyncio

from app.core.config import settings

logger = logging.getLogger(__name__)

# Base para modelos SQLAlchemy
Base = declarative_base()

# Engine y session factory
engine = None
async_session_maker = None


def to_async_url(database_url: str) -> str:
    """Convertir una URL de base de datos a su driver async"""
    # Limpiar parámetros de la URL (SSL y similares se configuran en connect_args)
    if database_url.startswith("postgres") and "?" in database_url:
        database_url = database_url.split("?")[0]

    if database_url.startswith("postgresql://"):
        return database_url.replace("postgresql://", "postgresql+asyncpg://", 1)
    if database_url.startswith("postgresql+psycopg://"):
        return database_url.replace("postgresql+psycopg://", "postgresql+asyncpg://", 1)
    if database_url.startswith("sqlite://"):
        return database_url.replace("sqlite://", "sqlite+aiosqlite://", 1)
    return database_url


async def init_db(database_url: Optional[str] = None, create_all: Optional[bool] = None):
    """Inicializar conexión a la base de datos"""
    global engine, async_session_maker

    if engine is not None:
        logger.warning("Database engine already initialized, skipping...")
        return

    database_url = to_async_url(database_url or settings.DATABASE_URL)
    logger.info(f"Initializing database connection to: {database_url.split('@')[1] if '@' in database_url else database_url}")
    logger.info(f"Using async driver: {database_url.split(':')[0]}")

    engine_kwargs = {"echo": settings.APP_DEBUG}
    if database_url.startswith("postgresql"):
        engine_kwargs.update({
            "pool_pre_ping": True,  # Verificar conexiones antes de usar
            "pool_recycle": 300,
            "pool_timeout": 30,
            "pool_use_lifo": True,
            "pool_size": int(os.getenv("DATABASE_POOL_SIZE", "5")),
            "max_overflow": int(os.getenv("DATABASE_MAX_OVERFLOW", "10")),
        })
    elif database_url.startswith("sqlite"):
        # Esperar el lock de escritura en vez de fallar con "database is locked"
        engine_kwargs["connect_args"] = {"timeout": 30}

    engine = create_async_engine(database_url, **engine_kwargs)

    async_session_maker = async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False
    )

    if create_all if create_all is not None else settings.DATABASE_CREATE_ALL:
        # Importar modelos para registrarlos en Base.metadata
        from shared.database import models  # noqa: F401
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database tables created")

    logger.info("Database engine initialized successfully")


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Dependency para obtener sesión de base de datos"""
    if async_session_maker is None:
        logger.error("Database not initialized! Call init_db() first.")
        raise RuntimeError("Database not initialized. Please check application startup.")

    async with async_session_maker() as session:
        yield session


async def check_db(max_retries: int = 3) -> None:
    """
    Verificar la conexión con retry para errores transitorios.

    Maneja errores de DNS y socket con backoff exponencial.
    """
    from sqlalchemy import text

    if async_session_maker is None:
        raise RuntimeError("Database not initialized. Please check application startup.")

    retry_delay = 0.5
    for attempt in range(max_retries):
        try:
            async with async_session_maker() as session:
                await session.execute(text("SELECT 1"))
            return
        except OSError as e:
            # socket.gaierror es subclase de OSError
            if attempt == max_retries - 1:
                logger.error(f"Database connection failed after {max_retries} attempts: {e}")
                raise
            delay = retry_delay * (2 ** attempt)
            logger.warning(
                f"Database connection error (attempt {attempt + 1}/{max_retries}): {type(e).__name__}: {e}. "
                f"Retrying in {delay:.1f}s..."
            )
            await asyncio.sleep(delay)


async def close_db():
    """Cerrar conexiones a la base de datos"""
    global engine, async_session_maker
    if engine:
        logger.info("Closing database connections...")
        await engine.dispose()
        engine = None
        async_session_maker = None
        logger.info("Database connections closed")
