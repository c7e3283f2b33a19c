import logging

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from talentree.core.config import Settings, settings

logger = logging.getLogger(__name__)


def build_engine(cfg: Settings):
    """Create the engine with pool and statement timeouts for the configured backend."""
    if cfg.is_sqlite():
        kwargs = {"connect_args": {"check_same_thread": False}}
        if ":memory:" in cfg.DATABASE_URL:
            kwargs["poolclass"] = StaticPool
        return create_engine(cfg.DATABASE_URL, future=True, echo=cfg.DATABASE_ECHO, **kwargs)
    return create_engine(
        cfg.DATABASE_URL,
        future=True,
        echo=cfg.DATABASE_ECHO,
        pool_pre_ping=True,
        pool_size=cfg.DATABASE_POOL_SIZE,
        max_overflow=cfg.DATABASE_MAX_OVERFLOW,
        pool_timeout=cfg.DATABASE_POOL_TIMEOUT,
        connect_args={
            "connect_timeout": cfg.DATABASE_CONNECT_TIMEOUT,
            "options": f"-c statement_timeout={cfg.DATABASE_STATEMENT_TIMEOUT_MS}",
        },
    )


engine = build_engine(settings)
SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False, future=True)


def init_db() -> None:
    """Create tables if they don't exist. Production deployments run migrations instead."""
    from talentree.models.orm import Base

    Base.metadata.create_all(bind=engine)
    logger.info("Database schema ensured")


def get_db():
    db = SessionLocal()
    try:
        yield db
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
