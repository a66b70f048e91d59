from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base
from app.core.config import settings
import logging

logger = logging.getLogger(__name__)

# SQLite (tests/local) no acepta los parámetros de pool de PostgreSQL
_engine_options = {"pool_pre_ping": True, "echo": settings.DEBUG}
if not settings.database_url.startswith("sqlite"):
    _engine_options.update(pool_size=10, max_overflow=20)

engine = create_engine(settings.database_url, **_engine_options)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()

def get_db():
    """Genera una sesión de base de datos por request."""
    db = SessionLocal()
    try:
        yield db
    except Exception as e:
        logger.error(f"Database error: {e}")
        db.rollback()
        raise
    finally:
        db.close()
