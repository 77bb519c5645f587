from contextlib import contextmanager
from sqlalchemy import create_engine, event
from sqlalchemy.exc import DBAPIError
from sqlalchemy.orm import sessionmaker, declarative_base, Session
from app.common.exceptions import TransactionConflictError
from app.core.config import settings
import logging

logger = logging.getLogger(__name__)


def build_engine(url: str):
    """Crea el engine con el nivel de aislamiento que requiere el ledger."""
    if url.startswith("sqlite"):
        engine = create_engine(
            url,
            connect_args={"check_same_thread": False, "timeout": 30},
            echo=settings.DEBUG and settings.ENVIRONMENT != "test",
        )

        @event.listens_for(engine, "connect")
        def _enable_foreign_keys(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        return engine

    return create_engine(
        url,
        pool_pre_ping=True,
        pool_size=10,
        max_overflow=20,
        isolation_level="SERIALIZABLE",
        echo=settings.DEBUG,
    )


engine = build_engine(settings.database_url)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db():
    """Genera una sesión de base de datos por request."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def transaction(db: Session):
    """
    Unidad de trabajo atómica.

    Confirma al salir sin errores; ante cualquier excepción hace rollback
    completo (incluida cualquier secuencia ya asignada) y la propaga. Los
    abortos por serialización o deadlock se reportan como conflicto reintentable.
    """
    try:
        yield db
        db.commit()
    except DBAPIError as e:
        db.rollback()
        if is_serialization_failure(e):
            logger.warning(f"Transaction aborted by concurrent access: {str(e.orig)}")
            raise TransactionConflictError() from e
        raise
    except Exception:
        db.rollback()
        raise


SERIALIZATION_FAILURE_CODES = {"40001", "40P01"}


def is_serialization_failure(error: DBAPIError) -> bool:
    code = getattr(error.orig, "pgcode", None)
    return code in SERIALIZATION_FAILURE_CODES


def is_unique_violation(error: DBAPIError) -> bool:
    if getattr(error.orig, "pgcode", None) == "23505":
        return True
    return "UNIQUE constraint failed" in str(error.orig)
