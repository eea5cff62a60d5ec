import logging
from contextlib import contextmanager

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import SQLModel, Session, create_engine

from .config import DATABASE_URL
from .errors import HuntError, StorageError, WriteConflict

logger = logging.getLogger(__name__)

# SQLAlchemy database engine
engine = create_engine(DATABASE_URL, pool_pre_ping=True)


def create_db_and_tables():
    # Import the models so their tables are registered on the metadata
    from .models import audit_log, challenge, participant  # noqa: F401

    SQLModel.metadata.create_all(engine)


def get_session():
    with Session(engine) as session:
        yield session


@contextmanager
def transaction(session: Session):
    """Commit on success, roll back on any error.

    Integrity violations surface as WriteConflict, other database errors as
    StorageError; both tell the caller the operation may be retried.
    """
    try:
        yield session
        session.commit()
    except IntegrityError as e:
        session.rollback()
        logger.warning(f"Integrity error, rolled back: {e}")
        raise WriteConflict() from e
    except SQLAlchemyError as e:
        session.rollback()
        logger.error(f"Database error, rolled back: {e}")
        raise StorageError("Storage failure, please retry") from e
    except HuntError:
        session.rollback()
        raise
