"""Database configuration and initialization."""
import logging
from contextlib import contextmanager

from sqlalchemy import create_engine, BigInteger, Integer
from sqlalchemy.orm import scoped_session, sessionmaker, declarative_base
from sqlalchemy.pool import StaticPool

logger = logging.getLogger(__name__)

# Create SQLAlchemy base
Base = declarative_base()

# BIGSERIAL on PostgreSQL, INTEGER PRIMARY KEY (rowid alias) on SQLite
BigIntPK = BigInteger().with_variant(Integer, 'sqlite')

# Global session and engine
engine = None
db_session = None


def init_engine(database_uri, echo=False):
    """Create the engine and the scoped session factory."""
    global engine, db_session

    if database_uri.startswith('sqlite'):
        # Single shared connection so in-memory databases survive across sessions
        engine = create_engine(
            database_uri,
            echo=echo,
            poolclass=StaticPool,
            connect_args={'check_same_thread': False}
        )
    else:
        engine = create_engine(
            database_uri,
            echo=echo,
            pool_pre_ping=True,  # Enable connection health checks
            pool_size=10,
            max_overflow=20
        )

    db_session = scoped_session(
        sessionmaker(autocommit=False, autoflush=False, bind=engine)
    )

    Base.query = db_session.query_property()
    return engine


def init_db(app):
    """Initialize database connection."""
    init_engine(
        app.config['SQLALCHEMY_DATABASE_URI'],
        echo=app.config.get('SQLALCHEMY_ECHO', False)
    )

    # Register teardown
    @app.teardown_appcontext
    def shutdown_session(exception=None):
        """Close database session and rollback on error."""
        if exception:
            db_session.rollback()
        db_session.remove()


def create_all():
    """Create every table registered on the declarative base."""
    import stockroom.models  # noqa: F401 - registers mappers

    Base.metadata.create_all(bind=engine)


def drop_all():
    """Drop every table registered on the declarative base."""
    import stockroom.models  # noqa: F401 - registers mappers

    Base.metadata.drop_all(bind=engine)


def get_session():
    """Get database session."""
    return db_session


@contextmanager
def atomic(session):
    """
    Unit of work around a ledger mutation.

    Commits when the block exits cleanly; rolls back and re-raises on any
    exception so partial writes are never visible to other sessions.
    """
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        logger.debug("Unit of work rolled back")
        raise
