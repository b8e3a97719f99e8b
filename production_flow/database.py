import os
import logging
from sqlalchemy import create_engine, event
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.exc import SQLAlchemyError
from dotenv import load_dotenv

# Load environment variables
load_dotenv()

# Set up logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# Get database URL from environment variable
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./production_flow.db")

logger.info(f"Using database URL: {DATABASE_URL}")


def enable_sqlite_write_locking(sqlite_engine):
    """
    Start every SQLite transaction with BEGIN IMMEDIATE.

    pysqlite's deferred BEGIN lets two connections both hold a read lock and
    then fail to upgrade ("database is locked"); taking the write lock up
    front makes concurrent writers queue on the busy timeout instead.
    """
    @event.listens_for(sqlite_engine, "connect")
    def _disable_pysqlite_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(sqlite_engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def build_engine(database_url: str):
    """Create an engine with pool settings suited to the backend."""
    echo = os.getenv("SQL_ECHO", "false").lower() == "true"

    if database_url.startswith("sqlite"):
        sqlite_engine = create_engine(
            database_url,
            connect_args={"check_same_thread": False, "timeout": 30},
            echo=echo
        )
        enable_sqlite_write_locking(sqlite_engine)
        return sqlite_engine

    return create_engine(
        database_url,
        pool_size=int(os.getenv("DB_POOL_SIZE", "8")),
        max_overflow=int(os.getenv("DB_MAX_OVERFLOW", "2")),
        pool_pre_ping=True,
        pool_recycle=1800,    # Recycle every 30 min
        echo=echo
    )


Base = declarative_base()

try:
    engine = build_engine(DATABASE_URL)

    # Test connection
    with engine.connect() as connection:
        logger.info("Database connection successful!")

    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

except SQLAlchemyError as e:
    logger.error(f"Database connection error: {e}")
    logger.error("Please check your database configuration in .env file")
    logger.error("The application will continue but database operations will fail")

    engine = None
    SessionLocal = None


# Dependency to get DB session
def get_db():
    if SessionLocal is None:
        raise SQLAlchemyError("Database connection not available")

    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
