from contextlib import contextmanager
from sqlalchemy import create_engine, text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import declarative_base, sessionmaker
from fulfillment.config import settings
from fulfillment.errors import TransientStorageError
from alembic import command
from alembic.config import Config
import asyncio
import logging
import os

logger = logging.getLogger(__name__)


def _engine_options(database_url: str) -> dict:
    """Pool and connection options; lock_timeout bounds every row-lock wait"""
    if not database_url.startswith("postgresql"):
        return {}
    return {
        "pool_pre_ping": True,
        "pool_size": 10,
        "max_overflow": 20,
        "pool_timeout": 10,
        "connect_args": {
            "connect_timeout": 5,
            "options": f"-c lock_timeout={settings.db_lock_timeout_ms}",
        },
    }


engine = create_engine(settings.database_url, **_engine_options(settings.database_url))

# Objects stay readable after commit: services hand them back to callers
# once the unit of work has closed.
SessionLocal = sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)

Base = declarative_base()


@contextmanager
def unit_of_work(session_factory=None):
    """Run a block as one all-or-nothing transaction.

    Commits when the block completes, rolls back on any exception. Lock
    conflicts, deadlocks and dropped connections surface as
    TransientStorageError so callers can decide whether to retry.
    """
    db = (session_factory or SessionLocal)()
    try:
        yield db
        db.commit()
    except OperationalError as e:
        db.rollback()
        logger.warning(f"Transaction rolled back after storage error: {e.orig}")
        raise TransientStorageError(f"Storage temporarily unavailable: {e.orig}") from e
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


async def wait_for_database(max_retries=30, retry_delay=2):
    """Wait for database to be available with retry logic"""
    db_url_display = settings.database_url.split('@')[-1]
    logger.info(f"Waiting for database connection to {db_url_display}...")

    for attempt in range(1, max_retries + 1):
        try:
            with engine.connect() as conn:
                conn.execute(text("SELECT 1")).fetchone()
            logger.info("Database connection successful")
            return True
        except OperationalError as e:
            if attempt < max_retries:
                logger.warning(f"Database connection attempt {attempt}/{max_retries} failed: {e}. Retrying in {retry_delay}s...")
                await asyncio.sleep(retry_delay)
            else:
                logger.error(f"Database connection failed after {max_retries} attempts: {e}")
                raise
    return False


def _find_alembic_ini() -> str:
    # Docker: working directory is the service root. Locally: next to the package.
    if os.path.exists("alembic.ini"):
        return "alembic.ini"
    file_dir = os.path.dirname(os.path.abspath(__file__))
    project_root = os.path.dirname(os.path.dirname(file_dir))
    alembic_ini_path = os.path.join(project_root, "alembic.ini")
    if not os.path.exists(alembic_ini_path):
        raise FileNotFoundError(
            f"Could not find alembic.ini. Current directory: {os.getcwd()}, "
            f"Tried: alembic.ini and {alembic_ini_path}"
        )
    return alembic_ini_path


async def init_db():
    """Initialize database by running Alembic migrations"""
    logger.info("Running database migrations...")
    await wait_for_database(max_retries=30, retry_delay=2)

    alembic_ini_path = _find_alembic_ini()
    logger.info(f"Using Alembic config: {os.path.abspath(alembic_ini_path)}")

    alembic_cfg = Config(alembic_ini_path)
    alembic_cfg.set_main_option("sqlalchemy.url", settings.database_url)

    try:
        await asyncio.wait_for(
            asyncio.to_thread(command.upgrade, alembic_cfg, "head"),
            timeout=60.0
        )
    except asyncio.TimeoutError:
        logger.error("Database migrations timed out after 60 seconds")
        raise
    except Exception as e:
        logger.error(f"Migration error: {e}", exc_info=True)
        raise

    logger.info("Database migrations completed successfully")


def get_session_factory():
    """Dependency for endpoints that open their own unit of work"""
    return SessionLocal
