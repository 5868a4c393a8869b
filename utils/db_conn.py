import os
import time
import logging
from typing import Optional
from flask import Flask
from dotenv import load_dotenv
from sqlalchemy import inspect

from models import db

logger = logging.getLogger(__name__)

DEFAULT_DATABASE_URL = "sqlite:///local.db"

# Supabase's pooler drops idle connections, so keep the pool small and recycled
POSTGRES_ENGINE_OPTIONS = {
    "pool_size": 5,
    "max_overflow": 10,
    "pool_recycle": 300,
    "pool_pre_ping": True,
    "pool_timeout": 30,
    "connect_args": {"connect_timeout": 10},
}


UNIQUE_VIOLATION = "23505"


def is_unique_violation(error) -> bool:
    """True when an IntegrityError comes from a unique constraint (not FK or NOT NULL)."""
    orig = getattr(error, "orig", None)
    code = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
    if code:
        return code == UNIQUE_VIOLATION
    # SQLite reports no SQLSTATE
    return "UNIQUE constraint failed" in str(orig)


def resolve_database_url() -> str:
    """Read DATABASE_URL from the environment, normalising Heroku/Supabase style URLs."""
    url = os.getenv("DATABASE_URL")
    if url and url.startswith("postgres://"):
        url = url.replace("postgres://", "postgresql://", 1)
    return url or DEFAULT_DATABASE_URL


def _mask_url(db_uri: str) -> str:
    if "@" not in db_uri or "://" not in db_uri:
        return db_uri
    scheme, rest = db_uri.split("://", 1)
    creds, host = rest.rsplit("@", 1)
    user = creds.split(":", 1)[0]
    return f"{scheme}://{user}:***@{host}"


class DatabaseConnection:
    """Binds the revaluation models to a Flask app and prepares the schema."""

    def __init__(self, app: Optional[Flask] = None):
        self.app = app
        if app is not None:
            self.init_app(app)

    def init_app(self, app: Flask):
        self.app = app
        load_dotenv()

        # An explicit URI (tests, instance config) wins over the environment
        uri = app.config.get("SQLALCHEMY_DATABASE_URI") or resolve_database_url()
        app.config["SQLALCHEMY_DATABASE_URI"] = uri
        app.config.setdefault("SQLALCHEMY_TRACK_MODIFICATIONS", False)
        if uri.startswith("postgresql"):
            app.config.setdefault("SQLALCHEMY_ENGINE_OPTIONS", dict(POSTGRES_ENGINE_OPTIONS))

        if "sqlalchemy" in app.extensions:
            logger.info("SQLAlchemy already registered on app; reusing it")
        else:
            db.init_app(app)
        logger.info(f"Revaluation database: {_mask_url(uri)}")

    def test_connection(self, max_retries: int = 3) -> bool:
        """Run SELECT 1, backing off 1s, 2s, 4s... between attempts."""
        if self.app is None:
            logger.error("DatabaseConnection used before init_app")
            return False

        delay = 1
        for attempt in range(1, max_retries + 1):
            try:
                with self.app.app_context():
                    with db.engine.connect() as connection:
                        connection.execute(db.text("SELECT 1"))
                logger.info(f"Database reachable (attempt {attempt})")
                return True
            except Exception as e:
                if attempt == max_retries:
                    logger.error(f"Database unreachable after {max_retries} attempts: {str(e)}")
                    break
                logger.warning(f"Database ping {attempt}/{max_retries} failed, retrying in {delay}s: {str(e)}")
                time.sleep(delay)
                delay *= 2
        return False

    def missing_tables(self) -> list:
        with self.app.app_context():
            existing = set(inspect(db.engine).get_table_names())
        return sorted(set(db.metadata.tables) - existing)

    def create_tables(self) -> bool:
        """Create whichever model tables are not in the database yet."""
        if self.app is None:
            logger.error("DatabaseConnection used before init_app")
            return False
        try:
            missing = self.missing_tables()
            if not missing:
                logger.info("All revaluation tables present")
                return True
            logger.info(f"Creating tables: {', '.join(missing)}")
            with self.app.app_context():
                db.create_all()
            return True
        except Exception as e:
            logger.error(f"Could not create revaluation tables: {str(e)}")
            return False

    def init_database(self) -> bool:
        return self.test_connection() and self.create_tables()


db_conn = DatabaseConnection()


def init_database_with_app(app: Flask) -> bool:
    """Ping the database and create missing tables; False aborts startup."""
    connection = DatabaseConnection()
    connection.app = app
    if "sqlalchemy" not in app.extensions:
        connection.init_app(app)
    return connection.init_database()
