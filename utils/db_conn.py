import os
import time
import logging
from typing import Optional
from flask import Flask
from dotenv import load_dotenv

from models import db

# Configure logging for database operations
logger = logging.getLogger(__name__)


def build_database_uri() -> str:
    """Resolve the SQLAlchemy URI from the environment.

    DATABASE_URL wins when set (tests point it at SQLite). Otherwise ENVIRONMENT
    picks the LOCAL_DB_* or ONLINE_DB_* MySQL settings.
    """
    load_dotenv()

    url = os.getenv("DATABASE_URL")
    if url:
        return url

    environment = os.getenv("ENVIRONMENT", "local").lower()
    logger.info(f"Database environment: {environment}")

    if environment == "local":
        prefix = "LOCAL_DB_"
        default_port = "3307"
    elif environment == "production" or environment == "online":
        prefix = "ONLINE_DB_"
        default_port = "3306"
    else:
        raise ValueError(
            f"Invalid ENVIRONMENT value: {environment}. Must be 'local' or 'production'/'online'"
        )

    db_host = os.getenv(prefix + "HOST", "localhost")
    db_port = os.getenv(prefix + "PORT", default_port)
    db_user = os.getenv(prefix + "USER", "root")
    db_password = os.getenv(prefix + "PASSWORD", "")
    db_name = os.getenv(prefix + "NAME", "e_class_record")
    return f"mysql+pymysql://{db_user}:{db_password}@{db_host}:{db_port}/{db_name}"


class DatabaseConnection:
    """Handles database connection, initialization, and management."""

    def __init__(self, app: Optional[Flask] = None):
        self.app = app
        if app is not None:
            self.init_app(app)

    def init_app(self, app: Flask):
        """Initialize database connection with Flask app."""
        self.app = app
        db_uri = app.config.get("SQLALCHEMY_DATABASE_URI") or build_database_uri()
        app.config["SQLALCHEMY_DATABASE_URI"] = db_uri
        app.config["SQLALCHEMY_TRACK_MODIFICATIONS"] = False

        if db_uri.startswith("mysql"):
            # Connection pool settings to handle connection timeouts
            app.config.setdefault(
                "SQLALCHEMY_ENGINE_OPTIONS",
                {
                    "pool_size": 10,
                    "max_overflow": 20,
                    "pool_recycle": 3600,
                    "pool_pre_ping": True,
                    "pool_timeout": 30,
                    "connect_args": {
                        "connect_timeout": 10,
                        "read_timeout": 10,
                        "write_timeout": 10,
                    },
                },
            )
        password = db_uri.split("@", 1)[0].rsplit(":", 1)[-1] if "@" in db_uri else ""
        logger.info(
            f"Database URI configured: {db_uri.replace(password, '***') if password else db_uri}"
        )

        # Check if SQLAlchemy is already registered with this app
        if "sqlalchemy" not in app.extensions:
            db.init_app(app)
            logger.info("Database initialized with Flask app")
        else:
            logger.info(
                "Database already initialized with Flask app - skipping re-initialization"
            )

    def test_connection(self, max_retries: int = 3, retry_delay: float = 1) -> bool:
        """Test database connection with retry mechanism."""
        if self.app is None:
            logger.error("Database connection not initialized with Flask app")
            return False

        for attempt in range(max_retries):
            try:
                logger.info(
                    f"Testing database connection... (attempt {attempt + 1}/{max_retries})"
                )
                with self.app.app_context():
                    with db.engine.connect() as connection:
                        connection.execute(db.text("SELECT 1"))
                logger.info("Database connection successful")
                return True
            except Exception as e:
                logger.warning(
                    f"Database connection failed (attempt {attempt + 1}): {str(e)}"
                )
                if attempt < max_retries - 1:
                    time.sleep(retry_delay)
                    retry_delay *= 2  # Exponential backoff
                else:
                    logger.error(
                        f"Database connection failed after {max_retries} attempts: {str(e)}"
                    )
        return False

    def create_tables(self) -> bool:
        """Create all database tables."""
        if self.app is None:
            logger.error("Database connection not initialized with Flask app")
            return False
        try:
            logger.info("Creating database tables...")
            with self.app.app_context():
                db.create_all()
            logger.info("Database tables created successfully")
            return True
        except Exception as e:
            logger.error(f"Database table creation failed: {str(e)}")
            return False

    def init_database(self) -> bool:
        """Initialize database connection and create tables if they don't exist."""
        logger.info("Starting database initialization...")

        if not self.test_connection():
            return False

        return self.create_tables()


# Global database connection instance
db_conn = DatabaseConnection()


def init_database_with_app(app: Flask) -> bool:
    """Initialize database with Flask app and return success status."""
    global db_conn
    db_conn = DatabaseConnection(app)
    return db_conn.init_database()
