import logging
from typing import Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base

from .config import settings

logger = logging.getLogger(__name__)


def normalize_database_url(database_url: str) -> str:
    """Railway/Heroku hand out postgres:// URLs, SQLAlchemy needs postgresql://"""
    if database_url.startswith("postgres://"):
        return database_url.replace("postgres://", "postgresql://", 1)
    return database_url


def build_engine(database_url: str) -> Engine:
    """Create an engine with the connect args each dialect needs."""
    database_url = normalize_database_url(database_url)

    # Handle SQLite special case for check_same_thread (store work runs in the threadpool)
    connect_args = {}
    if database_url.startswith("sqlite"):
        connect_args = {"check_same_thread": False}

    return create_engine(
        database_url,
        connect_args=connect_args,
        pool_pre_ping=True,
    )


engine = build_engine(settings.database_url)

Base = declarative_base()


def create_tables(bind: Optional[Engine] = None, tables: Optional[list] = None):
    """Create tables in the database (all of them unless a subset is given)"""
    from . import models  # noqa: F401

    Base.metadata.create_all(bind=bind or engine, tables=tables)


def get_data_store():
    """
    Build the row store configured for this deployment.

    DATA_STORE_BACKEND=supabase talks PostgREST over HTTP; anything else uses
    the SQLAlchemy engine above.
    """
    from .services.data_store import SqlDataStore
    from .services.supabase_rest import SupabaseRestStore

    backend = settings.data_store_backend.lower()
    if backend == "supabase":
        logger.info("Using Supabase REST data store")
        return SupabaseRestStore.from_settings(settings)

    logger.info(f"Using SQL data store: {engine.url.get_backend_name()}")
    return SqlDataStore(engine)
