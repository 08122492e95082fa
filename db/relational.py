"""
db/relational.py

Connection handling for the local fallback store (used when no Google Sheet URL is set):
1) build the engine (SQLite by default)
2) hand out Sessions
3) create the tables (init_db)
"""

import os
from pathlib import Path

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

PROJECT_DIR = Path(__file__).resolve().parents[1]
DB_DIR = PROJECT_DIR / "db_store"

# sqlite:///<project>/db_store/mutu_igd.db unless overridden
DATABASE_URL = os.getenv("MUTU_IGD_DATABASE_URL", f"sqlite:///{DB_DIR / 'mutu_igd.db'}")

# echo=True prints every SQL statement, handy while debugging
ECHO_SQL = os.getenv("MUTU_IGD_ECHO_SQL", "0") == "1"


def make_engine(database_url: str = DATABASE_URL):
    if database_url.startswith("sqlite:///"):
        db_path = Path(database_url[len("sqlite:///"):])
        if str(db_path) not in ("", ":memory:"):
            db_path.parent.mkdir(parents=True, exist_ok=True)
    return create_engine(database_url, echo=ECHO_SQL)


def make_session_factory(engine):
    return sessionmaker(bind=engine, expire_on_commit=False)


def init_db(engine) -> None:
    """
    Create the tables declared in db/models.py if they do not exist yet.
    """
    from db.models import Base  # local import to avoid circular imports
    Base.metadata.create_all(bind=engine)
