from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, DeclarativeBase

from smart_cache.config import DATABASE_URL

# API handlers run in a threadpool; SQLite connections must be allowed to cross threads.
_connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}

engine = create_engine(DATABASE_URL, connect_args=_connect_args, pool_pre_ping=True)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

class Base(DeclarativeBase):
	pass

def init_db(bind=None) -> None:
	"""Create all tables (no migrations; schema changes need a fresh table)."""
	import smart_cache.models.db  # noqa: F401  registers models on Base.metadata
	Base.metadata.create_all(bind=bind or engine)
