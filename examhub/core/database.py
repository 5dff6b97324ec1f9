from sqlalchemy import create_engine, event
from sqlalchemy.orm import DeclarativeBase, sessionmaker
from examhub.core.config import settings

class Base(DeclarativeBase): pass

def make_engine(url: str, echo: bool = False):
    if url.startswith("sqlite"):
        eng = create_engine(url, echo=echo, future=True, connect_args={"check_same_thread": False, "timeout": 30})

        @event.listens_for(eng, "connect")
        def _sqlite_pragmas(dbapi_conn, _record):
            cur = dbapi_conn.cursor()
            cur.execute("PRAGMA foreign_keys=ON")
            cur.close()

        return eng
    return create_engine(url, echo=echo, future=True, pool_pre_ping=True)

engine = make_engine(settings.DATABASE_URL, settings.DATABASE_ECHO)
SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False, future=True)

def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()

def init_db(bind=None) -> None:
    """Create tables that don't exist yet. Production schemas are managed out of band."""
    from examhub.models import orm  # noqa: F401  registers mappers
    Base.metadata.create_all(bind=bind or engine)
