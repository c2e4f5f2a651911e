from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, scoped_session

# Bound lazily by configure() so importing the package never needs a database.
engine: Engine = None
SessionLocal = scoped_session(
    sessionmaker(
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
    )
)


def make_engine(database_url: str, statement_timeout_ms: int = 15_000) -> Engine:
    if database_url.startswith("postgresql"):
        return create_engine(
            database_url,
            pool_pre_ping=True,
            pool_size=10,
            max_overflow=20,
            connect_args={
                "connect_timeout": 10,
                "options": f"-c statement_timeout={statement_timeout_ms}",
            },
        )
    return create_engine(database_url, pool_pre_ping=True)


def configure(database_url: str) -> Engine:
    global engine
    engine = make_engine(database_url)
    SessionLocal.configure(bind=engine)
    return engine

