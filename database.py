from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker

Base = declarative_base()


def make_engine(database_url: str) -> Engine:
    """Engine for the token store. SQLite gets cross-thread access and FK enforcement."""
    if database_url.startswith("sqlite"):
        engine = create_engine(
            database_url,
            connect_args={"check_same_thread": False},
        )

        @event.listens_for(engine, "connect")
        def _enable_foreign_keys(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        return engine

    return create_engine(
        database_url,
        pool_pre_ping=True,     # test connections before use (handles dropped DB connections)
        pool_recycle=3600,
    )


def make_session_factory(engine: Engine) -> sessionmaker:
    # records are read after the session closes, so keep attributes loaded
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


def init_db(engine: Engine) -> None:
    import models  # noqa: F401 - registers the tables on Base

    Base.metadata.create_all(bind=engine)
