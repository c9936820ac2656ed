from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session, sessionmaker

from studentpipe.db_models import Base


def build_engine(database_url: str, *, echo: bool = False) -> Engine:
    connect_args: dict[str, object] = {}
    if database_url.startswith("sqlite"):
        # Loader sessions are opened on operation worker threads.
        connect_args["check_same_thread"] = False
        return create_engine(database_url, echo=echo, connect_args=connect_args)

    return create_engine(database_url, echo=echo, pool_pre_ping=True)


def build_session_factory(database_url: str, *, echo: bool = False) -> sessionmaker[Session]:
    engine = build_engine(database_url, echo=echo)
    Base.metadata.create_all(engine)
    return sessionmaker(bind=engine, autoflush=False)
