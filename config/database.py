from sqlmodel import create_engine, SQLModel
from sqlalchemy.pool import StaticPool


def build_engine(database_url: str, echo: bool = False):
    connect_args = {"check_same_thread": False} if "sqlite" in database_url else {}
    # in-memory sqlite must share one connection across threads
    if database_url in ("sqlite://", "sqlite:///:memory:"):
        return create_engine(database_url, echo=echo, connect_args=connect_args, poolclass=StaticPool)
    return create_engine(database_url, echo=echo, connect_args=connect_args)


def create_db_and_tables(target_engine):
    # table models must be registered on the metadata before create_all
    import models.storage  # noqa: F401

    SQLModel.metadata.create_all(target_engine)
