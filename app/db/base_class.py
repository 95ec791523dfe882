from sqlalchemy import MetaData
from sqlalchemy.orm import DeclarativeBase

# Constraint names must be deterministic so alembic revisions can refer to them
# (e.g. the authenticator_type and purpose check constraints).
convention = {
    "ix": "ix_%(table_name)s_%(column_0_N_name)s",
    "uq": "uq_%(table_name)s_%(column_0_N_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_N_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}

metadata_obj = MetaData(naming_convention=convention)


class Base(DeclarativeBase):
    """
    Declarative base for the account, credential and challenge tables.
    All models share one MetaData so alembic sees a single schema.
    """

    metadata = metadata_obj
