"""Dialect-specific INSERT ... ON CONFLICT constructs."""

from sqlalchemy.ext.asyncio import AsyncSession


def dialect_insert(session: AsyncSession, table):
    """INSERT construct supporting ON CONFLICT for the session's backend."""
    name = session.bind.dialect.name
    if name == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
    elif name == "sqlite":
        from sqlalchemy.dialects.sqlite import insert
    else:
        raise NotImplementedError(f"Upserts are not supported on {name}")
    return insert(table)
