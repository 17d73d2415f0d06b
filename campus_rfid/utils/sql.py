"""
SQL helpers shared by the services.
"""
from typing import Optional, Dict, Any, List
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession


def _dialect_insert(db: AsyncSession):
    name = db.get_bind().dialect.name
    if name == "postgresql":
        return postgresql.insert
    if name == "sqlite":
        return sqlite.insert
    raise NotImplementedError(f"INSERT ... ON CONFLICT not supported for dialect {name}")


async def insert_or_ignore(
    db: AsyncSession,
    model,
    values: Dict[str, Any],
    conflict_columns: List[str]
) -> Optional[int]:
    """
    INSERT ... ON CONFLICT DO NOTHING on a unique key.
    Returns the new row id, or None when another writer got there first.
    """
    stmt = (
        _dialect_insert(db)(model)
        .values(**values)
        .on_conflict_do_nothing(index_elements=conflict_columns)
        .returning(model.id)
    )
    result = await db.execute(stmt)
    return result.scalar_one_or_none()
