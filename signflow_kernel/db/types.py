"""
Module: signflow_kernel.db.types
Responsibility: Annotated column type aliases and the enum column helper so
    that every model declares statuses, hashes and free text identically.
Architecture position: Kernel > DB.  May be imported by models/.  MUST NOT
    import from models/, services/ or selectors/.

Invariants enforced:
    - Status columns store the enum VALUE (e.g. "IN_PROGRESS"), never the
      Python member name, and load back as the enum member.
    - Enum columns are VARCHAR with a CHECK constraint, so the same schema
      works on PostgreSQL and SQLite without native enum types.
"""

from enum import Enum
from typing import Annotated

from sqlalchemy import BigInteger, Enum as SAEnum, String, Text

# Monotonic sequence number for ordering
Sequence = Annotated[int, BigInteger]

# SHA-256 hash as hex string (64 characters)
PayloadHash = Annotated[str, String(64)]

# Short identifier strings
ShortCode = Annotated[str, String(50)]

# Email addresses and display names
ShortText = Annotated[str, String(255)]

# Long text for reasons and titles
LongText = Annotated[str, Text]


def enum_column(enum_cls: type[Enum], name: str | None = None) -> SAEnum:
    """
    Build a portable enum column type storing member values.

    Args:
        enum_cls: A ``str``-valued Enum class.
        name: CHECK constraint name (defaults to the lower-cased class name).
    """
    return SAEnum(
        enum_cls,
        name=name or enum_cls.__name__.lower(),
        native_enum=False,
        create_constraint=True,
        length=32,
        values_callable=lambda members: [m.value for m in members],
        validate_strings=True,
    )
