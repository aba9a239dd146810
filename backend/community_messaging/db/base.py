# backend/community_messaging/db/base.py
from sqlalchemy.orm import DeclarativeBase

# Largest value a 64-bit INTEGER primary key can hold
MAX_ID = 2**63 - 1


class Base(DeclarativeBase):
    pass


def id_in_range(value: int) -> bool:
    """False for ids no row can have (the driver refuses to bind them)."""
    return 1 <= value <= MAX_ID
