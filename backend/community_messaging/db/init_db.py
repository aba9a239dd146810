# backend/community_messaging/db/init_db.py
from community_messaging.db.base import Base
from community_messaging.db.session import engine

# models must be imported so their tables are registered on Base.metadata
from community_messaging import models  # noqa: F401


def init_db() -> None:
    Base.metadata.create_all(bind=engine)
