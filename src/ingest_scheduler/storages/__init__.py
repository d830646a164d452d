from .protocol import RunStorage
from .sqlalchemy import SqlAlchemyStorage, InMemoryStorage

__all__ = ["RunStorage", "SqlAlchemyStorage", "InMemoryStorage"]
