from .database import dispose_engine, get_db, init_db

__all__ = ["dispose_engine", "get_db", "init_db"]
