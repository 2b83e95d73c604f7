from waitlist.db.connection import Base, check_db_health, dispose_engine, get_db, get_engine, get_sessionmaker

__all__ = ["Base", "check_db_health", "dispose_engine", "get_db", "get_engine", "get_sessionmaker"]
