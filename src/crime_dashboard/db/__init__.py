from crime_dashboard.db.session import create_backend_engine
from crime_dashboard.db.tables import TableSet, get_tables

__all__ = ["create_backend_engine", "TableSet", "get_tables"]
