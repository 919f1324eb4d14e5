# shopfloor/db_core.py
import os
from sqlalchemy import create_engine

from shopfloor.config import DATABASE_URL, DB_NAME


def connect_db(db_name: str = DB_NAME):
    if DATABASE_URL:
        return create_engine(DATABASE_URL, pool_pre_ping=True)
    DB_HOST = os.getenv('DB_HOST', 'localhost')
    DB_USER = os.getenv('DB_USER', 'postgres')
    DB_PASSWORD = os.getenv('DB_PASSWORD', '')
    DB_PORT = os.getenv('DB_PORT', '5432')
    return create_engine(
        f"postgresql://{DB_USER}:{DB_PASSWORD}@{DB_HOST}:{DB_PORT}/{db_name}",
        pool_pre_ping=True,
    )
