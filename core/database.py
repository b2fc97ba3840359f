from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base

from core.config import DATABASE_URL


def build_engine(url: str):
    '''Create the engine; SQLite needs to be shareable across the server's worker threads.'''
    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
    # pool_pre_ping reconnects transparently when the server dropped an idle connection
    return create_engine(url, pool_pre_ping=True, connect_args=connect_args)


engine = build_engine(DATABASE_URL)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()
