# tracking/app/db/session.py
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base

# Base class for declarative models
# All SQLAlchemy models will inherit from this Base
Base = declarative_base()


def build_session_factory(database_url: str, echo: bool = False, **engine_kwargs) -> sessionmaker:
    """
    Creates the engine and returns a session factory bound to it.
    The factory is a long-lived handle owned by whoever starts the process;
    nothing connects at import time.
    """
    engine = create_engine(database_url, echo=echo, **engine_kwargs)
    # autocommit=False: the history store commits each append explicitly
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)
