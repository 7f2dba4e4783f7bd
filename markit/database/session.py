import os

from dotenv import load_dotenv
from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker

if os.getenv("ENVIRONMENT") == "development":
    load_dotenv()

# Any SQLAlchemy URL works; without one the tree lives in a local SQLite file.
SQLALCHEMY_DATABASE_URL = os.getenv("DB_URL_STRING", "sqlite:///./markit.db")

connect_args = {}
if SQLALCHEMY_DATABASE_URL.startswith("sqlite"):
    # store listeners and scheduler jobs use the connection from other threads
    connect_args = {"check_same_thread": False}

engine = create_engine(SQLALCHEMY_DATABASE_URL, connect_args=connect_args)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()
