from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from keyword_gateway.config import settings
from keyword_gateway.models.base import Base

# Only use check_same_thread for SQLite databases
connect_args = {}
if settings.DATABASE_URL.startswith("sqlite"):
    connect_args = {"check_same_thread": False}

engine = create_engine(
    settings.DATABASE_URL, connect_args=connect_args
)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_db(bind=None):
    # Import all models here so they are registered with Base
    import keyword_gateway.models
    Base.metadata.create_all(bind=bind or engine)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
