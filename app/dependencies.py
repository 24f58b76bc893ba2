from sqlalchemy.engine import Engine
from sqlmodel import Session, SQLModel, create_engine
from app.config import DATABASE_URL

def make_engine(url: str = DATABASE_URL, **kwargs) -> Engine:
    if url.startswith("sqlite"):
        # Slots of the local worker pool share the engine across threads
        kwargs.setdefault("connect_args", {"check_same_thread": False})
    return create_engine(url, **kwargs)

def init_db(bind: Engine = None):
    SQLModel.metadata.create_all(bind or engine)

engine = make_engine()

def get_session():
    with Session(engine) as session:
        yield session
