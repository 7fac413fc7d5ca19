import pytest
from sqlalchemy.orm import sessionmaker

from blog_auth.database.engine_factory import DatabaseEngineFactory
from blog_auth.models.database import Base


@pytest.fixture
def db_engine():
    engine = DatabaseEngineFactory.create_engine("sqlite:///:memory:", environment="development")
    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        engine.dispose()


@pytest.fixture
def db_session(db_engine):
    session = sessionmaker(autocommit=False, autoflush=False, bind=db_engine)()
    try:
        yield session
    finally:
        session.close()
