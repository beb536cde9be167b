"""
Shared fixtures: in-memory SQLite database, fakeredis-backed cache and the
category services wired to both.
"""
import fakeredis
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from catalog.db.base import Base
from catalog.models.category import ProductCategory
from catalog.schemas.category import CategoryCreate
from catalog.services.category_cache import CategoryCache
from catalog.services.category_mutation_service import CategoryMutationService
from catalog.services.category_query_service import CategoryQueryService


# Create in-memory SQLite database for testing
SQLALCHEMY_DATABASE_URL = "sqlite:///:memory:"
engine = create_engine(
    SQLALCHEMY_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db_session():
    """Create a fresh database for each test"""
    Base.metadata.create_all(bind=engine)

    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def redis_client():
    return fakeredis.FakeRedis(decode_responses=True)


@pytest.fixture
def cache(redis_client):
    return CategoryCache(client=redis_client, prefix="test_", ttl=60)


@pytest.fixture
def mutations(db_session, cache):
    return CategoryMutationService(db_session, cache)


@pytest.fixture
def queries(db_session, cache):
    return CategoryQueryService(db_session, cache)


@pytest.fixture
def create_category(mutations):
    """Create a category through the mutation service and return the row"""
    def _create(name, parent_id=None, **fields) -> ProductCategory:
        return mutations.create(CategoryCreate(name=name, parent_id=parent_id, **fields)).unwrap()
    return _create


@pytest.fixture
def snapshot(db_session):
    """Structural state of every row, re-read from the database"""
    def _snapshot():
        db_session.expire_all()
        return {
            row.id: (row.parent_id, row.path, row.depth, row.position, row.slug, row.updated_at)
            for row in db_session.query(ProductCategory).all()
        }
    return _snapshot
