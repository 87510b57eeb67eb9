import os, sys, pytest
# Ensure backend directory is on path so 'policy_engine' can be imported
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), '..'))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)
import policy_engine
from policy_engine import create_app, get_db
from policy_engine.models.authz import Base
import policy_engine.models.audit  # noqa: F401

TEST_CONFIG = {
    'DATABASE_URL': 'sqlite+pysqlite:///:memory:',
    'JWT_SECRET_KEY': 'test-secret-key-long-enough-for-hs256-signing',
    'POLICY_LOCK_TIMEOUT': 1.0,
}

@pytest.fixture(scope='session')
def app_instance():
    app = create_app(TEST_CONFIG)
    yield app

@pytest.fixture(autouse=True)
def fresh_db(app_instance):
    # Every test starts from an empty schema with the default role policies seeded
    session = get_db()
    session.rollback()
    session.close()
    policy_engine.SessionLocal.remove()
    Base.metadata.drop_all(policy_engine.db_engine)
    Base.metadata.create_all(policy_engine.db_engine)
    app_instance.extensions['policy_service'].seed_role_policies()
    with app_instance.app_context():
        yield
    policy_engine.SessionLocal.remove()

@pytest.fixture()
def client(app_instance):
    return app_instance.test_client()

@pytest.fixture()
def service(app_instance):
    return app_instance.extensions['policy_service']
