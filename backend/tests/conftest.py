import os, sys, pytest
# Ensure the backend directory is on path so 'repairdesk' can be imported
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), '..'))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)
from repairdesk import create_app, get_db
from repairdesk.models.base import Base
# Import all model modules to ensure tables are registered before create_all
import repairdesk.models.receipt  # noqa: F401
import repairdesk.models.service_complaint  # noqa: F401
import repairdesk.models.otp_challenge  # noqa: F401
import repairdesk.models.ticket_event  # noqa: F401
import repairdesk.models.notification_config  # noqa: F401

TEST_CONFIG = {
    'DATABASE_URL': 'sqlite+pysqlite:///:memory:',
    'JWT_SECRET_KEY': 'test-secret-key-with-enough-length-for-hs256',
    'PUBLIC_BASE_URL': 'https://track.example.com',
    # run notification jobs inline so assertions see their effects
    'NOTIFY_ASYNC': False,
    'WHATSAPP_API_TOKEN': '',
    'WHATSAPP_PHONE_NUMBER_ID': '',
    'SMS_API_URL': '',
    'SMS_API_KEY': '',
}

@pytest.fixture(scope='session', autouse=True)
def app_instance():
    app = create_app(dict(TEST_CONFIG))
    # After app and blueprints are registered, ensure all tables exist
    with app.app_context():
        engine = get_db().get_bind()
        Base.metadata.create_all(engine)
    yield app

@pytest.fixture(autouse=True)
def clean_tables(app_instance):
    yield
    with app_instance.app_context():
        session = get_db()
        session.rollback()
        for table in reversed(Base.metadata.sorted_tables):
            session.execute(table.delete())
        session.commit()

@pytest.fixture()
def client(app_instance):
    return app_instance.test_client()

@pytest.fixture()
def app_context(app_instance):
    with app_instance.app_context():
        yield app_instance

@pytest.fixture()
def session(app_context):
    s = get_db()
    yield s
    s.rollback()
