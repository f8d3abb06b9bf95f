import pytest
from app import create_app
from config import Config
from extensions import db as _db # Alias to avoid fixture name conflict
from models import User

class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = 'sqlite:///:memory:' # Use in-memory SQLite for tests
    SECRET_KEY = 'test-secret-key-for-api-tokens' # Signs the bearer tokens issued in tests
    # A valid URL-safe base64-encoded 32-byte key, fixed so tests are reproducible.
    FERNET_KEY = b'kTPBRqY6AwUQ7fs5VG-yFPGt2jiMB7mVeSoY8OCYgvY='
    META_APP_ID = 'test-app-id'
    META_APP_SECRET = 'test-app-secret'
    META_DEFAULT_ORIGIN = 'http://localhost:8080'
    OPENAI_API_KEY = 'test-openai-key'
    SAMPLE_DATA_FALLBACK = True
    LOG_LEVEL = 'DEBUG'

@pytest.fixture(scope='session')
def app():
    """
    Session-wide test Flask application.
    Ensures the app is created once per test session with TestConfig.
    """
    app_instance = create_app(config_class=TestConfig)
    return app_instance

@pytest.fixture(scope='function')
def app_context(app):
    """
    Function-scoped application context.
    Pushes an app context before each test that needs it and pops it afterwards.
    """
    with app.app_context():
        yield

@pytest.fixture(scope='function')
def db(app_context):
    """
    Function-scoped database fixture.
    Creates all database tables before each test and drops them afterwards,
    so every test starts from an empty database.
    """
    _db.create_all() # Create tables based on models
    yield _db          # Provide the database session/object to the test
    _db.session.remove() # Ensure session is closed
    _db.drop_all()     # Drop all tables to clean up

@pytest.fixture(scope='session') # Client can be session-scoped if app is.
def client(app):
    """Test client fixture for making requests to the application."""
    return app.test_client()

@pytest.fixture(scope='function')
def user(db):
    """A persisted user without a Meta connection."""
    u = User(email='marketer@example.com', full_name='Test Marketer')
    db.session.add(u)
    db.session.commit()
    return u

@pytest.fixture(scope='function')
def auth_headers(user):
    """Authorization header carrying a valid bearer token for `user`."""
    return {'Authorization': f'Bearer {user.get_api_token()}'}
