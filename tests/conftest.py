"""
Pytest configuration and shared fixtures for VinylShelf test suite.
"""

import io
import os
import sys
import sqlite3

import pytest
from PIL import Image

# Import application modules
sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))

import app as app_module
from app import create_app
from config import Config
from collection_db import set_owner
from discogs_api import DiscogsClient, RateGate
from init_db import create_database_schema


class FakeClock:
    """Manually advanced clock; ``sleep`` advances it instead of blocking."""

    def __init__(self, start: float = 1000.0):
        self.now = start
        self.sleeps = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float):
        self.sleeps.append(seconds)
        self.now += seconds

    def advance(self, seconds: float):
        self.now += seconds


class FakeTimer:
    """threading.Timer stand-in that only fires when told to."""

    created = []

    def __init__(self, interval, function, args=None, kwargs=None):
        self.interval = interval
        self.function = function
        self.args = args or ()
        self.kwargs = kwargs or {}
        self.started = False
        self.cancelled = False
        self.daemon = False
        FakeTimer.created.append(self)

    def start(self):
        self.started = True

    def cancel(self):
        self.cancelled = True

    def fire(self):
        if self.started and not self.cancelled:
            self.function(*self.args, **self.kwargs)

    @classmethod
    def fire_pending(cls):
        for timer in list(cls.created):
            timer.fire()
        cls.created = []


@pytest.fixture
def test_config(tmp_path):
    """Create test configuration."""
    config = Config()
    config.DATA_DIR = tmp_path / "data"
    config.DATABASE_PATH = tmp_path / "data" / "test_vinylshelf.db"
    config.COVERS_DIR = tmp_path / "data" / "covers"
    config.LOG_FILE = tmp_path / "data" / "test_vinylshelf.log"
    config.SECRET_KEY = "test-secret-key"
    config.TESTING = True
    config.SEARCH_RATE_LIMIT = (1000, 60)
    config.RELEASE_RATE_LIMIT = (1000, 60)
    config.IMAGE_PROXY_RATE_LIMIT = (1000, 60)
    config.UPLOAD_RATE_LIMIT = (1000, 60)
    config.UPLOAD_MAX_BYTES = 64 * 1024

    # Create directories
    config.DATA_DIR.mkdir(parents=True, exist_ok=True)
    config.COVERS_DIR.mkdir(parents=True, exist_ok=True)

    return config


@pytest.fixture
def test_db(test_config):
    """Create and initialize test database."""
    create_database_schema(test_config.DATABASE_PATH)

    conn = sqlite3.connect(str(test_config.DATABASE_PATH))
    conn.row_factory = sqlite3.Row
    yield conn
    conn.close()


@pytest.fixture
def app(test_config):
    """Create Flask test application."""
    app_module.rate_limit_storage.clear()
    application = create_app(test_config)
    yield application
    app_module.shutdown()


@pytest.fixture
def client(app):
    """Create Flask test client."""
    return app.test_client()


@pytest.fixture
def owner_token(test_db):
    """API token of the collection owner."""
    _, token = set_owner(test_db, 'owner-1')
    return token


@pytest.fixture
def viewer_token(test_db):
    """API token of a profile without owner rights."""
    _, token = set_owner(test_db, 'viewer-1', is_owner=False)
    return token


@pytest.fixture
def owner_headers(owner_token):
    return {'Authorization': f'Bearer {owner_token}'}


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def fake_timer():
    FakeTimer.created = []
    yield FakeTimer
    FakeTimer.created = []


@pytest.fixture
def discogs_client(fake_clock):
    """DiscogsClient with a token and a rate gate that never really sleeps."""
    gate = RateGate(clock=fake_clock, sleep=fake_clock.sleep)
    client = DiscogsClient(token='test-token', rate_gate=gate)
    yield client
    client.close()


@pytest.fixture
def jpeg_bytes():
    """A small valid JPEG."""
    buffer = io.BytesIO()
    Image.new('RGB', (32, 32), color='red').save(buffer, format='JPEG')
    return buffer.getvalue()


@pytest.fixture
def search_payload():
    """Raw Discogs /database/search response."""
    return {
        'pagination': {'page': 1, 'pages': 2, 'per_page': 2, 'items': 3, 'urls': {}},
        'results': [
            {
                'id': 1001,
                'type': 'release',
                'title': 'Miles Davis - Kind of Blue',
                'year': '1959',
                'label': ['Columbia', 'CBS'],
                'catno': 'CL 1355',
                'format': ['Vinyl', 'LP', 'Album', 'Mono'],
                'country': 'US',
                'thumb': 'https://i.discogs.com/thumb-1001.jpg',
                'cover_image': 'https://i.discogs.com/cover-1001.jpg',
            },
            {
                'id': 1002,
                'type': 'release',
                'title': 'Untitled',
                'thumb': '',
                'cover_image': '',
            },
        ],
    }


@pytest.fixture
def release_payload():
    """Raw Discogs /releases/{id} response."""
    return {
        'id': 1001,
        'title': 'Kind of Blue',
        'year': 1959,
        'country': 'US',
        'artists': [{'name': 'Miles Davis (2)', 'id': 23755}],
        'artists_sort': 'Davis, Miles',
        'labels': [{'name': 'Columbia', 'catno': 'CL 1355'}],
        'formats': [{'name': 'Vinyl', 'qty': '1', 'descriptions': ['LP', 'Album', 'Mono']}],
        'genres': ['Jazz'],
        'styles': ['Modal', 'Cool Jazz'],
        'tracklist': [
            {'position': '', 'type_': 'heading', 'title': 'Side One', 'duration': ''},
            {'position': 'A1', 'type_': 'track', 'title': 'So What', 'duration': '9:22'},
            {'position': 'A2', 'type_': 'track', 'title': 'Freddie Freeloader', 'duration': '9:46'},
            {'position': 'B1', 'type_': 'track', 'title': 'Blue In Green', 'duration': ''},
        ],
        'images': [
            {'type': 'secondary', 'uri': 'https://i.discogs.com/back-1001.jpg'},
            {'type': 'primary', 'uri': 'https://i.discogs.com/front-1001.jpg'},
        ],
    }


# Custom markers for test categorization
def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests")
    config.addinivalue_line("markers", "api: API endpoint tests")
    config.addinivalue_line("markers", "slow: Slow running tests")
