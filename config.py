import os
from pathlib import Path

class Config:
    # Flask settings
    SECRET_KEY = os.environ.get('SECRET_KEY') or 'dev-secret-key-change-in-production'

    # Storage settings
    BASE_DIR = Path(__file__).parent
    DATA_DIR = Path(os.environ.get('VINYLSHELF_DATA_DIR', BASE_DIR / 'data'))
    DATABASE_PATH = DATA_DIR / 'vinylshelf.db'
    COVERS_DIR = DATA_DIR / 'covers'
    COVERS_URL_PREFIX = '/covers'

    # Logging
    LOG_FILE = DATA_DIR / 'vinylshelf.log'
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')

    # Discogs API settings
    DISCOGS_API_BASE = 'https://api.discogs.com'
    DISCOGS_USER_AGENT = 'VinylShelf/1.0'
    DISCOGS_TOKEN_ENV = 'DISCOGS_PERSONAL_ACCESS_TOKEN'
    DISCOGS_MIN_REQUEST_INTERVAL = 1.0  # seconds between API calls
    DISCOGS_RATE_LIMIT_LOW_WATER = 5  # remaining-quota count that triggers the cooldown
    DISCOGS_RATE_LIMIT_COOLDOWN = 5.0  # seconds
    DISCOGS_DEFAULT_RATE_LIMIT = 60  # assumed when the quota headers are absent
    DISCOGS_REQUEST_TIMEOUT = (10, 30)  # (connect, read) timeouts
    DISCOGS_SEARCH_PER_PAGE = 20
    DISCOGS_MAX_PER_PAGE = 100

    # Import workflow
    SEARCH_DEBOUNCE_SECONDS = 0.5
    BARCODE_MIN_DIGITS = 8
    BARCODE_MAX_DIGITS = 14

    # Image proxy
    IMAGE_PROXY_ALLOWED_HOSTS = ('i.discogs.com', 'img.discogs.com', 'st.discogs.com')
    IMAGE_PROXY_MAX_BYTES = 10 * 1024 * 1024
    IMAGE_PROXY_TIMEOUT = (10, 30)

    # Owner photo uploads
    UPLOAD_MAX_BYTES = 5 * 1024 * 1024

    # Inbound rate limits (requests per window, window in seconds)
    SEARCH_RATE_LIMIT = (30, 60)
    RELEASE_RATE_LIMIT = (30, 60)
    IMAGE_PROXY_RATE_LIMIT = (10, 60)
    UPLOAD_RATE_LIMIT = (10, 60)

    @classmethod
    def init_app(cls, app):
        # Ensure data directories exist
        Path(app.config['DATA_DIR']).mkdir(parents=True, exist_ok=True)
        Path(app.config['COVERS_DIR']).mkdir(parents=True, exist_ok=True)
