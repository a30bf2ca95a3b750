#!/usr/bin/env python3
"""
VinylShelf - Personal Vinyl Collection Manager
Main Flask application
"""

import os
import sqlite3
import logging
import threading
from datetime import datetime, timedelta
from pathlib import Path
from functools import wraps

from flask import (
    Flask, Blueprint, request, jsonify, g, current_app, send_from_directory
)
from werkzeug.exceptions import HTTPException

from config import Config
from init_db import create_database_schema
from collection_db import (
    get_profile_by_token, list_vinyls, get_vinyl, create_vinyl, update_vinyl,
    delete_vinyl, list_wishlist, create_wishlist_item, update_wishlist_item,
    delete_wishlist_item
)
from discogs_api import (
    get_global_client, shutdown_global_client, DiscogsConfigurationError,
    ERROR_RATE_LIMITED
)
from discogs_transform import (
    transform_search_response, transform_release_to_vinyl_form,
    get_primary_cover_image_url
)
from image_proxy import (
    initialize_image_store, get_image_store, shutdown_image_store, ImageProxyError,
    ImageRejectedError
)
from validation import (
    ValidationError, validate_barcode, validate_search_query, validate_release_id,
    parse_int_arg
)

logger = logging.getLogger(__name__)

api = Blueprint('api', __name__)

# Rate limiting storage (simple in-memory, per process)
rate_limit_storage = {}
_rate_limit_lock = threading.Lock()


def configure_logging(config):
    """Configure root logging once for the process."""
    Path(config.LOG_FILE).parent.mkdir(parents=True, exist_ok=True)
    logging.basicConfig(
        level=getattr(logging, str(config.LOG_LEVEL).upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.FileHandler(str(config.LOG_FILE)),
            logging.StreamHandler()
        ]
    )


def envelope(data=None, error=None, status: int = 200):
    """JSON response in the {data, error} shape every route uses."""
    return jsonify({'data': data, 'error': error}), status


def get_db():
    """Get database connection."""
    if 'db' not in g:
        g.db = sqlite3.connect(str(current_app.config['DATABASE_PATH']))
        g.db.row_factory = sqlite3.Row
        g.db.execute("PRAGMA foreign_keys = ON")
    return g.db


def close_db(error):
    """Close database connection on teardown."""
    db = g.pop('db', None)
    if db is not None:
        db.close()


def rate_limit(config_key: str):
    """Simple per-IP rate limiting decorator; limits come from app config."""
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            max_requests, window = current_app.config[config_key]
            client_ip = request.environ.get('HTTP_X_FORWARDED_FOR', request.remote_addr)
            key = (f.__name__, client_ip)
            now = datetime.now()
            cutoff = now - timedelta(seconds=window)

            with _rate_limit_lock:
                recent = [t for t in rate_limit_storage.get(key, []) if t > cutoff]
                if len(recent) >= max_requests:
                    rate_limit_storage[key] = recent
                    logger.warning(f"Inbound rate limit hit for {client_ip} on {f.__name__}")
                    return envelope(error='Rate limit exceeded', status=429)
                recent.append(now)
                rate_limit_storage[key] = recent

            return f(*args, **kwargs)
        return decorated_function
    return decorator


def owner_required(action: str):
    """
    Gate a mutating route on the owner flag.

    The caller sends ``Authorization: Bearer <token>``; unknown tokens get
    401 and non-owner profiles get 403.
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            header = request.headers.get('Authorization', '')
            token = header[7:].strip() if header.startswith('Bearer ') else ''

            profile = get_profile_by_token(get_db(), token) if token else None
            if profile is None:
                return envelope(error='Unauthorized', status=401)
            if not profile['is_owner']:
                return envelope(error=f'Only the owner can {action}', status=403)

            g.profile = profile
            return f(*args, **kwargs)
        return decorated_function
    return decorator


def discogs_failure(result):
    """Map a failed DiscogsResult onto an HTTP response."""
    status = 429 if result.error_kind == ERROR_RATE_LIMITED else 502
    return envelope(error=result.error, status=status)


# Routes
@api.route('/health')
def health():
    """Health check endpoint."""
    try:
        get_db().execute("SELECT 1")
        return jsonify({
            'status': 'healthy',
            'timestamp': datetime.now().isoformat(),
            'database': 'connected'
        }), 200
    except sqlite3.Error as e:
        logger.error(f"Health check failed: {e}")
        return jsonify({
            'status': 'unhealthy',
            'error': str(e),
            'timestamp': datetime.now().isoformat()
        }), 503


@api.route('/api/discogs/search')
@rate_limit('SEARCH_RATE_LIMIT')
def discogs_search():
    """Free-text Discogs release search."""
    try:
        query = validate_search_query(request.args.get('q'))
        page = parse_int_arg(request.args.get('page'), 1, name='page')
        per_page = parse_int_arg(request.args.get('per_page'),
                                 current_app.config['DISCOGS_SEARCH_PER_PAGE'],
                                 maximum=current_app.config['DISCOGS_MAX_PER_PAGE'],
                                 name='per_page')
    except ValidationError as e:
        return envelope(error=str(e), status=400)

    result = get_global_client().search_releases(query, page, per_page)
    if not result.ok:
        return discogs_failure(result)
    if not result.data:
        return envelope(error='No response from Discogs', status=502)

    payload = transform_search_response(result.data)
    payload['results'] = [r.to_dict() for r in payload['results']]
    return envelope(payload)


@api.route('/api/discogs/barcode')
@rate_limit('SEARCH_RATE_LIMIT')
def discogs_barcode():
    """Barcode (UPC/EAN) Discogs release search."""
    try:
        barcode = validate_barcode(request.args.get('barcode'),
                                   current_app.config['BARCODE_MIN_DIGITS'],
                                   current_app.config['BARCODE_MAX_DIGITS'])
        page = parse_int_arg(request.args.get('page'), 1, name='page')
    except ValidationError as e:
        return envelope(error=str(e), status=400)

    result = get_global_client().search_by_barcode(
        barcode, page, current_app.config['DISCOGS_SEARCH_PER_PAGE']
    )
    if not result.ok:
        return discogs_failure(result)
    if not result.data:
        return envelope(error='No response from Discogs', status=502)

    payload = transform_search_response(result.data)
    payload['results'] = [r.to_dict() for r in payload['results']]
    return envelope(payload)


@api.route('/api/discogs/release/<release_id>')
@rate_limit('RELEASE_RATE_LIMIT')
def discogs_release(release_id):
    """Full release mapped to vinyl form data, plus the cover to proxy."""
    try:
        release_id = validate_release_id(release_id)
    except ValidationError as e:
        return envelope(error=str(e), status=400)

    result = get_global_client().get_release(release_id)
    if not result.ok:
        return discogs_failure(result)
    if not result.data:
        return envelope(error='Release not found', status=404)

    return envelope({
        'vinyl': transform_release_to_vinyl_form(result.data).to_dict(),
        'coverImageUrl': get_primary_cover_image_url(result.data),
    })


@api.route('/api/discogs/image-proxy', methods=['POST'])
@rate_limit('IMAGE_PROXY_RATE_LIMIT')
@owner_required('upload images')
def discogs_image_proxy():
    """Copy a Discogs cover into local storage and return its URL."""
    body = request.get_json(silent=True) or {}
    image_url = body.get('imageUrl')
    if not image_url:
        return envelope(error='Image URL is required', status=400)

    discogs_id = body.get('discogsId')
    if discogs_id in (None, ''):
        discogs_id = None
    else:
        discogs_id = str(discogs_id)
        if not (discogs_id.isascii() and discogs_id.isdigit()):
            return envelope(error='Invalid Discogs ID', status=400)

    try:
        url = get_image_store().proxy_image(image_url, discogs_id)
    except ImageProxyError as e:
        return envelope(error=str(e), status=502)

    return envelope({'url': url})


@api.route('/api/uploads', methods=['POST'])
@rate_limit('UPLOAD_RATE_LIMIT')
@owner_required('upload photos')
def upload_photo():
    """Store an owner photo; the returned URL goes into ``custom_photos``."""
    upload = request.files.get('file')
    if upload is None or not upload.filename:
        return envelope(error='File is required', status=400)

    try:
        url = get_image_store().store_upload(upload.stream, upload.mimetype)
    except ImageRejectedError as e:
        return envelope(error=str(e), status=400)
    except ImageProxyError as e:
        return envelope(error=str(e), status=500)

    return envelope({'url': url}, status=201)


@api.route('/covers/<path:filename>')
def serve_cover(filename):
    """Serve proxied cover images."""
    response = send_from_directory(current_app.config['COVERS_DIR'], filename,
                                   conditional=True)
    response.headers['Cache-Control'] = 'public, max-age=604800, immutable'
    return response


@api.route('/api/vinyls', methods=['GET'])
def vinyls_index():
    try:
        year_start = parse_int_arg(request.args.get('yearStart'), None, minimum=0,
                                   name='yearStart')
        year_end = parse_int_arg(request.args.get('yearEnd'), None, minimum=0,
                                 name='yearEnd')
    except ValidationError as e:
        return envelope(error=str(e), status=400)

    vinyls = list_vinyls(
        get_db(),
        search=request.args.get('search') or None,
        genre=request.args.get('genre') or None,
        year_start=year_start,
        year_end=year_end,
    )
    return envelope(vinyls)


@api.route('/api/vinyls', methods=['POST'])
@owner_required('add vinyls')
def vinyls_create():
    try:
        vinyl = create_vinyl(get_db(), g.profile['user_id'], request.get_json(silent=True))
    except ValidationError as e:
        return envelope(error=str(e), status=400)
    return envelope(vinyl, status=201)


@api.route('/api/vinyls/<vinyl_id>', methods=['GET'])
def vinyls_show(vinyl_id):
    vinyl = get_vinyl(get_db(), vinyl_id)
    if vinyl is None:
        return envelope(error='Vinyl not found', status=404)
    return envelope(vinyl)


@api.route('/api/vinyls/<vinyl_id>', methods=['PATCH'])
@owner_required('edit vinyls')
def vinyls_update(vinyl_id):
    try:
        vinyl = update_vinyl(get_db(), vinyl_id, request.get_json(silent=True))
    except ValidationError as e:
        return envelope(error=str(e), status=400)
    if vinyl is None:
        return envelope(error='Vinyl not found', status=404)
    return envelope(vinyl)


@api.route('/api/vinyls/<vinyl_id>', methods=['DELETE'])
@owner_required('delete vinyls')
def vinyls_delete(vinyl_id):
    if not delete_vinyl(get_db(), vinyl_id):
        return envelope(error='Vinyl not found', status=404)
    return envelope()


@api.route('/api/wishlist', methods=['GET'])
def wishlist_index():
    return envelope(list_wishlist(get_db(), search=request.args.get('search') or None))


@api.route('/api/wishlist', methods=['POST'])
@owner_required('add wishlist items')
def wishlist_create():
    try:
        item = create_wishlist_item(get_db(), g.profile['user_id'],
                                    request.get_json(silent=True))
    except ValidationError as e:
        return envelope(error=str(e), status=400)
    return envelope(item, status=201)


@api.route('/api/wishlist/<item_id>', methods=['PATCH'])
@owner_required('edit wishlist items')
def wishlist_update(item_id):
    try:
        item = update_wishlist_item(get_db(), item_id, request.get_json(silent=True))
    except ValidationError as e:
        return envelope(error=str(e), status=400)
    if item is None:
        return envelope(error='Wishlist item not found', status=404)
    return envelope(item)


@api.route('/api/wishlist/<item_id>', methods=['DELETE'])
@owner_required('delete wishlist items')
def wishlist_delete(item_id):
    if not delete_wishlist_item(get_db(), item_id):
        return envelope(error='Wishlist item not found', status=404)
    return envelope()


# Error handlers
def handle_http_error(error: HTTPException):
    return envelope(error=error.description if error.code != 404 else 'Not found',
                    status=error.code)


def handle_configuration_error(error: DiscogsConfigurationError):
    logger.error(f"Discogs is not configured: {error}")
    return envelope(error='Discogs integration is not configured', status=500)


def handle_internal_error(error):
    logger.error(f"Internal error: {error}")
    return envelope(error='Internal server error', status=500)


def create_app(config=None) -> Flask:
    """
    Application factory.

    Args:
        config: Config class or instance; defaults to ``Config``
    """
    config = config or Config
    configure_logging(config)

    app = Flask(__name__)
    app.config.from_object(config)
    config.init_app(app)

    create_database_schema(Path(app.config['DATABASE_PATH']))
    initialize_image_store(app.config['COVERS_DIR'], app.config['COVERS_URL_PREFIX'],
                           app.config['UPLOAD_MAX_BYTES'])

    app.register_blueprint(api)
    app.teardown_appcontext(close_db)
    app.register_error_handler(HTTPException, handle_http_error)
    app.register_error_handler(DiscogsConfigurationError, handle_configuration_error)
    app.register_error_handler(500, handle_internal_error)

    logger.info(f"VinylShelf app created (database: {app.config['DATABASE_PATH']})")
    return app


def shutdown():
    """Release process-wide clients."""
    shutdown_global_client()
    shutdown_image_store()


if __name__ == '__main__':
    from atexit import register
    register(shutdown)

    application = create_app()
    application.run(
        host='0.0.0.0',
        port=int(os.environ.get('PORT', 5000)),
        debug=os.environ.get('FLASK_ENV') == 'development'
    )
