"""
SQLite access for the vinyl collection, the wishlist and owner profiles.

Every function takes an open ``sqlite3.Connection`` whose row factory is
``sqlite3.Row`` and commits its own writes. Payload dicts are validated
here; unknown keys are ignored.
"""

import json
import uuid
import hashlib
import logging
import secrets
import sqlite3
from datetime import datetime, timezone
from typing import Optional, Dict, List, Any, Tuple

from validation import ValidationError

logger = logging.getLogger(__name__)

TEXT_FIELDS = (
    'label', 'catalog_number', 'pressing_info', 'country', 'format',
    'sleeve_condition', 'media_condition', 'cover_art_url', 'notes',
    'purchase_info', 'discogs_id',
)

VINYL_FIELDS = ('artist', 'album', 'year', 'rpm', 'genre', 'custom_photos',
                'tracklist') + TEXT_FIELDS

WISHLIST_FIELDS = ('artist', 'album', 'year', 'label', 'cover_art_url',
                   'target_price', 'notes', 'discogs_id', 'position')

JSON_FIELDS = ('genre', 'custom_photos', 'tracklist')


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode('utf-8')).hexdigest()


def _row_to_dict(row: Optional[sqlite3.Row]) -> Optional[Dict[str, Any]]:
    if row is None:
        return None

    data = dict(row)
    for key in JSON_FIELDS:
        if key in data and data[key] is not None:
            data[key] = json.loads(data[key])
    if 'is_owner' in data:
        data['is_owner'] = bool(data['is_owner'])
    data.pop('api_token_hash', None)
    return data


def _like_pattern(text: str) -> str:
    escaped = text.replace('\\', '\\\\').replace('%', '\\%').replace('_', '\\_')
    return f'%{escaped}%'


# Field coercion ---------------------------------------------------------

def _required_text(name: str, value) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError('Artist and album are required')
    return value.strip()


def _optional_text(name: str, value) -> Optional[str]:
    if value is None or value == '':
        return None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    if not isinstance(value, str):
        raise ValidationError(f'{name} must be a string')
    return value


def _optional_int(name: str, value) -> Optional[int]:
    if value is None or value == '':
        return None
    if isinstance(value, bool):
        raise ValidationError(f'{name} must be an integer')
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f'{name} must be an integer')


def _optional_number(name: str, value) -> Optional[float]:
    if value is None or value == '':
        return None
    if isinstance(value, bool):
        raise ValidationError(f'{name} must be a number')
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ValidationError(f'{name} must be a number')


def _string_list(name: str, value) -> List[str]:
    if value is None:
        return []
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise ValidationError(f'{name} must be a list of strings')
    return value


def _tracklist(name: str, value) -> Optional[List[Dict[str, str]]]:
    if value is None:
        return None
    if not isinstance(value, list) or not all(isinstance(t, dict) for t in value):
        raise ValidationError('tracklist must be a list of tracks')
    return [
        {
            'position': str(t.get('position') or ''),
            'title': str(t.get('title') or ''),
            'duration': str(t.get('duration') or ''),
        }
        for t in value
    ]


_COERCERS = {
    'artist': _required_text,
    'album': _required_text,
    'year': _optional_int,
    'rpm': _optional_int,
    'position': _optional_int,
    'target_price': _optional_number,
    'genre': _string_list,
    'custom_photos': _string_list,
    'tracklist': _tracklist,
}


def clean_payload(body: Dict[str, Any], fields: Tuple[str, ...],
                  partial: bool = False) -> Dict[str, Any]:
    """
    Validate and coerce a request body.

    Args:
        body: Decoded JSON object
        fields: Columns the caller may set
        partial: When False, artist and album must be present

    Returns:
        Dict of column -> value for the provided (or required) fields
    """
    if not isinstance(body, dict):
        raise ValidationError('Request body must be a JSON object')

    if not partial and (not body.get('artist') or not body.get('album')):
        raise ValidationError('Artist and album are required')

    cleaned = {}
    for name in fields:
        if name not in body:
            continue
        coerce = _COERCERS.get(name, _optional_text)
        cleaned[name] = coerce(name, body[name])

    if 'position' in cleaned and cleaned['position'] is None:
        raise ValidationError('position must be an integer')
    return cleaned


def _encode(values: Dict[str, Any]) -> Dict[str, Any]:
    encoded = dict(values)
    for key in JSON_FIELDS:
        if key in encoded and encoded[key] is not None:
            encoded[key] = json.dumps(encoded[key])
    return encoded


def _insert(db: sqlite3.Connection, table: str, values: Dict[str, Any]):
    values = _encode(values)
    columns = ', '.join(values)
    placeholders = ', '.join('?' for _ in values)
    db.execute(f"INSERT INTO {table} ({columns}) VALUES ({placeholders})",
               tuple(values.values()))
    db.commit()


def _update(db: sqlite3.Connection, table: str, row_id: str,
            values: Dict[str, Any]) -> bool:
    values = _encode(values)
    values['updated_at'] = _now()
    assignments = ', '.join(f"{column} = ?" for column in values)
    cursor = db.execute(f"UPDATE {table} SET {assignments} WHERE id = ?",
                        tuple(values.values()) + (row_id,))
    db.commit()
    return cursor.rowcount > 0


def _delete(db: sqlite3.Connection, table: str, row_id: str) -> bool:
    cursor = db.execute(f"DELETE FROM {table} WHERE id = ?", (row_id,))
    db.commit()
    return cursor.rowcount > 0


# Profiles ---------------------------------------------------------------

def get_profile_by_token(db: sqlite3.Connection, token: str) -> Optional[Dict[str, Any]]:
    """Look up the profile an API token belongs to."""
    if not token:
        return None
    cursor = db.execute("SELECT * FROM profiles WHERE api_token_hash = ?",
                        (hash_token(token),))
    return _row_to_dict(cursor.fetchone())


def set_owner(db: sqlite3.Connection, user_id: str,
              is_owner: bool = True) -> Tuple[Dict[str, Any], str]:
    """
    Create or update a profile, mark its owner flag and issue a new token.

    Returns:
        Tuple of (profile, plain API token); only the hash is stored
    """
    token = secrets.token_urlsafe(32)
    now = _now()

    existing = db.execute("SELECT id FROM profiles WHERE user_id = ?",
                          (user_id,)).fetchone()
    if existing:
        db.execute("""
            UPDATE profiles SET is_owner = ?, api_token_hash = ?, updated_at = ?
            WHERE user_id = ?
        """, (int(is_owner), hash_token(token), now, user_id))
        logger.info(f"Updated profile for {user_id} (owner={is_owner})")
    else:
        db.execute("""
            INSERT INTO profiles (id, user_id, is_owner, api_token_hash, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?)
        """, (str(uuid.uuid4()), user_id, int(is_owner), hash_token(token), now, now))
        logger.info(f"Created profile for {user_id} (owner={is_owner})")
    db.commit()

    profile = db.execute("SELECT * FROM profiles WHERE user_id = ?", (user_id,)).fetchone()
    return _row_to_dict(profile), token


# Vinyls -----------------------------------------------------------------

def list_vinyls(db: sqlite3.Connection, search: Optional[str] = None,
                genre: Optional[str] = None, year_start: Optional[int] = None,
                year_end: Optional[int] = None) -> List[Dict[str, Any]]:
    """
    List the collection, newest first.

    Args:
        search: Case-insensitive substring of artist or album
        genre: Only records whose genre list contains this value
        year_start: Inclusive lower year bound
        year_end: Inclusive upper year bound
    """
    clauses = []
    params: List[Any] = []

    if search:
        pattern = _like_pattern(search)
        clauses.append("(artist LIKE ? ESCAPE '\\' OR album LIKE ? ESCAPE '\\')")
        params.extend([pattern, pattern])
    if genre:
        clauses.append("EXISTS (SELECT 1 FROM json_each(vinyls.genre) WHERE value = ?)")
        params.append(genre)
    if year_start is not None:
        clauses.append("year >= ?")
        params.append(year_start)
    if year_end is not None:
        clauses.append("year <= ?")
        params.append(year_end)

    sql = "SELECT * FROM vinyls"
    if clauses:
        sql += " WHERE " + " AND ".join(clauses)
    sql += " ORDER BY created_at DESC, rowid DESC"

    return [_row_to_dict(row) for row in db.execute(sql, params).fetchall()]


def get_vinyl(db: sqlite3.Connection, vinyl_id: str) -> Optional[Dict[str, Any]]:
    cursor = db.execute("SELECT * FROM vinyls WHERE id = ?", (vinyl_id,))
    return _row_to_dict(cursor.fetchone())


def create_vinyl(db: sqlite3.Connection, owner_id: str,
                 body: Dict[str, Any]) -> Dict[str, Any]:
    """Insert a record from VinylFormData-shaped input."""
    values = clean_payload(body, VINYL_FIELDS)
    values.setdefault('genre', [])
    values.setdefault('custom_photos', [])

    now = _now()
    values.update({
        'id': str(uuid.uuid4()),
        'owner_id': owner_id,
        'created_at': now,
        'updated_at': now,
    })
    _insert(db, 'vinyls', values)

    logger.info(f"Added vinyl {values['artist']} - {values['album']} ({values['id']})")
    return get_vinyl(db, values['id'])


def update_vinyl(db: sqlite3.Connection, vinyl_id: str,
                 body: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """Apply a partial update; returns None when the record does not exist."""
    values = clean_payload(body, VINYL_FIELDS, partial=True)
    if not _update(db, 'vinyls', vinyl_id, values):
        return None
    return get_vinyl(db, vinyl_id)


def delete_vinyl(db: sqlite3.Connection, vinyl_id: str) -> bool:
    return _delete(db, 'vinyls', vinyl_id)


# Wishlist ---------------------------------------------------------------

def list_wishlist(db: sqlite3.Connection, search: Optional[str] = None) -> List[Dict[str, Any]]:
    """List wishlist items ordered by artist."""
    sql = "SELECT * FROM wishlist_items"
    params: List[Any] = []
    if search:
        pattern = _like_pattern(search)
        sql += " WHERE artist LIKE ? ESCAPE '\\' OR album LIKE ? ESCAPE '\\'"
        params.extend([pattern, pattern])
    sql += " ORDER BY artist COLLATE NOCASE ASC, position ASC"

    return [_row_to_dict(row) for row in db.execute(sql, params).fetchall()]


def get_wishlist_item(db: sqlite3.Connection, item_id: str) -> Optional[Dict[str, Any]]:
    cursor = db.execute("SELECT * FROM wishlist_items WHERE id = ?", (item_id,))
    return _row_to_dict(cursor.fetchone())


def create_wishlist_item(db: sqlite3.Connection, owner_id: str,
                         body: Dict[str, Any]) -> Dict[str, Any]:
    """Insert a wishlist item at the end of the list."""
    values = clean_payload(body, WISHLIST_FIELDS)
    values.pop('position', None)

    last = db.execute("SELECT MAX(position) AS position FROM wishlist_items").fetchone()
    next_position = last['position'] + 1 if last['position'] is not None else 0

    now = _now()
    values.update({
        'id': str(uuid.uuid4()),
        'owner_id': owner_id,
        'position': next_position,
        'created_at': now,
        'updated_at': now,
    })
    _insert(db, 'wishlist_items', values)

    logger.info(f"Added wishlist item {values['artist']} - {values['album']} ({values['id']})")
    return get_wishlist_item(db, values['id'])


def update_wishlist_item(db: sqlite3.Connection, item_id: str,
                         body: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    values = clean_payload(body, WISHLIST_FIELDS, partial=True)
    if not _update(db, 'wishlist_items', item_id, values):
        return None
    return get_wishlist_item(db, item_id)


def delete_wishlist_item(db: sqlite3.Connection, item_id: str) -> bool:
    return _delete(db, 'wishlist_items', item_id)
