"""
Mapping from Discogs API payloads to VinylShelf form data.

All functions are pure: raw Discogs JSON (dicts) in, dataclasses out.
Cover art is never copied from Discogs here; the import workflow fills
``cover_art_url`` only after the image has been proxied into our own
storage.
"""

import re
from dataclasses import dataclass, field, asdict
from typing import Optional, Dict, List, Any, Callable

UNKNOWN_ARTIST = 'Unknown Artist'
UNKNOWN_ALBUM = 'Unknown Album'
MAX_GENRES = 5

# Discogs format names/descriptions -> our format options
FORMAT_MAP = {
    'LP': 'LP',
    'Album': 'LP',
    '12"': '12"',
    '7"': '7"',
    '10"': '10"',
    '2xLP': '2xLP',
    '3xLP': '3xLP',
    'Box Set': 'Box Set',
    'EP': '12"',
    'Single': '7"',
}

_DISAMBIGUATION_SUFFIX = re.compile(r'\s*\(\d+\)$')


@dataclass
class Track:
    position: str = ''
    title: str = ''
    duration: str = ''


@dataclass
class VinylFormData:
    """Normalized record data handed to the collection CRUD layer."""
    artist: str
    album: str
    year: Optional[int] = None
    label: Optional[str] = None
    catalog_number: Optional[str] = None
    pressing_info: Optional[str] = None
    country: Optional[str] = None
    format: Optional[str] = None
    rpm: Optional[int] = None
    sleeve_condition: Optional[str] = None
    media_condition: Optional[str] = None
    cover_art_url: Optional[str] = None
    genre: List[str] = field(default_factory=list)
    notes: Optional[str] = None
    purchase_info: Optional[str] = None
    discogs_id: Optional[str] = None
    tracklist: List[Track] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class SearchResultDisplay:
    """Lightweight search hit for listing candidates."""
    id: int
    artist: str
    album: str
    year: Optional[str]
    label: Optional[str]
    catno: Optional[str]
    format: Optional[str]
    country: Optional[str]
    thumb: str
    coverImage: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def clean_artist_name(name: str) -> str:
    """Strip the "(2)" style suffix Discogs uses to tell same-named artists apart."""
    if not _DISAMBIGUATION_SUFFIX.search(name):
        return name
    return _DISAMBIGUATION_SUFFIX.sub('', name).strip()


def _quantity(fmt: Dict[str, Any]) -> int:
    try:
        return int(fmt.get('qty') or 0)
    except (TypeError, ValueError):
        return 0


def _multi_disc_rule(fmt: Dict[str, Any]) -> Optional[str]:
    qty = _quantity(fmt)
    if fmt.get('name') == 'Vinyl' and qty >= 2:
        return f'{qty}xLP'
    return None


def _description_rule(fmt: Dict[str, Any]) -> Optional[str]:
    for description in fmt.get('descriptions') or []:
        if description in FORMAT_MAP:
            return FORMAT_MAP[description]
    return None


def _name_rule(fmt: Dict[str, Any]) -> Optional[str]:
    name = fmt.get('name')
    return FORMAT_MAP.get(name, name) if name else None


# Evaluated in order against the first format entry; first match wins.
FORMAT_RULES: List[Callable[[Dict[str, Any]], Optional[str]]] = [
    _multi_disc_rule,
    _description_rule,
    _name_rule,
]


def get_primary_format(formats: Optional[List[Dict[str, Any]]]) -> Optional[str]:
    """Pick a single display format from a release's format list."""
    if not formats:
        return None

    primary = formats[0]
    for rule in FORMAT_RULES:
        result = rule(primary)
        if result:
            return result
    return None


def extract_genres(release: Dict[str, Any]) -> List[str]:
    """Genres then styles, first-seen order, deduplicated, at most five."""
    combined = list(release.get('genres') or []) + list(release.get('styles') or [])
    return list(dict.fromkeys(combined))[:MAX_GENRES]


def transform_tracklist(tracklist: Optional[List[Dict[str, Any]]]) -> List[Track]:
    """Keep only real tracks; headings and index entries are dropped."""
    if not tracklist:
        return []

    return [
        Track(
            position=track.get('position') or '',
            title=track.get('title') or '',
            duration=track.get('duration') or '',
        )
        for track in tracklist
        if track.get('type_') == 'track'
    ]


def _release_artist(release: Dict[str, Any]) -> str:
    artists = release.get('artists') or []
    if artists:
        name = clean_artist_name(artists[0].get('name') or '')
        if name:
            return name
    return release.get('artists_sort') or UNKNOWN_ARTIST


def transform_release_to_vinyl_form(release: Dict[str, Any]) -> VinylFormData:
    """
    Transform a full Discogs release into VinylFormData.

    Args:
        release: Raw release payload from ``GET /releases/{id}``

    Returns:
        VinylFormData with ``cover_art_url`` left unset
    """
    labels = release.get('labels') or []
    first_label = labels[0] if labels else {}

    return VinylFormData(
        artist=_release_artist(release),
        album=release.get('title') or UNKNOWN_ALBUM,
        year=release.get('year') or None,
        label=first_label.get('name') or None,
        catalog_number=first_label.get('catno') or None,
        country=release.get('country') or None,
        format=get_primary_format(release.get('formats')),
        genre=extract_genres(release),
        discogs_id=str(release['id']) if release.get('id') is not None else None,
        tracklist=transform_tracklist(release.get('tracklist')),
    )


def get_primary_cover_image_url(release: Dict[str, Any]) -> Optional[str]:
    """URL of the primary image, else the first image, else None."""
    images = release.get('images') or []
    if not images:
        return None

    for image in images:
        if image.get('type') == 'primary':
            return image.get('uri')
    return images[0].get('uri')


def transform_search_result(result: Dict[str, Any]) -> SearchResultDisplay:
    """
    Transform a raw search hit for display.

    Discogs titles read "Artist - Album"; the split happens on the first
    " - ", so an artist name that itself contains " - " is misparsed.
    """
    title = result.get('title') or ''
    if ' - ' in title:
        artist_part, album = title.split(' - ', 1)
        artist = clean_artist_name(artist_part) or UNKNOWN_ARTIST
    else:
        artist, album = UNKNOWN_ARTIST, title

    labels = result.get('label') or []
    formats = result.get('format') or []

    return SearchResultDisplay(
        id=result.get('id'),
        artist=artist,
        album=album,
        year=result.get('year') or None,
        label=labels[0] if labels else None,
        catno=result.get('catno') or None,
        format=', '.join(formats) or None,
        country=result.get('country') or None,
        thumb=result.get('thumb') or '',
        coverImage=result.get('cover_image') or '',
    )


def transform_search_response(payload: Dict[str, Any]) -> Dict[str, Any]:
    """Turn a raw ``/database/search`` payload into ``{results, pagination}``."""
    pagination = payload.get('pagination') or {}
    return {
        'results': [transform_search_result(r) for r in payload.get('results') or []],
        'pagination': {
            'page': pagination.get('page', 1),
            'pages': pagination.get('pages', 1),
            'total': pagination.get('items', 0),
        },
    }
