#!/usr/bin/env python3
"""
VinylShelf Cover Image Proxy

Copies Discogs-hosted cover images into local storage so stored records
never hot-link a third-party host:
- Host allow-list (https Discogs image hosts only)
- Content-type and decode validation with Pillow
- Size cap while streaming the download
- Unique, never-overwritten file names

Owner photo uploads land in the same directory through the same checks.
"""

import io
import time
import logging
import threading
from pathlib import Path
from typing import BinaryIO, Optional, Sequence
from urllib.parse import urlparse

import requests
from PIL import Image

from config import Config

# Configure module-specific logging
logger = logging.getLogger(__name__)

EXTENSION_MAP = {
    'image/jpeg': 'jpg',
    'image/png': 'png',
    'image/webp': 'webp',
    'image/gif': 'gif',
}

# Types accepted from owner uploads
UPLOAD_TYPES = ('image/jpeg', 'image/png', 'image/webp')


class ImageProxyError(Exception):
    """Exception for image proxy failures."""
    pass


class ImageRejectedError(ImageProxyError):
    """The caller supplied something that is not an acceptable image."""
    pass


class ImageStore:
    """
    Downloads external cover images and stores them under ``covers_dir``.
    """

    def __init__(self, covers_dir: Path, url_prefix: str = Config.COVERS_URL_PREFIX,
                 allowed_hosts: Sequence[str] = Config.IMAGE_PROXY_ALLOWED_HOSTS,
                 max_bytes: int = Config.IMAGE_PROXY_MAX_BYTES,
                 timeout=Config.IMAGE_PROXY_TIMEOUT, clock=time.time,
                 upload_max_bytes: int = Config.UPLOAD_MAX_BYTES):
        """
        Initialize the image store.

        Args:
            covers_dir: Directory the proxied images are written to
            url_prefix: Public URL path the directory is served under
            allowed_hosts: Hostnames images may be fetched from
            max_bytes: Largest accepted image payload
            timeout: (connect, read) timeout for downloads
            upload_max_bytes: Largest accepted owner upload
        """
        self.covers_dir = Path(covers_dir)
        self.url_prefix = url_prefix.rstrip('/')
        self.allowed_hosts = frozenset(allowed_hosts)
        self.max_bytes = max_bytes
        self.upload_max_bytes = upload_max_bytes
        self.timeout = timeout
        self._clock = clock
        self._name_lock = threading.Lock()

        self.covers_dir.mkdir(parents=True, exist_ok=True)
        self.download_session = self._create_session()

        logger.info(f"Image store initialized: {self.covers_dir}")

    def _create_session(self) -> requests.Session:
        """Create requests session for image downloads."""
        session = requests.Session()
        session.headers.update({
            'User-Agent': Config.DISCOGS_USER_AGENT,
            'Accept': 'image/webp,image/jpeg,image/png,image/*;q=0.8',
        })

        adapter = requests.adapters.HTTPAdapter(
            pool_connections=2,
            pool_maxsize=4,
            max_retries=1
        )
        session.mount('http://', adapter)
        session.mount('https://', adapter)

        return session

    def _check_url(self, url: str):
        parsed = urlparse(url)
        if parsed.scheme != 'https' or parsed.hostname not in self.allowed_hosts:
            logger.warning(f"Blocked image URL outside allowed hosts: {url}")
            raise ImageProxyError('Image host not allowed')

    def _download_image(self, url: str):
        """Download image from URL, returning (content, content_type)."""
        try:
            response = self.download_session.get(url, timeout=self.timeout, stream=True)
        except requests.exceptions.RequestException as e:
            logger.error(f"Failed to download image from {url}: {e}")
            raise ImageProxyError('Failed to fetch image from Discogs')

        with response:
            if response.status_code != 200:
                logger.warning(f"Failed to fetch image: {response.status_code} for {url}")
                raise ImageProxyError('Failed to fetch image from Discogs')

            content_type = response.headers.get('Content-Type') or 'image/jpeg'
            content_type = content_type.split(';')[0].strip().lower()
            if not content_type.startswith('image/'):
                raise ImageProxyError('Invalid image format')

            content = bytearray()
            try:
                for chunk in response.iter_content(chunk_size=8192):
                    content.extend(chunk)
                    if len(content) > self.max_bytes:
                        raise ImageProxyError('Image too large')
            except requests.exceptions.RequestException as e:
                logger.error(f"Image download interrupted for {url}: {e}")
                raise ImageProxyError('Failed to fetch image from Discogs')

        return bytes(content), content_type

    @staticmethod
    def _verify_image(content: bytes):
        try:
            with Image.open(io.BytesIO(content)) as img:
                img.verify()
        except Exception as e:
            logger.warning(f"Payload is not a readable image: {e}")
            raise ImageRejectedError('Invalid image format') from e

    def _write_unique(self, content: bytes, prefix: str, ext: str) -> str:
        """Write the payload under a fresh ``<prefix>-<ms>.<ext>`` name and return it."""
        with self._name_lock:
            timestamp = int(self._clock() * 1000)
            while True:
                filename = f"{prefix}-{timestamp}.{ext}"
                try:
                    with open(self.covers_dir / filename, 'xb') as f:
                        f.write(content)
                    return filename
                except FileExistsError:
                    timestamp += 1

    def _store(self, content: bytes, prefix: str, ext: str, source: str) -> str:
        try:
            filename = self._write_unique(content, prefix, ext)
        except OSError as e:
            logger.error(f"Failed to store image from {source}: {e}")
            raise ImageProxyError('Failed to upload image to storage')

        logger.info(f"Stored image {source} -> {filename}")
        return f"{self.url_prefix}/{filename}"

    def proxy_image(self, image_url: str, discogs_id: Optional[str] = None) -> str:
        """
        Copy an external image into the store.

        Args:
            image_url: Discogs image URL
            discogs_id: Release ID used to name the stored file (digits only)

        Returns:
            Public URL of the stored copy

        Raises:
            ImageProxyError: If the image cannot be fetched, validated or stored
        """
        if not image_url:
            raise ImageRejectedError('Image URL is required')

        prefix = 'discogs'
        if discogs_id:
            release_id = str(discogs_id)
            if not (release_id.isascii() and release_id.isdigit()):
                raise ImageRejectedError('Invalid Discogs ID')
            prefix = f"discogs-{int(release_id)}"

        self._check_url(image_url)
        content, content_type = self._download_image(image_url)
        self._verify_image(content)

        return self._store(content, prefix, EXTENSION_MAP.get(content_type, 'jpg'), image_url)

    def store_upload(self, stream: BinaryIO, content_type: Optional[str]) -> str:
        """
        Store a photo uploaded by the owner.

        Only JPG, PNG and WebP are accepted and the payload must stay under
        ``upload_max_bytes``. The stream is read in chunks so an oversized
        upload is abandoned without buffering all of it.

        Returns:
            Public URL of the stored photo

        Raises:
            ImageRejectedError: Wrong type, too large, or not a readable image
            ImageProxyError: If the photo cannot be written
        """
        content_type = (content_type or '').split(';')[0].strip().lower()
        if content_type not in UPLOAD_TYPES:
            raise ImageRejectedError('Please upload a JPG, PNG or WebP image')

        content = bytearray()
        while True:
            chunk = stream.read(8192)
            if not chunk:
                break
            content.extend(chunk)
            if len(content) > self.upload_max_bytes:
                raise ImageRejectedError('Image too large')

        if not content:
            raise ImageRejectedError('File is empty')

        content = bytes(content)
        self._verify_image(content)
        return self._store(content, 'upload', EXTENSION_MAP[content_type], 'upload')

    def shutdown(self):
        """Release the download session."""
        self.download_session.close()
        logger.info("Image store shutdown complete")


# Global store instance
_global_store: Optional[ImageStore] = None


def get_image_store() -> Optional[ImageStore]:
    """Get the global image store instance."""
    return _global_store


def initialize_image_store(covers_dir: Path, url_prefix: str = Config.COVERS_URL_PREFIX,
                           upload_max_bytes: int = Config.UPLOAD_MAX_BYTES) -> ImageStore:
    """
    Initialize the global image store.

    Args:
        covers_dir: Directory for proxied images
        url_prefix: Public URL path for that directory
        upload_max_bytes: Largest accepted owner upload
    """
    global _global_store

    if _global_store is not None:
        _global_store.shutdown()
    _global_store = ImageStore(covers_dir, url_prefix, upload_max_bytes=upload_max_bytes)
    logger.info("Global image store initialized")
    return _global_store


def shutdown_image_store():
    """Shutdown the global image store."""
    global _global_store

    if _global_store:
        _global_store.shutdown()
        _global_store = None
        logger.info("Global image store shutdown")
