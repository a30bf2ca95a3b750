"""
Search-then-import workflow for adding records from Discogs.

One ``ImportWorkflow`` drives one user session:

    Idle -> Searching -> ResultsShown -> Selecting -> Importing -> Idle

Free-text searches are debounced; barcode searches run immediately. Every
outbound call carries a CancellationToken, and starting a new operation
cancels the previous token before anything else happens, so a superseded
response is never applied. Nothing here is persisted: ``select_result``
hands back VinylFormData for the collection CRUD layer.
"""

import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Dict, Tuple, Callable

from config import Config
from discogs_api import (
    CancellationToken, DiscogsClient, DiscogsConfigurationError, DiscogsResult,
    ERROR_NETWORK
)
from discogs_transform import (
    SearchResultDisplay, VinylFormData, transform_search_response,
    transform_release_to_vinyl_form, get_primary_cover_image_url
)
from validation import ValidationError, validate_barcode

logger = logging.getLogger(__name__)

MODE_QUERY = 'query'
MODE_BARCODE = 'barcode'

SEARCH_FAILED_MESSAGE = 'Failed to search Discogs'
RELEASE_FAILED_MESSAGE = 'Failed to fetch release'


class WorkflowState(Enum):
    IDLE = 'idle'
    SEARCHING = 'searching'
    RESULTS_SHOWN = 'results_shown'
    SELECTING = 'selecting'
    IMPORTING = 'importing'


@dataclass(frozen=True)
class WorkflowSnapshot:
    """Read-only view of the workflow for rendering."""
    state: WorkflowState
    results: Tuple[SearchResultDisplay, ...]
    pagination: Optional[Dict[str, int]]
    error: Optional[str]
    query: str
    mode: str

    @property
    def is_loading(self) -> bool:
        return self.state in (WorkflowState.SEARCHING, WorkflowState.SELECTING,
                              WorkflowState.IMPORTING)

    @property
    def has_more(self) -> bool:
        return bool(self.pagination) and self.pagination['page'] < self.pagination['pages']


class ImportWorkflow:
    """
    Orchestrates Discogs search, candidate selection and cover proxying.

    Args:
        client: DiscogsClient used for all lookups
        image_proxy: Object with ``proxy_image(url, discogs_id) -> str``;
            when None, imported records simply have no cover
        debounce_seconds: Quiet period before a free-text search fires
        per_page: Results requested per page
        timer_factory: ``threading.Timer``-compatible factory
        on_change: Called with a WorkflowSnapshot after each state change
    """

    def __init__(self, client: DiscogsClient, image_proxy=None,
                 debounce_seconds: float = Config.SEARCH_DEBOUNCE_SECONDS,
                 per_page: int = Config.DISCOGS_SEARCH_PER_PAGE,
                 timer_factory: Callable = threading.Timer,
                 on_change: Optional[Callable[[WorkflowSnapshot], None]] = None):
        self.client = client
        self.image_proxy = image_proxy
        self.debounce_seconds = debounce_seconds
        self.per_page = per_page
        self._timer_factory = timer_factory
        self._on_change = on_change

        self._lock = threading.Lock()
        self._timer = None
        self._token: Optional[CancellationToken] = None

        self._state = WorkflowState.IDLE
        self._results = []
        self._pagination: Optional[Dict[str, int]] = None
        self._error: Optional[str] = None
        self._query = ''
        self._mode = MODE_QUERY

    # -- internal helpers (call with self._lock held) -------------------

    def _cancel_timer(self):
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _new_token(self) -> CancellationToken:
        if self._token is not None:
            self._token.cancel()
        self._token = CancellationToken()
        return self._token

    def _cancel_inflight(self):
        if self._token is not None:
            self._token.cancel()
            self._token = None

    def _is_current(self, token: CancellationToken) -> bool:
        return token is self._token and not token.cancelled

    def _reset(self):
        self._state = WorkflowState.IDLE
        self._results = []
        self._pagination = None
        self._error = None

    def _settle_after_error(self, message: str):
        self._error = message
        self._state = WorkflowState.RESULTS_SHOWN if self._results else WorkflowState.IDLE

    # -------------------------------------------------------------------

    def _notify(self):
        if self._on_change is not None:
            self._on_change(self.snapshot())

    @staticmethod
    def _error_message(result: DiscogsResult, fallback: str) -> str:
        if result.error_kind == ERROR_NETWORK:
            return fallback
        return result.error

    def snapshot(self) -> WorkflowSnapshot:
        with self._lock:
            return WorkflowSnapshot(
                state=self._state,
                results=tuple(self._results),
                pagination=dict(self._pagination) if self._pagination else None,
                error=self._error,
                query=self._query,
                mode=self._mode,
            )

    def _call_client(self, fn, *args, **kwargs) -> DiscogsResult:
        try:
            return fn(*args, **kwargs)
        except DiscogsConfigurationError as e:
            logger.error(f"Discogs client is not configured: {e}")
            return DiscogsResult(error=str(e))

    def _execute_search(self, query: str, mode: str, page: int, append: bool,
                        token: CancellationToken):
        with self._lock:
            if not self._is_current(token):
                return
            self._timer = None
            self._state = WorkflowState.SEARCHING
            self._error = None
        self._notify()

        if mode == MODE_BARCODE:
            result = self._call_client(self.client.search_by_barcode, query, page=page,
                                       per_page=self.per_page, cancel_token=token)
        else:
            result = self._call_client(self.client.search_releases, query, page=page,
                                       per_page=self.per_page, cancel_token=token)

        with self._lock:
            if not self._is_current(token):
                logger.debug(f"Discarding superseded {mode} search for '{query}'")
                return
            self._token = None

            if result.ok:
                payload = transform_search_response(result.data or {})
                if append:
                    self._results = self._results + payload['results']
                else:
                    self._results = payload['results']
                self._pagination = payload['pagination']
                self._error = None
                self._state = WorkflowState.RESULTS_SHOWN
            else:
                self._settle_after_error(self._error_message(result, SEARCH_FAILED_MESSAGE))
        self._notify()

    def search(self, text: str, immediate: bool = False):
        """
        Debounced free-text search.

        Each call restarts the quiet period and cancels whatever request is
        still outstanding; blank text clears the workflow. ``immediate``
        skips the debounce and searches on the calling thread (explicit
        submit).
        """
        token = None
        with self._lock:
            self._cancel_timer()
            self._query = (text or '').strip()
            self._mode = MODE_QUERY

            if not text or not text.strip():
                self._cancel_inflight()
                self._reset()
            else:
                token = self._new_token()
                self._pagination = None
                if not immediate:
                    timer = self._timer_factory(
                        self.debounce_seconds, self._execute_search,
                        args=(self._query, MODE_QUERY, 1, False, token)
                    )
                    timer.daemon = True
                    self._timer = timer
                    timer.start()

        if token is not None and immediate:
            self._execute_search(text.strip(), MODE_QUERY, 1, False, token)
        else:
            self._notify()

    def search_by_barcode(self, code: str) -> WorkflowSnapshot:
        """Immediate barcode search; invalid barcodes never reach the network."""
        with self._lock:
            self._cancel_timer()
            self._cancel_inflight()
            self._query = code or ''
            self._mode = MODE_BARCODE

            if not code or not code.strip():
                self._reset()
                token = None
            else:
                try:
                    barcode = validate_barcode(code)
                except ValidationError as e:
                    self._reset()
                    self._error = str(e)
                    token = None
                else:
                    self._query = barcode
                    token = self._new_token()

        if token is None:
            self._notify()
        else:
            self._execute_search(barcode, MODE_BARCODE, 1, False, token)
        return self.snapshot()

    def load_more(self) -> bool:
        """
        Append the next page of the current search.

        Returns:
            bool: False (and nothing happens) when there is no further page
        """
        with self._lock:
            pagination = self._pagination
            if (self._state is not WorkflowState.RESULTS_SHOWN or not pagination
                    or pagination['page'] >= pagination['pages']):
                return False
            token = self._new_token()
            query, mode, page = self._query, self._mode, pagination['page'] + 1

        self._execute_search(query, mode, page, True, token)
        return True

    def select_result(self, release_id: int) -> Optional[VinylFormData]:
        """
        Fetch the full release and proxy its cover image.

        Returns:
            VinylFormData ready for the CRUD layer, or None when the release
            could not be fetched (the error is exposed through snapshot()).
            A failed cover proxy is not an error: the form comes back with
            ``cover_art_url`` unset.
        """
        with self._lock:
            self._cancel_timer()
            token = self._new_token()
            self._state = WorkflowState.SELECTING
            self._error = None
        self._notify()

        result = self._call_client(self.client.get_release, release_id, cancel_token=token)

        with self._lock:
            if not self._is_current(token):
                return None
            if not result.ok:
                self._token = None
                self._settle_after_error(self._error_message(result, RELEASE_FAILED_MESSAGE))
                error = self._error
            elif not result.data:
                self._token = None
                self._settle_after_error(RELEASE_FAILED_MESSAGE)
                error = self._error
            else:
                error = None
                form = transform_release_to_vinyl_form(result.data)
                cover_url = get_primary_cover_image_url(result.data)
                proxying = bool(cover_url) and self.image_proxy is not None
                if proxying:
                    self._state = WorkflowState.IMPORTING
        self._notify()

        if error is not None:
            logger.warning(f"Failed to fetch release {release_id}: {error}")
            return None

        if proxying:
            try:
                form.cover_art_url = self.image_proxy.proxy_image(cover_url, form.discogs_id) or None
            except Exception as e:
                logger.warning(f"Cover proxy failed for release {release_id}: {e}")

        with self._lock:
            if not self._is_current(token):
                return None
            self._token = None
            self._reset()
        self._notify()
        return form

    def clear(self):
        """Cancel anything pending and return to Idle with no results."""
        with self._lock:
            self._cancel_timer()
            self._cancel_inflight()
            self._query = ''
            self._reset()
        self._notify()

    def close(self):
        self.clear()
