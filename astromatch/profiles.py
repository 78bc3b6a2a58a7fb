"""
Paginated profile queries with caching and next-page prefetch.

Pages are cached by page number. A cached page is served without a network
call while fresh (5 minutes), refetched once stale, and evicted after 10
minutes without use. Whenever a page reports ``has_more`` the next page is
fetched in the background.
"""

import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from .client import ApiClient, AstroMatchError, handle_api_error
from .logger import get_logger
from .models import CandidateProfile, ProfilePage
from .retry import RetryError, exponential_backoff

PAGE_SIZE = 20
STALE_TIME = 5 * 60  # seconds
GC_TIME = 10 * 60  # seconds
PAGE_RETRIES = 2
RETRY_BASE_DELAY = 1.0
RETRY_MAX_DELAY = 30.0

PageFetcher = Callable[[int], ProfilePage]


class PageLoadError(AstroMatchError):
    """A page could not be loaded after all retries."""

    def __init__(self, page: int, cause: Exception):
        super().__init__(f"Failed to load profiles page {page}: {cause}")
        self.page = page
        self.cause = cause


@dataclass
class _CacheEntry:
    data: ProfilePage
    fetched_at: float
    last_used: float


@dataclass(frozen=True)
class PageState:
    """What a listing view renders: data, or an error with optional stale data."""

    status: str  # "success" | "error"
    data: Optional[ProfilePage] = None
    error: Optional[Exception] = None
    message: str = ""
    is_placeholder: bool = False

    @property
    def is_error(self) -> bool:
        return self.status == "error"

    @property
    def is_empty(self) -> bool:
        return self.status == "success" and self.data is not None and not self.data.items


class ProfileQuery:
    """Cached, prefetching access to a paginated profile listing."""

    def __init__(
        self,
        fetch_page: PageFetcher,
        stale_time: float = STALE_TIME,
        gc_time: float = GC_TIME,
        retry: int = PAGE_RETRIES,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
        prefetch: bool = True,
    ):
        self.fetch_page = fetch_page
        self.stale_time = stale_time
        self.gc_time = gc_time
        self.retry = retry
        self.clock = clock
        self.sleep = sleep
        self.prefetch_enabled = prefetch
        self.logger = get_logger()

        self._entries: Dict[int, _CacheEntry] = {}
        self._inflight: Dict[int, Future] = {}
        self._lock = threading.Lock()
        self._executor: Optional[ThreadPoolExecutor] = None
        self._last_data: Optional[ProfilePage] = None

    # Cache bookkeeping

    def _fresh_locked(self, page: int, now: float) -> Optional[ProfilePage]:
        entry = self._entries.get(page)
        if entry is None or now - entry.fetched_at >= self.stale_time:
            return None
        entry.last_used = now
        return entry.data

    def _fresh(self, page: int) -> Optional[ProfilePage]:
        now = self.clock()
        with self._lock:
            return self._fresh_locked(page, now)

    def _store(self, page: int, data: ProfilePage) -> None:
        now = self.clock()
        with self._lock:
            self._entries[page] = _CacheEntry(data=data, fetched_at=now, last_used=now)

    def collect_garbage(self) -> int:
        """Evict pages unused for ``gc_time``; return how many were dropped."""
        now = self.clock()
        with self._lock:
            expired = [p for p, e in self._entries.items() if now - e.last_used >= self.gc_time]
            for p in expired:
                del self._entries[p]
        return len(expired)

    def invalidate(self, page: Optional[int] = None) -> None:
        with self._lock:
            if page is None:
                self._entries.clear()
            else:
                self._entries.pop(page, None)

    def is_cached(self, page: int) -> bool:
        with self._lock:
            return page in self._entries

    # Fetching

    def _load(self, page: int) -> ProfilePage:
        def on_retry(attempt, error, delay):
            self.logger.warning(
                "Retrying profiles page", page=page, attempt=attempt, delay=delay, error=str(error)
            )

        fetch = exponential_backoff(
            max_retries=self.retry,
            base_delay=RETRY_BASE_DELAY,
            max_delay=RETRY_MAX_DELAY,
            on_retry=on_retry,
            sleep=self.sleep,
        )(self.fetch_page)

        try:
            data = fetch(page)
        except RetryError as e:
            raise PageLoadError(page, e.__cause__ or e) from e
        self._store(page, data)
        return data

    def get_page(self, page: int) -> ProfilePage:
        """
        Return a page, from cache when fresh.

        Raises:
            PageLoadError: the page failed after all retries
        """
        self.collect_garbage()

        now = self.clock()
        with self._lock:
            data = self._fresh_locked(page, now)
            pending = self._inflight.get(page) if data is None else None
        if pending is not None:
            wait([pending])
            data = self._fresh(page)
        if data is None:
            data = self._load(page)

        self._last_data = data
        if self.prefetch_enabled and data.has_more:
            self.prefetch(page + 1)
        return data

    def prefetch(self, page: int) -> Optional[Future]:
        """Fetch ``page`` in the background unless it is cached or already loading."""
        now = self.clock()
        with self._lock:
            if self._fresh_locked(page, now) is not None or page in self._inflight:
                return None
            if self._executor is None:
                self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="profiles-prefetch")
            future = self._executor.submit(self._prefetch_task, page)
            self._inflight[page] = future
        return future

    def _prefetch_task(self, page: int) -> None:
        try:
            self._load(page)
        except PageLoadError as e:
            self.logger.warning("Prefetch failed", page=page, error=str(e.cause))
        finally:
            with self._lock:
                self._inflight.pop(page, None)

    def wait_for_prefetch(self) -> None:
        with self._lock:
            pending = list(self._inflight.values())
        wait(pending)

    def load(self, page: int) -> PageState:
        """Load a page for display, turning failures into an error state."""
        try:
            data = self.get_page(page)
        except PageLoadError as e:
            message = handle_api_error(e.cause, "Failed to load profiles")
            placeholder = self._last_data
            return PageState(
                status="error",
                data=placeholder,
                error=e,
                message=message,
                is_placeholder=placeholder is not None,
            )
        return PageState(status="success", data=data)

    def close(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None

    def __enter__(self) -> "ProfileQuery":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()


def http_page_fetcher(client: ApiClient, page_size: int = PAGE_SIZE) -> PageFetcher:
    """Page fetcher against ``GET /api/profiles?page=&limit=``."""

    def fetch(page: int) -> ProfilePage:
        data = client.get("/api/profiles", params={"page": page, "limit": page_size})
        return ProfilePage.from_dict(data)

    return fetch


def fetch_profile(client: ApiClient, profile_id: str) -> CandidateProfile:
    return CandidateProfile.from_dict(client.get(f"/api/profiles/{profile_id}"))
