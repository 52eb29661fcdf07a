"""
Batch orchestration for inventory scrapes.

URLs are processed in mini-batches. Each mini-batch gets its own browser
session and login, pages are visited strictly one at a time with a delay
between them, and a longer delay separates mini-batches. A run can be
asked to stop; the request is honored between pages and between
mini-batches, never mid-page.

State machine: idle -> running -> (stopping) -> idle.
"""

import threading
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence

import settings
from browser_session import AuthenticationError, BrowserSession
from inventory_db import (
    DatabaseConnection,
    create_batch,
    finish_batch,
    run_in_transaction,
    save_url_failure,
    save_url_result,
)
from inventory_extractor import FALLBACK_SIZE, InventoryExtractor, InventoryRecord
from page_accessor import ScraperError


class BatchState(Enum):
    IDLE = 'idle'
    RUNNING = 'running'
    STOPPING = 'stopping'


class BatchBusyError(RuntimeError):
    """A batch (or single-URL test) is already using the browser."""


@dataclass
class UrlResult:
    url: str
    success: bool
    records_found: int = 0
    error: Optional[str] = None
    fallback: bool = False

    def to_dict(self) -> Dict:
        return asdict(self)


@dataclass
class BatchResult:
    batch_id: Optional[int]
    status: str                      # completed | stopped | failed
    results: List[UrlResult] = field(default_factory=list)
    records_saved: int = 0
    error: Optional[str] = None

    @property
    def succeeded(self) -> int:
        return sum(1 for r in self.results if r.success)

    @property
    def failed(self) -> int:
        return sum(1 for r in self.results if not r.success)

    def to_dict(self) -> Dict:
        return {
            'batch_id': self.batch_id,
            'status': self.status,
            'urls_processed': len(self.results),
            'urls_succeeded': self.succeeded,
            'urls_failed': self.failed,
            'records_saved': self.records_saved,
            'error': self.error,
        }


# =============================================================================
# Progress
# =============================================================================

class ProgressTracker:
    """Track scraping progress with rate calculation."""

    def __init__(self, total: int):
        self.total = total
        self.processed = 0
        self.start_time = time.time()

    def update(self, count: int = 1):
        self.processed += count

    def get_rate(self) -> float:
        """URLs per minute; page delays make per-second rates meaningless."""
        elapsed = time.time() - self.start_time
        if elapsed > 0:
            return self.processed / elapsed * 60
        return 0

    def get_eta(self) -> str:
        rate = self.get_rate()
        if rate <= 0:
            return "calculating..."
        seconds = (self.total - self.processed) / rate * 60
        if seconds < 60:
            return f"{int(seconds)}s"
        if seconds < 3600:
            return f"{int(seconds / 60)}:{int(seconds % 60):02d}"
        return f"{int(seconds / 3600)}:{int((seconds % 3600) / 60):02d}:00"

    def format_progress(self, url: str, status: str) -> str:
        timestamp = datetime.now().strftime("%H:%M:%S")
        pct = (self.processed / self.total * 100) if self.total > 0 else 0
        name = url if len(url) <= 60 else '...' + url[-57:]
        return (f"[{timestamp}] [{self.processed}/{self.total}] ({pct:5.1f}%) {name:<60} "
                f"[{status}] | {self.get_rate():.1f}/min | ETA: {self.get_eta()}")


# =============================================================================
# Factories
# =============================================================================

def default_session_factory() -> BrowserSession:
    username, password = settings.get_credentials()
    return BrowserSession(username, password)


def default_db_factory() -> DatabaseConnection:
    db = DatabaseConnection()
    db.connect()
    return db


def default_extractor() -> InventoryExtractor:
    return InventoryExtractor(
        navigation_timeout_ms=settings.NAVIGATION_TIMEOUT_MS,
        selector_timeout_ms=settings.SELECTOR_TIMEOUT_MS,
        settle_delay=settings.SETTLE_DELAY,
    )


def chunked(items: Sequence[str], size: int) -> List[List[str]]:
    size = max(1, size)
    return [list(items[i:i + size]) for i in range(0, len(items), size)]


# =============================================================================
# Runner
# =============================================================================

class BatchRunner:
    """
    Owns the single browser slot and the batch state machine.

    session_factory returns an unstarted session exposing start(), login(),
    new_page() and close(). db_factory returns a connected DatabaseConnection.
    """

    def __init__(self,
                 session_factory: Callable[[], Any] = default_session_factory,
                 db_factory: Callable[[], DatabaseConnection] = default_db_factory,
                 extractor: Optional[InventoryExtractor] = None,
                 batch_size: int = settings.BATCH_SIZE,
                 page_delay: float = settings.PAGE_DELAY,
                 batch_delay: float = settings.BATCH_DELAY):
        self.session_factory = session_factory
        self.db_factory = db_factory
        self.extractor = extractor or default_extractor()
        self.batch_size = max(1, batch_size)
        self.page_delay = page_delay
        self.batch_delay = batch_delay

        self._lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

        self.state = BatchState.IDLE
        self.batch_id: Optional[int] = None
        self.triggered_by: Optional[str] = None
        self.started_at: Optional[str] = None
        self.current_url: Optional[str] = None
        self.urls_total = 0
        self.urls_processed = 0
        self.urls_succeeded = 0
        self.urls_failed = 0
        self.records_saved = 0
        self.last_result: Optional[BatchResult] = None

    # -------------------------------------------------------------------------
    # State
    # -------------------------------------------------------------------------

    def _claim(self, urls_total: int, triggered_by: str) -> None:
        with self._lock:
            if self.state != BatchState.IDLE:
                raise BatchBusyError(f"Scraper is {self.state.value}")
            self.state = BatchState.RUNNING
            self._stop_event.clear()
            self.batch_id = None
            self.triggered_by = triggered_by
            self.started_at = datetime.now().isoformat()
            self.current_url = None
            self.urls_total = urls_total
            self.urls_processed = 0
            self.urls_succeeded = 0
            self.urls_failed = 0
            self.records_saved = 0

    def _release(self) -> None:
        with self._lock:
            self.state = BatchState.IDLE
            self.current_url = None
            self._stop_event.clear()

    @property
    def is_idle(self) -> bool:
        return self.state == BatchState.IDLE

    def request_stop(self) -> bool:
        """Ask the running batch to stop at the next page boundary. False if idle."""
        with self._lock:
            if self.state == BatchState.IDLE:
                return False
            self.state = BatchState.STOPPING
            self._stop_event.set()
        print("  Stop requested, finishing current page...", flush=True)
        return True

    def _stop_requested(self) -> bool:
        return self._stop_event.is_set()

    def _pause(self, seconds: float) -> None:
        # Wakes early when a stop is requested
        if seconds > 0:
            self._stop_event.wait(seconds)

    def status(self) -> Dict[str, Any]:
        with self._lock:
            return {
                'state': self.state.value,
                'batch_id': self.batch_id,
                'triggered_by': self.triggered_by,
                'started_at': self.started_at,
                'current_url': self.current_url,
                'urls_total': self.urls_total,
                'urls_processed': self.urls_processed,
                'urls_succeeded': self.urls_succeeded,
                'urls_failed': self.urls_failed,
                'records_saved': self.records_saved,
                'last_result': self.last_result.to_dict() if self.last_result else None,
            }

    # -------------------------------------------------------------------------
    # Entry points
    # -------------------------------------------------------------------------

    def run(self, urls: Sequence[str], triggered_by: str = 'manual') -> BatchResult:
        """Run a batch in the calling thread. Raises BatchBusyError if not idle."""
        self._claim(len(urls), triggered_by)
        return self._execute(list(urls), triggered_by)

    def start(self, urls: Sequence[str], triggered_by: str = 'api') -> None:
        """Run a batch on a background thread. Raises BatchBusyError if not idle."""
        self._claim(len(urls), triggered_by)
        self._thread = threading.Thread(
            target=self._execute, args=(list(urls), triggered_by),
            name='batch-runner', daemon=True,
        )
        self._thread.start()

    def join(self, timeout: Optional[float] = None) -> None:
        if self._thread is not None:
            self._thread.join(timeout)

    def extract_single(self, url: str) -> List[InventoryRecord]:
        """
        Scrape one URL in its own session without persisting anything.

        Shares the browser slot with batches, so it raises BatchBusyError
        while a batch is running. Authentication and navigation errors propagate;
        any other browser failure is raised as a ScraperError.
        """
        self._claim(1, 'test')
        try:
            self.current_url = url
            return self._extract_in_new_session(url)
        except ScraperError:
            raise
        except Exception as e:
            raise ScraperError(f"Browser session failed: {e}") from e
        finally:
            self._release()

    def _extract_in_new_session(self, url: str) -> List[InventoryRecord]:
        session = self.session_factory()
        try:
            session.start()
            session.login()
            page = session.new_page()
            try:
                return self.extractor.extract(page, url)
            finally:
                page.close()
        finally:
            session.close()

    # -------------------------------------------------------------------------
    # Execution
    # -------------------------------------------------------------------------

    def _execute(self, urls: List[str], triggered_by: str) -> BatchResult:
        result = BatchResult(batch_id=None, status='failed')
        db = None
        try:
            db = self.db_factory()
            result.batch_id = db.execute_with_retry(run_in_transaction, create_batch,
                                                     len(urls), triggered_by)
            self.batch_id = result.batch_id

            chunks = chunked(urls, self.batch_size)
            print(f"\nBatch {result.batch_id}: {len(urls)} URLs in {len(chunks)} mini-batch(es)",
                  flush=True)
            progress = ProgressTracker(len(urls))

            for index, chunk in enumerate(chunks):
                if self._stop_requested():
                    break
                if index > 0:
                    print(f"  Waiting {self.batch_delay:.0f}s before next mini-batch...", flush=True)
                    self._pause(self.batch_delay)
                    if self._stop_requested():
                        break
                print(f"\n--- Mini-batch {index + 1}/{len(chunks)} ({len(chunk)} URLs) ---",
                      flush=True)
                result.results.extend(self._run_chunk(db, result.batch_id, chunk, progress))

            result.records_saved = self.records_saved
            stopped = self._stop_requested() and len(result.results) < len(urls)
            result.status = 'stopped' if stopped else 'completed'
            db.execute_with_retry(run_in_transaction, finish_batch, result.batch_id,
                                  result.status, result.succeeded, result.failed,
                                  result.records_saved)
            print(f"\nBatch {result.batch_id} {result.status}: {result.succeeded} succeeded, "
                  f"{result.failed} failed, {result.records_saved} records saved", flush=True)
        except Exception as e:
            # Whole-batch failure (database down); never take the process with it
            result.status = 'failed'
            result.error = str(e)
            result.records_saved = self.records_saved
            print(f"\nBatch failed: {e}", flush=True)
            self._mark_failed(db, result)
        finally:
            if db is not None:
                db.close()
            self.last_result = result
            self._release()
        return result

    def _mark_failed(self, db: Optional[DatabaseConnection], result: BatchResult) -> None:
        if db is None or result.batch_id is None:
            return
        try:
            db.rollback()
            db.execute_with_retry(run_in_transaction, finish_batch, result.batch_id, 'failed',
                                  result.succeeded, result.failed, result.records_saved)
        except Exception as e:
            print(f"  Could not record batch failure: {e}", flush=True)

    def _run_chunk(self, db: DatabaseConnection, batch_id: int, chunk: List[str],
                   progress: ProgressTracker) -> List[UrlResult]:
        results: List[UrlResult] = []
        session = self.session_factory()
        try:
            session.start()
            session.login()
        except Exception as e:
            session.close()
            if isinstance(e, AuthenticationError):
                message = f"Authentication failed: {e}"
            else:
                message = f"Browser session failed: {e}"
            print(f"  {message}", flush=True)
            for url in chunk:
                results.append(self._record_failure(db, batch_id, url, message, progress))
            return results

        try:
            for index, url in enumerate(chunk):
                if self._stop_requested():
                    break
                if index > 0:
                    self._pause(self.page_delay)
                    if self._stop_requested():
                        break
                results.append(self._process_url(db, batch_id, session, url, progress))
        finally:
            session.close()
        return results

    def _process_url(self, db: DatabaseConnection, batch_id: int, session: Any, url: str,
                     progress: ProgressTracker) -> UrlResult:
        self.current_url = url
        page = None
        try:
            page = session.new_page()
            records = self.extractor.extract(page, url)
        except Exception as e:
            return self._record_failure(db, batch_id, url, str(e), progress)
        finally:
            if page is not None:
                page.close()

        try:
            saved = db.execute_with_retry(save_url_result, records, batch_id, url)
        except Exception as e:
            db.rollback()
            return self._record_failure(db, batch_id, url, f"Save failed: {e}", progress)

        fallback = len(records) == 1 and records[0].size_us == FALLBACK_SIZE
        self.urls_processed += 1
        self.urls_succeeded += 1
        self.records_saved += saved
        progress.update()
        status = f"{len(records)} records" + (" (fallback)" if fallback else "")
        print(progress.format_progress(url, status), flush=True)
        return UrlResult(url=url, success=True, records_found=len(records), fallback=fallback)

    def _record_failure(self, db: DatabaseConnection, batch_id: int, url: str, error: str,
                        progress: ProgressTracker) -> UrlResult:
        db.execute_with_retry(save_url_failure, batch_id, url, error)
        self.urls_processed += 1
        self.urls_failed += 1
        progress.update()
        print(progress.format_progress(url, "FAILED"), flush=True)
        print(f"    Error: {error}", flush=True)
        return UrlResult(url=url, success=False, error=error)
