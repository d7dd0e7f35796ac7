"""
Bounded fan-out of work items to worker threads.

Every non-empty line of the input file is one work item. The dispatch loop
takes a slot from a semaphore of size N before handing an item to the thread
pool, and the worker gives the slot back as the last thing it does, so no more
than N fetches ever run at once and the loop never reads far ahead of the
workers. Leaving the executor block waits for every submitted item.
"""

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import List

from .errors import InputFileError
from .fetcher import CANCELLED, FAILED, SAVED, SKIPPED, FetchOutcome

ACQUIRE_POLL_SECONDS = 0.2
PROGRESS_EVERY = 10


def iter_work_items(lines):
    """Yield stripped, non-empty lines."""
    for line in lines:
        url = line.strip()
        if url:
            yield url


@dataclass
class DispatchReport:
    outcomes: List[FetchOutcome] = field(default_factory=list)
    duration: float = 0.0

    def count(self, status):
        return sum(1 for o in self.outcomes if o.status == status)

    @property
    def saved(self):
        return self.count(SAVED)

    @property
    def skipped(self):
        return self.count(SKIPPED)

    @property
    def failed(self):
        return self.count(FAILED)

    @property
    def cancelled(self):
        return self.count(CANCELLED)

    @property
    def total(self):
        return len(self.outcomes)


class BoundedDispatcher:
    """
    Run `fetch(url) -> FetchOutcome` for every work item with at most
    `concurrency` calls in flight.

    `cancel` is a threading.Event; once set, items that have not yet been
    given a slot are recorded as cancelled instead of fetched. Work already
    running is left to finish. `on_outcome` is called from the worker thread
    for each finished item.
    """

    def __init__(self, concurrency, fetch, cancel=None, on_outcome=None):
        if concurrency <= 0:
            raise ValueError(f"concurrency must be positive, got {concurrency}")
        self.concurrency = concurrency
        self.fetch = fetch
        self.cancel = cancel if cancel is not None else threading.Event()
        self.on_outcome = on_outcome
        self.slots = threading.BoundedSemaphore(concurrency)

        self._lock = threading.Lock()
        self._in_flight = 0
        self._report = None
        self._started = 0.0

    @property
    def in_flight(self):
        with self._lock:
            return self._in_flight

    def _acquire(self):
        """Block until a slot is free. Returns False if the run was cancelled first."""
        while not self.cancel.is_set():
            if self.slots.acquire(timeout=ACQUIRE_POLL_SECONDS):
                if self.cancel.is_set():
                    self.slots.release()
                    break
                return True
        return False

    def _record(self, outcome):
        with self._lock:
            self._report.outcomes.append(outcome)
            done = len(self._report.outcomes)

        if done % PROGRESS_EVERY == 0:
            elapsed = time.monotonic() - self._started
            rate = done / elapsed if elapsed > 0 else 0
            logging.info(f"Progress: {done} items finished | Rate: {rate:.2f} items/sec")

        if self.on_outcome is not None:
            try:
                self.on_outcome(outcome)
            except Exception as e:
                logging.error(f"Outcome callback failed for {outcome.url}: {e}", exc_info=True)

    def _work(self, url):
        with self._lock:
            self._in_flight += 1
        try:
            try:
                outcome = self.fetch(url)
            except Exception as e:
                logging.error(f"Unhandled exception while fetching {url}: {e}", exc_info=True)
                outcome = FetchOutcome(url, FAILED, error=str(e))
            self._record(outcome)
        finally:
            with self._lock:
                self._in_flight -= 1
            self.slots.release()

    def run(self, input_path):
        """
        Dispatch every URL in `input_path` and wait for all of them.
        Raises InputFileError if the file cannot be opened; nothing is
        fetched in that case.
        """
        try:
            f = open(input_path, "r", encoding="utf-8", errors="replace")
        except OSError as e:
            raise InputFileError(f"file does not exist or is unreadable: {input_path}: {e}") from e

        self._report = DispatchReport()
        self._started = time.monotonic()
        submitted = 0

        with f, ThreadPoolExecutor(max_workers=self.concurrency, thread_name_prefix="WSB_Worker") as executor:
            for url in iter_work_items(f):
                if not self._acquire():
                    logging.warning(f"Failed to acquire a slot for {url}: run cancelled")
                    self._record(FetchOutcome(url, CANCELLED, error="run cancelled"))
                    continue
                try:
                    executor.submit(self._work, url)
                except BaseException:
                    self.slots.release()
                    raise
                submitted += 1

            logging.info(f"Submitted {submitted} items, waiting for in-flight work to drain")

        self._report.duration = time.monotonic() - self._started
        return self._report
