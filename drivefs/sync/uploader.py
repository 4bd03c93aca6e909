import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor, wait as wait_futures
from typing import Dict, List

from drivefs.config.sync_config import MAX_RETRIES, BASE_BACKOFF_SECONDS, UPLOAD_WORKERS
from drivefs.config.sync_states import (
    SYNC_STATE_UPLOADING,
    SYNC_STATE_ERROR,
)
from drivefs.graph_client.errors import GraphAPIError

logger = logging.getLogger(__name__)


class UploadWorker:
    """
    Runs uploads triggered by flush in the background.

    At most one upload per item is in flight; a flush that arrives while one is
    running queues a single follow-up upload. Failed uploads are retried with
    exponential backoff, after which the item keeps its changes and is marked
    with the error sync state until the next flush.
    """

    def __init__(self, max_workers: int = UPLOAD_WORKERS, max_retries: int = MAX_RETRIES,
                 backoff: float = BASE_BACKOFF_SECONDS, sleep=time.sleep):
        self.max_retries = max_retries
        self.backoff = backoff
        self._sleep = sleep
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="drivefs-upload")
        self._lock = threading.Lock()
        self._inflight: Dict[object, Future] = {}
        self._rerun = set()

    def schedule(self, item, auth) -> Future:
        with self._lock:
            running = self._inflight.get(item)
            if running is not None:
                logger.debug(f"Upload of {item.path()} already running, queueing another")
                self._rerun.add(item)
                return running
            future = self._executor.submit(self._run, item, auth)
            self._inflight[item] = future
            return future

    def _run(self, item, auth):
        try:
            return self._upload_with_retries(item, auth)
        finally:
            with self._lock:
                self._inflight.pop(item, None)
                if item in self._rerun:
                    self._rerun.discard(item)
                    if item.has_changes and not item.deleted:
                        self._inflight[item] = self._executor.submit(self._run, item, auth)

    def _upload_with_retries(self, item, auth):
        attempt = 0
        while True:
            item.sync_state = SYNC_STATE_UPLOADING
            try:
                response = item.upload(auth)
                if response is not None:
                    logger.info(f"Uploaded {item.path()} ({item.size} bytes)")
                return response
            except GraphAPIError as e:
                attempt += 1
                if item.deleted:
                    logger.info(f"{item.path()} was deleted, dropping failed upload")
                    return None
                if attempt > self.max_retries:
                    item.sync_state = SYNC_STATE_ERROR
                    logger.error(f"Upload of {item.path()} failed after {attempt} attempts: {e}")
                    raise
                delay = self.backoff * (2 ** (attempt - 1))
                logger.warning(f"Upload of {item.path()} failed ({e}), retrying in {delay}s")
                self._sleep(delay)
            except Exception:
                item.sync_state = SYNC_STATE_ERROR
                logger.error(f"Unexpected error uploading {item.path()}", exc_info=True)
                raise

    def pending(self) -> List[Future]:
        with self._lock:
            return list(self._inflight.values())

    def wait_for(self, item, timeout=None):
        """Blocks until the upload of one item, including any queued follow-up, has finished."""
        while True:
            with self._lock:
                future = self._inflight.get(item)
            if future is None:
                return
            done, not_done = wait_futures([future], timeout=timeout)
            if not_done:
                return

    def wait(self, timeout=None):
        """Blocks until every upload scheduled so far has finished."""
        while True:
            futures = self.pending()
            if not futures:
                return
            done, not_done = wait_futures(futures, timeout=timeout)
            if not_done:
                return

    def shutdown(self, wait: bool = True):
        if wait:
            self.wait()
        self._executor.shutdown(wait=wait)
