"""Shared worker pool for background history loads.

Conversation sessions load message history off the Socket.IO handler thread
by submitting to this pool. Results come back through the session's
generation check, so callers usually ignore the returned Future; failures
are logged here so they are not lost with it.

Configuration:
- WORKER_THREADS (config or environment) sizes the pool when it is first
  created (defaults to 8).

API:
- get_executor(max_workers=None) -> ThreadPoolExecutor
- submit_task(fn, *args, **kwargs) -> concurrent.futures.Future
- SharedExecutor().submit(...)  executor-shaped facade for injection
- shutdown_executor(wait=False)
"""
from concurrent.futures import ThreadPoolExecutor
from atexit import register as _atexit_register
import threading
import logging

from config import config

logger = logging.getLogger(__name__)

_executor = None
_executor_lock = threading.Lock()


def _create_executor(max_workers=None):
    if max_workers is None:
        try:
            max_workers = int(config.WORKER_THREADS)
        except (TypeError, ValueError):
            max_workers = 8
    logger.debug(f"POOL: starting {max_workers} worker thread(s)")
    return ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix='lf-worker')


def get_executor(max_workers=None):
    """Return the shared ThreadPoolExecutor, creating it on first use."""
    global _executor
    if _executor is None:
        with _executor_lock:
            if _executor is None:
                _executor = _create_executor(max_workers=max_workers)
                _atexit_register(lambda: shutdown_executor(wait=False))
    return _executor


def _log_failure(future):
    if future.cancelled():
        return
    error = future.exception()
    if error is not None:
        logger.error("POOL: background task failed", exc_info=(type(error), error, error.__traceback__))


def submit_task(fn, *args, **kwargs):
    """Submit a callable to the shared pool and return its Future."""
    future = get_executor().submit(fn, *args, **kwargs)
    future.add_done_callback(_log_failure)
    return future


class SharedExecutor:
    """Executor-shaped facade over the shared pool, for injection into sessions."""

    def submit(self, fn, *args, **kwargs):
        return submit_task(fn, *args, **kwargs)


def shutdown_executor(wait=False):
    """Shut the shared pool down if it was created."""
    global _executor
    try:
        exec_local = _executor
        if exec_local is not None:
            exec_local.shutdown(wait=wait)
    finally:
        _executor = None
