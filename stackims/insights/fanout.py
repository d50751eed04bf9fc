"""
Concurrent fan-out of independent read tasks

Each task runs on a worker thread and settles into a FetchResult, so one
failing query or HTTP call never aborts its siblings.
"""
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from django.db import close_old_connections, connection

logger = logging.getLogger(__name__)


@dataclass
class FetchResult:
    """Outcome of one fan-out task: a value or the error that replaced it"""
    name: str
    value: Any = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def value_or(self, default):
        return self.value if self.ok else default


def _settle(name: str, task: Callable[[], Any]) -> FetchResult:
    try:
        return FetchResult(name=name, value=task())
    except Exception as e:
        logger.warning(f"Fetch '{name}' failed: {e}")
        return FetchResult(name=name, error=str(e))


def _settle_in_worker(name: str, task: Callable[[], Any]) -> FetchResult:
    # Worker threads get their own DB connection; release it when the task ends
    close_old_connections()
    try:
        return _settle(name, task)
    finally:
        connection.close()


def run_all(tasks: Dict[str, Callable[[], Any]], max_workers: int = 8) -> Dict[str, FetchResult]:
    """
    Run every task and wait for all of them to settle.

    With max_workers=1 the tasks run inline in the calling thread (and on
    its DB connection), which keeps them inside an open test transaction.
    """
    if max_workers <= 1 or len(tasks) <= 1:
        return {name: _settle(name, task) for name, task in tasks.items()}

    with ThreadPoolExecutor(max_workers=min(max_workers, len(tasks))) as executor:
        futures = {
            name: executor.submit(_settle_in_worker, name, task)
            for name, task in tasks.items()
        }
        return {name: future.result() for name, future in futures.items()}
