"""Ordered fan-out of independent per-date / per-horizon work with cooperative cancellation."""

from __future__ import annotations

import threading
from concurrent.futures import FIRST_COMPLETED, ThreadPoolExecutor, wait
from typing import Callable, Iterable, List, Optional, TypeVar

from backtests.errors import EvaluationCancelled

T = TypeVar("T")
R = TypeVar("R")


def check_cancelled(cancel_event: Optional[threading.Event], *, where: str = "") -> None:
    if cancel_event is not None and cancel_event.is_set():
        raise EvaluationCancelled(f"cancelled{' during ' + where if where else ''}")


def map_ordered(
    fn: Callable[[T], R],
    items: Iterable[T],
    *,
    max_workers: int = 1,
    cancel_event: Optional[threading.Event] = None,
    where: str = "",
) -> List[R]:
    """Apply ``fn`` to every item, returning results in input order.

    ``fn`` must be a pure function of its input. The cancel event is checked
    between items; once set, pending work is dropped and EvaluationCancelled
    is raised so no truncated result escapes.
    """
    items = list(items)
    if max_workers <= 1 or len(items) <= 1:
        out: List[R] = []
        for item in items:
            check_cancelled(cancel_event, where=where)
            out.append(fn(item))
        return out

    check_cancelled(cancel_event, where=where)
    results: List[Optional[R]] = [None] * len(items)
    with ThreadPoolExecutor(max_workers=max_workers) as pool:
        futures = {pool.submit(fn, item): i for i, item in enumerate(items)}
        pending = set(futures)
        try:
            while pending:
                done, pending = wait(pending, timeout=0.05, return_when=FIRST_COMPLETED)
                for fut in done:
                    results[futures[fut]] = fut.result()
                check_cancelled(cancel_event, where=where)
        except BaseException:
            for fut in pending:
                fut.cancel()
            raise
    return results  # type: ignore[return-value]
