"""Chunked parallel map helpers built on joblib."""

from typing import Any, Callable, List, Sequence, Tuple

from joblib import Parallel, delayed, effective_n_jobs


def index_ranges(total: int, chunk_size: int) -> List[Tuple[int, int]]:
    """Split ``range(total)`` into half-open ``(start, stop)`` chunks."""
    if chunk_size < 1:
        raise ValueError("chunk_size must be positive")
    return [(start, min(start + chunk_size, total)) for start in range(0, total, chunk_size)]


def parallel_map(
    func: Callable[..., Any],
    chunks: Sequence[Any],
    n_jobs: int = -1,
    **kwargs: Any,
) -> List[Any]:
    """Apply ``func(chunk, **kwargs)`` to every chunk, preserving order.

    Runs inline when a single worker is requested or there is at most one
    chunk, so small inputs never pay for worker start-up.

    Args:
        func: Module-level callable (must be picklable for process workers)
        chunks: Independent work items
        n_jobs: joblib worker count (``-1`` for every core)
        **kwargs: Shared read-only arguments passed to every call

    Returns:
        Results in chunk order
    """
    if len(chunks) <= 1 or effective_n_jobs(n_jobs) == 1:
        return [func(chunk, **kwargs) for chunk in chunks]

    workers = min(effective_n_jobs(n_jobs), len(chunks))
    return Parallel(n_jobs=workers)(delayed(func)(chunk, **kwargs) for chunk in chunks)
