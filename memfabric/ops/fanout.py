"""
Bounded concurrent fan-out.

Spawns one task per backend under a shared deadline and returns a result
per backend tagged ok/failed. Tasks still running at the deadline are
cancelled and reported as timed out; their results are ignored. No call
is retried here.
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional

from ..core.schemas import BackendOutcome
from ..errors import BackendError, BackendUnavailable


@dataclass
class FanoutResult:
    """Result of one backend call within a fan-out."""

    backend: str
    ok: bool
    value: Any = None
    error: Optional[BaseException] = None
    elapsed_ms: float = 0.0
    timed_out: bool = False

    @property
    def error_text(self) -> Optional[str]:
        if self.error is None:
            return None
        if isinstance(self.error, BackendError):
            return f"{type(self.error).__name__}: {self.error.message}"
        return f"{type(self.error).__name__}: {self.error}"

    def to_outcome(self, backend_record_id: Optional[str] = None) -> BackendOutcome:
        return BackendOutcome(
            backend=self.backend,
            success=self.ok,
            backend_record_id=backend_record_id if self.ok else None,
            error=self.error_text,
            elapsed_ms=round(self.elapsed_ms, 3),
        )


async def _run_one(name: str, call: Callable[[], Awaitable[Any]]) -> FanoutResult:
    loop = asyncio.get_running_loop()
    started = loop.time()
    try:
        value = await call()
    except Exception as e:
        return FanoutResult(name, ok=False, error=e, elapsed_ms=(loop.time() - started) * 1000)
    return FanoutResult(name, ok=True, value=value, elapsed_ms=(loop.time() - started) * 1000)


async def fan_out(
    calls: Mapping[str, Callable[[], Awaitable[Any]]],
    deadline_s: float,
) -> Dict[str, FanoutResult]:
    """
    Run every call concurrently and wait for all of them or the deadline.

    Args:
        calls: backend name -> zero-argument coroutine factory
        deadline_s: overall deadline shared by all calls

    Returns:
        backend name -> FanoutResult, in the order of `calls`
    """
    if not calls:
        return {}

    tasks = {
        name: asyncio.create_task(_run_one(name, call), name=f"fanout:{name}")
        for name, call in calls.items()
    }
    try:
        _, pending = await asyncio.wait(tasks.values(), timeout=deadline_s)
    except asyncio.CancelledError:
        for task in tasks.values():
            task.cancel()
        raise

    # Abandon stragglers: send cancellation, ignore whatever they produce
    for task in pending:
        task.cancel()

    results: Dict[str, FanoutResult] = {}
    for name, task in tasks.items():
        if task in pending:
            results[name] = FanoutResult(
                name,
                ok=False,
                error=BackendUnavailable(name, f"deadline of {deadline_s}s exceeded"),
                elapsed_ms=deadline_s * 1000,
                timed_out=True,
            )
        else:
            results[name] = task.result()
    return results
