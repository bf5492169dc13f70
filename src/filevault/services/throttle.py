"""Trailing-edge throttle for high-frequency callbacks."""

import asyncio
import inspect
import logging
import time
from typing import Any, Callable, Dict, Optional, Set, Tuple

logger = logging.getLogger(__name__)


class Throttle:
    """Coalesce calls to ``fn`` into at most one call per interval.

    Every call records its arguments as pending. If the interval has elapsed
    since ``fn`` last ran, ``fn`` runs now with the pending arguments;
    otherwise a trailing timer is armed (once) to run it with whatever
    arguments are pending when the interval ends. The last call of a burst is
    therefore never dropped, and only the most recent arguments survive.

    ``fn`` may be a plain function or a coroutine function. Coroutines are
    scheduled as tasks which can be awaited with :meth:`drain`. Must be
    called from inside a running event loop.
    """

    def __init__(
        self,
        fn: Callable[..., Any],
        interval_ms: float,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.fn = fn
        self.interval = interval_ms / 1000
        self._clock = clock
        self._last_call: Optional[float] = None
        self._pending: Optional[Tuple[Tuple[Any, ...], Dict[str, Any]]] = None
        self._timer: Optional[asyncio.TimerHandle] = None
        self._tasks: Set[asyncio.Future] = set()

    def __call__(self, *args: Any, **kwargs: Any) -> None:
        self._pending = (args, kwargs)
        now = self._clock()
        remaining = 0.0 if self._last_call is None else self._last_call + self.interval - now

        if remaining <= 0:
            self._cancel_timer()
            self._invoke()
        elif self._timer is None:
            loop = asyncio.get_running_loop()
            self._timer = loop.call_later(remaining, self._invoke)

    @property
    def has_pending(self) -> bool:
        return self._pending is not None

    def _invoke(self) -> None:
        self._last_call = self._clock()
        self._timer = None
        pending, self._pending = self._pending, None
        if pending is None:
            return

        args, kwargs = pending
        result = self.fn(*args, **kwargs)
        if inspect.isawaitable(result):
            task = asyncio.ensure_future(result)
            self._tasks.add(task)
            task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Future) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                f"Throttled call to {getattr(self.fn, '__name__', self.fn)!r} failed: {exc}",
                exc_info=exc,
            )

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def flush(self) -> None:
        """Run ``fn`` now with the pending arguments, if any."""
        self._cancel_timer()
        if self._pending is not None:
            self._invoke()

    def cancel(self) -> None:
        """Drop pending arguments and disarm the trailing timer."""
        self._cancel_timer()
        self._pending = None

    async def drain(self) -> None:
        """Wait for every scheduled coroutine call to finish."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


def throttle(
    fn: Callable[..., Any],
    interval_ms: float,
    clock: Callable[[], float] = time.monotonic,
) -> Throttle:
    """Wrap ``fn`` in a :class:`Throttle`."""
    return Throttle(fn, interval_ms, clock=clock)
