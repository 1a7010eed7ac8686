"""Run outbound chat-platform calls off the request thread."""

from contextvars import copy_context
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Callable

from structlog.contextvars import bind_contextvars


_executor = ThreadPoolExecutor(max_workers=4, thread_name_prefix="kudos-bg")


def run_async(
    func: Callable[..., Any],
    /,
    *args: Any,
    trace_id: str | None = None,
    **kwargs: Any,
) -> Future:
    """Submit *func* to the shared pool with the caller's structlog context.

    When *trace_id* is given it is bound in the copied context, so log events
    emitted by the worker carry it even if the caller never bound one.
    """

    context = copy_context()
    if trace_id is not None:
        context.run(bind_contextvars, trace_id=trace_id)

    def runner() -> Any:
        return context.run(func, *args, **kwargs)

    return _executor.submit(runner)
