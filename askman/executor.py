"""Blocking and streaming query execution.

:func:`execute` runs one request against a provider and always returns
a single complete :class:`~askman.models.QueryResponse`, whichever
strategy is used.  Both modes run the provider call on a worker thread
that hands items to the caller through a queue: in streaming mode the
provider's iterator is drained there, in blocking mode the single
``query`` call runs there.  The
caller waits on that queue, the cancellation signal and the deadline,
whichever comes first, so a stalled backend never blocks past the
deadline.  Errors travel through the same queue as the chunks, so a
producer that fails after the consumer has gone never blocks reporting
it.

A query either fully succeeds or fully fails: on error the partial
buffer is discarded.
"""

from __future__ import annotations

import enum
import logging
import queue
import threading
from dataclasses import dataclass
from typing import Callable, List, Optional

from .context import CallContext
from .errors import AskmanError, ProviderError, QueryCancelledError, QueryTimeoutError
from .models import QueryRequest, QueryResponse, StreamChunk
from .providers import BaseProvider

logger = logging.getLogger(__name__)

# How often the consumer re-checks the cancellation signal while idle.
POLL_INTERVAL = 0.1


class ExecutionMode(enum.Enum):
    BLOCKING = "blocking"
    STREAMING = "streaming"


@dataclass
class QueryHooks:
    """Advisory progress callbacks.

    ``on_start`` receives nothing, ``on_first_content`` fires once when
    the first non-empty text arrives, and ``on_complete`` receives the
    final response.  Exceptions raised by a hook are logged and ignored.
    """

    on_start: Optional[Callable[[], None]] = None
    on_first_content: Optional[Callable[[], None]] = None
    on_complete: Optional[Callable[[QueryResponse], None]] = None


def _fire(hook: Optional[Callable], *args) -> None:
    if hook is None:
        return
    try:
        hook(*args)
    except Exception:  # hooks must never break the data path
        logger.exception("Progress hook %r failed", hook)


# Items placed on the hand-off queue.
_DATA = "data"
_DONE = "done"
_FAILED = "failed"
_END = "end"


def _call(
    provider: BaseProvider,
    request: QueryRequest,
    ctx: CallContext,
    out: queue.Queue,
) -> None:
    try:
        out.put((_DONE, provider.query(request, ctx)))
    except Exception as exc:
        out.put((_FAILED, exc))


def _start(target: Callable, name: str, *args) -> None:
    worker = threading.Thread(target=target, args=args, name=name, daemon=True)
    worker.start()


def _produce(
    provider: BaseProvider,
    request: QueryRequest,
    ctx: CallContext,
    out: queue.Queue,
    stop: threading.Event,
) -> None:
    try:
        for chunk in provider.stream_query(request, ctx):
            if chunk.done:
                out.put((_DONE, chunk))
                return
            out.put((_DATA, chunk))
            if stop.is_set() or ctx.cancelled:
                return
        out.put((_END, None))
    except Exception as exc:
        out.put((_FAILED, exc))


def _next_item(out: queue.Queue, ctx: CallContext):
    while True:
        if ctx.cancelled:
            raise QueryCancelledError("query cancelled")
        if ctx.expired:
            raise QueryTimeoutError("query exceeded its deadline")
        remaining = ctx.remaining()
        wait = POLL_INTERVAL if remaining is None else min(POLL_INTERVAL, remaining)
        try:
            return out.get(timeout=wait)
        except queue.Empty:
            continue


def query_blocking(
    provider: BaseProvider, request: QueryRequest, ctx: Optional[CallContext] = None
) -> QueryResponse:
    """Run a blocking ``query`` that still honours cancellation and the deadline.

    Errors raised by the provider are re-raised unchanged.
    """
    ctx = ctx or CallContext()
    if ctx.cancelled:
        raise QueryCancelledError("query cancelled")
    out: queue.Queue = queue.Queue()
    _start(_call, f"askman-query-{provider.name}", provider, request, ctx, out)
    kind, item = _next_item(out, ctx)
    if kind == _FAILED:
        if isinstance(item, AskmanError):
            raise item
        raise ProviderError(f"LLM query failed: {item}", provider=provider.name) from item
    return item


def _execute_streaming(
    provider: BaseProvider, request: QueryRequest, ctx: CallContext, hooks: QueryHooks
) -> QueryResponse:
    out: queue.Queue = queue.Queue()
    stop = threading.Event()
    _start(_produce, f"askman-stream-{provider.name}", provider, request, ctx, out, stop)

    parts: List[str] = []
    first = True
    terminal: Optional[StreamChunk] = None
    try:
        while terminal is None:
            kind, item = _next_item(out, ctx)
            if kind == _DATA:
                if first and item.content:
                    first = False
                    _fire(hooks.on_first_content)
                parts.append(item.content)
            elif kind == _DONE:
                terminal = item
            elif kind == _FAILED:
                if isinstance(item, AskmanError) and not isinstance(item, ProviderError):
                    raise item
                raise ProviderError(f"LLM query failed: {item}", provider=provider.name) from item
            else:
                raise QueryTimeoutError(
                    f"{provider.name} stream ended without completing; the backend disconnected"
                )
    finally:
        # Tell the producer to stop at its next chunk.
        stop.set()

    return QueryResponse(
        content="".join(parts),
        tokens_input=terminal.tokens_input,
        tokens_output=terminal.tokens_output,
        model=request.model,
        provider=provider.name,
        cached=False,
        usage_reported=terminal.usage_reported,
    )


def execute(
    provider: BaseProvider,
    request: QueryRequest,
    mode: ExecutionMode = ExecutionMode.BLOCKING,
    ctx: Optional[CallContext] = None,
    hooks: Optional[QueryHooks] = None,
) -> QueryResponse:
    """Run ``request`` against ``provider`` and return the full response.

    :param mode: ``STREAMING`` drives ``stream_query`` and reports
      progress through ``hooks``; it falls back to ``BLOCKING`` when the
      provider cannot stream.
    :raises ProviderError: when the backend fails.
    :raises QueryCancelledError: when ``ctx`` is cancelled.
    :raises QueryTimeoutError: when the deadline passes or the stream
      ends without a terminal chunk.
    """
    ctx = ctx or CallContext()
    hooks = hooks or QueryHooks()
    if mode is ExecutionMode.STREAMING and not provider.supports_streaming():
        logger.info("%s cannot stream; using a blocking call", provider.name)
        mode = ExecutionMode.BLOCKING

    _fire(hooks.on_start)
    if mode is ExecutionMode.STREAMING:
        response = _execute_streaming(provider, request, ctx, hooks)
    else:
        response = query_blocking(provider, request, ctx)
    _fire(hooks.on_complete, response)
    logger.info(
        "%s answered with %d input / %d output tokens",
        provider.name,
        response.tokens_input,
        response.tokens_output,
    )
    return response
