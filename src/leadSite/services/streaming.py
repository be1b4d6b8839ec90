"""Server-sent events over a WSGI response.

WSGI consumes response bodies through a synchronous iterator, so an
async generator is driven step by step on a private event loop that
lives as long as the response.
"""

import asyncio
import json
import logging
from typing import Any, AsyncIterator, Iterator

from leadkit.exceptions import LeadkitError

logger = logging.getLogger("leadSite.streaming")

DONE_EVENT = "data: [DONE]\n\n"

_END = object()


def sse_event(payload: dict[str, Any]) -> str:
    """Format one SSE data line."""
    return f"data: {json.dumps(payload)}\n\n"


class AsyncStreamBridge:
    """Pulls items from an async generator on its own event loop.

    Args:
        agen: Async generator to drive. It is closed with aclose() when
            the bridge is closed, releasing any connection it holds.
    """

    def __init__(self, agen: AsyncIterator[Any]):
        self._agen = agen
        self._loop = asyncio.new_event_loop()
        self._closed = False

    def next(self) -> Any:
        """Next item, or the module's end sentinel when exhausted."""
        try:
            return self._loop.run_until_complete(self._agen.__anext__())
        except StopAsyncIteration:
            return _END

    def close(self) -> None:
        """Close the generator and the loop. Safe to call twice."""
        if self._closed:
            return
        self._closed = True
        try:
            self._loop.run_until_complete(self._agen.aclose())
        finally:
            self._loop.close()

    def events(self, first: Any) -> Iterator[str]:
        """SSE body: each text chunk as {"content": ...}, then [DONE].

        Args:
            first: Item already pulled by the caller (may be the end sentinel).
        """
        try:
            item = first
            while item is not _END:
                yield sse_event({"content": item})
                item = self.next()
            yield DONE_EVENT
        except LeadkitError as e:
            logger.error(f"Stream failed mid-response: {e}")
            yield sse_event({"error": str(e)})
        finally:
            self.close()


def is_end(item: Any) -> bool:
    """Whether an item pulled from a bridge marks the end of the stream."""
    return item is _END
