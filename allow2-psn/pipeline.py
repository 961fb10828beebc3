"""
Serial, rate limited request queue for the PlayStation Network API.

:copyright: (c) 2025 by Jack Powell.
:license: Mozilla Public License Version 2.0, see LICENSE for more details.
"""

import asyncio
import logging
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from const import DEFAULT_RATE_LIMIT_DELAY, DEFAULT_REGION, DEFAULT_REQUEST_TIMEOUT
from errors import RequestError
from requests import RequestException, Response, Session

_LOG = logging.getLogger(__name__)


@dataclass
class QueuedRequest:
    """A request waiting in the pipeline together with its caller's future."""

    method: str
    target: str
    payload: Any
    future: asyncio.Future


class RequestPipeline:
    """
    Execute PSN requests one at a time, in submission order.

    A fixed delay separates consecutive requests while more work is queued.
    Each outcome is delivered only to the future of the request that produced
    it, and a failed request never stops the queue from draining. Token
    freshness is the caller's concern; ``headers`` is only read when a
    request is about to be sent.
    """

    def __init__(
        self,
        session: Session,
        base_url: str,
        *,
        delay: float = DEFAULT_RATE_LIMIT_DELAY,
        region: str = DEFAULT_REGION,
        headers: Callable[[], dict[str, str]] | None = None,
        timeout: float = DEFAULT_REQUEST_TIMEOUT,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._session = session
        self._base_url = base_url.rstrip("/")
        self._delay = delay
        self._region = region
        self._headers = headers or dict
        self._timeout = timeout
        self._sleep = sleep
        self._queue: deque[QueuedRequest] = deque()
        self._processing = False
        self._task: asyncio.Task | None = None

    @property
    def pending(self) -> int:
        """Number of requests waiting to be executed."""
        return len(self._queue)

    @property
    def is_processing(self) -> bool:
        """Whether the queue is currently being drained."""
        return self._processing

    def submit(self, method: str, target: str, payload: Any = None) -> asyncio.Future:
        """
        Queue a request and return a future for its response body.

        :param method: HTTP method
        :param target: Path relative to the API base URL
        :param payload: Optional JSON body
        :return: Future resolved with the decoded body, or failed with RequestError
        """
        loop = asyncio.get_running_loop()
        future = loop.create_future()
        self._queue.append(QueuedRequest(method.upper(), target, payload, future))
        if not self._processing:
            self._processing = True
            self._task = loop.create_task(self._process_queue())
        return future

    async def _process_queue(self) -> None:
        try:
            while self._queue:
                request = self._queue.popleft()
                try:
                    result = await self._execute(request)
                except Exception as ex:  # pylint: disable=broad-exception-caught
                    _LOG.debug("%s %s failed: %s", request.method, request.target, ex)
                    if not request.future.done():
                        request.future.set_exception(ex)
                else:
                    if not request.future.done():
                        request.future.set_result(result)

                if self._queue:
                    await self._sleep(self._delay)
        finally:
            self._processing = False

    async def _execute(self, request: QueuedRequest) -> Any:
        loop = asyncio.get_running_loop()
        try:
            response: Response = await loop.run_in_executor(
                None, self._send, request
            )
        except RequestException as ex:
            raise RequestError(None, str(ex)) from ex

        if not response.ok:
            raise RequestError(response.status_code, response.text or response.reason)

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as ex:
            raise RequestError(response.status_code, "Response is not JSON") from ex

    def _send(self, request: QueuedRequest) -> Response:
        headers = {
            "Accept-Language": self._region,
            "Content-Type": "application/json",
            **self._headers(),
        }
        return self._session.request(
            request.method,
            f"{self._base_url}{request.target}",
            json=request.payload,
            headers=headers,
            timeout=self._timeout,
        )

    def close(self) -> None:
        """Close the underlying HTTP session."""
        self._session.close()
        _LOG.debug("PSN request session closed")
