"""Correlation-id request/response exchange for path-distance queries.

The mirror does not know the road geometry. When a connection is created
without a distance, it asks the connected simulation drivers for the path
distance and waits a bounded time for the first reply.
"""
import asyncio
import uuid
from typing import Callable, Dict, List

from speedwatch.errors import DistanceQueryTimeout
from speedwatch.utils.logger import Logger


class DistanceQueryBroker:
    """Routes distance requests to drivers and matches replies by request id.

    A driver is a callable receiving ``{'request_id', 'from_node', 'to_node'}``;
    it answers, now or later, through `respond`.
    """

    def __init__(self, timeout: float = 10.0):
        self.timeout = timeout
        self._pending: Dict[str, asyncio.Future] = {}
        self._drivers: List[Callable[[dict], None]] = []
        self.logger = Logger.get_logger('DistanceQueryBroker')

    @property
    def has_driver(self) -> bool:
        return bool(self._drivers)

    def register_driver(self, driver: Callable[[dict], None]) -> None:
        self._drivers.append(driver)

    def unregister_driver(self, driver: Callable[[dict], None]) -> None:
        if driver in self._drivers:
            self._drivers.remove(driver)

    def pending(self) -> int:
        return len(self._pending)

    async def request_distance(self, from_node, to_node, timeout: float = None) -> float:
        """Ask the drivers for the distance between two nodes.

        Args:
            from_node: External id of the start node.
            to_node: External id of the end node.
            timeout: Seconds to wait; the broker default when omitted.

        Returns:
            The distance from the first reply.

        Raises:
            DistanceQueryTimeout: When no reply arrives in time.
        """
        timeout = self.timeout if timeout is None else timeout
        request_id = str(uuid.uuid4())
        future = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future

        request = {'request_id': request_id, 'from_node': from_node, 'to_node': to_node}
        self.logger.debug(f'Distance request {request_id}: {from_node} -> {to_node}')
        for driver in list(self._drivers):
            try:
                driver(request)
            except Exception as e:
                self.logger.error(f'Distance driver failed on {request_id}: {type(e).__name__}: {e}', exc_info=True)

        try:
            return await asyncio.wait_for(future, timeout=timeout)
        except asyncio.TimeoutError:
            raise DistanceQueryTimeout(request_id, timeout) from None
        finally:
            self._pending.pop(request_id, None)

    def respond(self, request_id: str, distance: float) -> bool:
        """Deliver a reply. Late or unknown replies are dropped.

        Returns:
            True if the reply resolved a waiting request.
        """
        future = self._pending.get(request_id)
        if future is None or future.done():
            self.logger.debug(f'Dropped reply for unknown or answered request {request_id}')
            return False
        future.set_result(float(distance))
        return True
