"""Rolling congestion estimation for the enforcement mirror.

Every accepted traversal is appended to a per-connection sample log. A
periodic timer prunes samples older than the trailing window and broadcasts,
per connection, the mean traversal time divided by the legal minimum time.
Connections without samples in the window are left out of the broadcast.
"""
import asyncio
import time
from collections import defaultdict
from dataclasses import dataclass
from typing import Callable, Dict, List

import numpy as np

from speedwatch.utils.logger import Logger


@dataclass
class TraversalSample:
    elapsed: float
    timestamp: float


class TraversalLog:
    """Append-only traversal samples keyed by connection id."""

    def __init__(self):
        self._samples: Dict[int, List[TraversalSample]] = defaultdict(list)

    def record(self, connection_id: int, elapsed: float, timestamp: float) -> None:
        self._samples[connection_id].append(TraversalSample(elapsed, timestamp))

    def prune(self, cutoff: float) -> int:
        """Drop samples taken before `cutoff`; returns how many were dropped."""
        removed = 0
        for connection_id in list(self._samples):
            kept = [s for s in self._samples[connection_id] if s.timestamp >= cutoff]
            removed += len(self._samples[connection_id]) - len(kept)
            if kept:
                self._samples[connection_id] = kept
            else:
                del self._samples[connection_id]
        return removed

    def samples(self, connection_id: int) -> List[TraversalSample]:
        return list(self._samples.get(connection_id, []))

    def clear(self):
        self._samples.clear()


class CongestionMonitor:
    """Periodic congestion broadcast over the mirror's connections."""

    def __init__(self, mirror, config, clock: Callable[[], float] = time.time):
        """Initialize the monitor.

        Args:
            mirror: EnforcementMirror owning the connections and the traversal log.
            config: Configuration with the `mirror.*` section.
            clock: Returns the current time in seconds.
        """
        self.mirror = mirror
        self.window = config['mirror.congestion_window']
        self.interval = config['mirror.congestion_interval']
        self.clock = clock
        self._listeners: List[Callable[[Dict[int, float]], None]] = []
        self._task = None
        self.logger = Logger.get_logger('CongestionMonitor')

    def add_listener(self, listener: Callable[[Dict[int, float]], None]) -> None:
        self._listeners.append(listener)

    def compute(self, now: float = None) -> Dict[int, float]:
        """Prune the log and compute the congestion ratio per connection.

        Returns:
            Mapping connection id -> mean windowed traversal time / legal minimum
            time. Connections without windowed samples or without a positive
            legal time are absent.
        """
        now = self.clock() if now is None else now
        self.mirror.traversals.prune(now - self.window)

        congestion = {}
        for connection in self.mirror.connections.values():
            samples = self.mirror.traversals.samples(connection.connection_id)
            if not samples:
                continue
            legal_time = connection.legal_time()
            if legal_time <= 0:
                continue
            mean_elapsed = float(np.mean([s.elapsed for s in samples]))
            congestion[connection.connection_id] = mean_elapsed / legal_time
        return congestion

    def broadcast(self, now: float = None) -> Dict[int, float]:
        congestion = self.compute(now)
        if congestion:
            for listener in list(self._listeners):
                try:
                    listener(congestion)
                except Exception as e:
                    self.logger.error(f'Congestion listener failed: {type(e).__name__}: {e}', exc_info=True)
        return congestion

    async def run(self):
        """Broadcast every `interval` seconds until cancelled."""
        self.logger.info(f'Congestion monitor running every {self.interval}s over a {self.window}s window')
        while True:
            try:
                self.broadcast()
            except Exception as e:
                self.logger.error(f'Congestion broadcast error: {type(e).__name__}: {e}', exc_info=True)
            await asyncio.sleep(self.interval)

    def start(self) -> asyncio.Task:
        if self._task is None or self._task.done():
            self._task = asyncio.get_running_loop().create_task(self.run())
        return self._task

    async def stop(self):
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
