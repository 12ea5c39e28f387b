"""Probe calibration subsystem.

The ProbeManager owns a growable pool of probes and runs them as independent
asyncio tasks. It answers two kinds of request:

- ``discover_path``: one probe run returning the checkpoints met along the
  fastest route and the travel time. Vehicles use it to learn their route.
- ``calibrate_connection``: one probe per (anchor of from, anchor of to) pair.
  When every probe has reported back, the fastest successful run sets the
  connection's minimum traversal time and is kept as the canonical route
  marker; the other probes go back to the pool.

Calibration requests are tracked per (from_id, to_id) key. Only probe
completion callbacks, which all run on the event loop thread, write to the
tracking table.
"""
import asyncio
from collections import deque
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from speedwatch.checkpoint.checkpoint import Checkpoint
from speedwatch.map.map import RoadGraph, Waypoint
from speedwatch.probe.probe_run import ProbeRun
from speedwatch.utils.logger import Logger


class ProbePool:
    """Bounded, growable pool of probes.

    The pool starts with `initial_size` probes and creates a new one whenever it
    runs dry, so callers never wait for a probe.
    """

    def __init__(self, initial_size: int, speed: float, step: float):
        self.speed = speed
        self.step = step
        self.probes: List[ProbeRun] = []
        self._available = deque()
        for _ in range(initial_size):
            self._available.append(self._create())

    def __len__(self):
        return len(self.probes)

    @property
    def available(self) -> int:
        return len(self._available)

    def _create(self) -> ProbeRun:
        probe = ProbeRun(len(self.probes), self.speed, self.step)
        self.probes.append(probe)
        return probe

    def acquire(self) -> ProbeRun:
        """Take an idle probe, growing the pool when none is left."""
        probe = self._available.popleft() if self._available else self._create()
        probe.reset()
        probe.in_use = True
        return probe

    def release(self, probe: ProbeRun) -> None:
        """Return a probe to the pool. Releasing an idle probe is a no-op."""
        if not probe.in_use:
            return
        probe.reset()
        probe.in_use = False
        self._available.append(probe)


@dataclass
class CalibrationRequest:
    """Tracking entry for one calibration of a (from_id, to_id) connection."""
    key: Tuple[int, int]
    generation: int
    expected: int
    received: int = 0
    results: List[Tuple[float, ProbeRun]] = field(default_factory=list)
    completed: bool = False
    done: Optional[asyncio.Future] = field(default=None, repr=False)
    tasks: List[asyncio.Task] = field(default_factory=list, repr=False)


@dataclass
class CalibrationResult:
    """Outcome of a calibration request."""
    key: Tuple[int, int]
    expected: int
    received: int
    successes: int
    min_time: Optional[float] = None
    best_probe: Optional[ProbeRun] = None
    abandoned: bool = False
    timed_out: bool = False


class ProbeManager:
    """Runs probes for route discovery and connection calibration."""

    def __init__(self, graph: RoadGraph, config):
        """Initialize the probe manager.

        Args:
            graph: Road graph probes travel on.
            config: Configuration with the `probe.*` section.
        """
        self.graph = graph
        self.config = config
        self.pool = ProbePool(config['probe.pool_size'], config['probe.speed'], config['probe.step'])
        self.calibration_timeout = config.get('probe.calibration_timeout', None)

        self.network = None
        self.best_paths: Dict[Tuple[int, int], ProbeRun] = {}
        self._requests: Dict[Tuple[int, int], CalibrationRequest] = {}
        self._generation = 0
        self._tasks = set()

        self.logger = Logger.get_logger('ProbeManager')
        self.logger.info(f'ProbeManager initialized with a pool of {len(self.pool)} probes')

    def attach_network(self, network) -> None:
        """Give the manager access to the checkpoints and connections it calibrates."""
        self.network = network

    def _checkpoints(self):
        return self.network.get_all_checkpoints() if self.network is not None else []

    def pending_requests(self) -> List[Tuple[int, int]]:
        return list(self._requests)

    # Route discovery
    async def discover_path(self, start: Waypoint, end: Waypoint) -> Tuple[List[Checkpoint], float]:
        """Run one probe from start to end.

        Args:
            start: Start waypoint.
            end: Target waypoint.

        Returns:
            Tuple (checkpoints entered in order, elapsed seconds). An empty list and
            0.0 when either waypoint is missing or no path exists.
        """
        if start is None or end is None:
            return [], 0.0

        probe = self.pool.acquire()
        try:
            await probe.run(self.graph, start, end, self._checkpoints)
            return list(probe.recorded_checkpoints), probe.elapsed
        finally:
            self.pool.release(probe)

    # Calibration
    async def calibrate_connection(self, from_checkpoint: Checkpoint, to_checkpoint: Checkpoint) -> Optional[CalibrationResult]:
        """Measure the fastest route between two checkpoints and store it on the connection.

        Launches one probe per anchor pair and waits until all of them have reported.
        Probes that find no path count as received but not as successes.

        Args:
            from_checkpoint: Checkpoint the connection starts at.
            to_checkpoint: Checkpoint the connection ends at.

        Returns:
            The calibration result, or None when either checkpoint has no anchors.
        """
        key = (from_checkpoint.id, to_checkpoint.id)
        start_waypoints = [wp for wp in from_checkpoint.anchors if wp is not None]
        end_waypoints = [wp for wp in to_checkpoint.anchors if wp is not None]

        if not start_waypoints or not end_waypoints:
            self.logger.warning(f'Cannot calibrate {key[0]} -> {key[1]}: missing anchor waypoints')
            return None

        superseded = self._requests.get(key)
        if superseded is not None:
            self.logger.info(f'Calibration for {key[0]} -> {key[1]} superseded by a new request')
            self._finish(superseded, abandoned=True)

        self._generation += 1
        request = CalibrationRequest(key=key, generation=self._generation,
                                     expected=len(start_waypoints) * len(end_waypoints),
                                     done=asyncio.get_running_loop().create_future())
        self._requests[key] = request
        self.logger.info(f'Starting {request.expected} probe runs for connection {key[0]} -> {key[1]}')

        for start in start_waypoints:
            for end in end_waypoints:
                probe = self.pool.acquire()
                task = asyncio.create_task(self._timing_run(request.key, request.generation, probe, start, end))
                request.tasks.append(task)
                self._tasks.add(task)
                task.add_done_callback(self._tasks.discard)
                # a task cancelled before its first step never enters _timing_run
                task.add_done_callback(lambda t, p=probe: self.pool.release(p) if t.cancelled() else None)

        if self.calibration_timeout is None:
            return await request.done
        try:
            return await asyncio.wait_for(asyncio.shield(request.done), timeout=self.calibration_timeout)
        except asyncio.TimeoutError:
            self.logger.warning(f'Calibration {key[0]} -> {key[1]} timed out with '
                                f'{request.received}/{request.expected} probes reported')
            return self._finish(request, timed_out=True)

    def abandon_calibration(self, from_id: int, to_id: int) -> bool:
        """Forfeit an outstanding calibration.

        Probes still running return to the pool when they finish.

        Returns:
            True if a request was outstanding.
        """
        request = self._requests.get((from_id, to_id))
        if request is None:
            return False
        self._finish(request, abandoned=True)
        return True

    async def _timing_run(self, key, generation, probe: ProbeRun, start: Waypoint, end: Waypoint):
        try:
            await probe.run(self.graph, start, end, self._checkpoints)
        except asyncio.CancelledError:
            self.pool.release(probe)
            raise
        except Exception as e:
            self.logger.error(f'Probe {probe.id} failed on {start.id} -> {end.id}: {type(e).__name__}: {e}', exc_info=True)
            probe.path_found = False
        self._on_timing_complete(key, generation, probe)

    def _on_timing_complete(self, key, generation, probe: ProbeRun):
        request = self._requests.get(key)
        if request is None or request.generation != generation or request.completed:
            self.pool.release(probe)
            return

        request.received += 1
        if probe.path_found and probe.elapsed > 0:
            request.results.append((probe.elapsed, probe))
            self.logger.debug(f'Probe run {key[0]} -> {key[1]}: {probe.elapsed:.2f}s '
                              f'(via {probe.start.id} -> {probe.end.id})')
        else:
            self.logger.debug(f'Probe run {key[0]} -> {key[1]}: NO PATH '
                              f'(via {probe.start.id} -> {probe.end.id})')
            self.pool.release(probe)

        if request.received >= request.expected:
            self._finish(request)

    def _finish(self, request: CalibrationRequest, abandoned: bool = False, timed_out: bool = False) -> CalibrationResult:
        """Complete a request exactly once and publish its result."""
        if request.completed:
            return request.done.result() if request.done.done() else None
        request.completed = True
        if self._requests.get(request.key) is request:
            del self._requests[request.key]

        result = CalibrationResult(key=request.key, expected=request.expected, received=request.received,
                                   successes=len(request.results), abandoned=abandoned, timed_out=timed_out)

        if abandoned:
            for _, probe in request.results:
                self.pool.release(probe)
        elif request.results:
            min_time, best_probe = min(request.results, key=lambda item: item[0])
            for _, probe in request.results:
                if probe is not best_probe:
                    self.pool.release(probe)

            previous = self.best_paths.get(request.key)
            if previous is not None and previous is not best_probe:
                previous.is_best_path = False
                self.pool.release(previous)
            best_probe.set_as_best_path()
            self.best_paths[request.key] = best_probe

            result.min_time = min_time
            result.best_probe = best_probe
            connection = self.network.get_connection(*request.key) if self.network is not None else None
            if connection is not None:
                connection.set_min_traversal_time(min_time)
                self.logger.info(f'Connection {request.key[0]} -> {request.key[1]} min traversal time: '
                                 f'{min_time:.2f}s (from {len(request.results)} valid paths)')
        else:
            self.logger.warning(f'Connection {request.key[0]} -> {request.key[1]}: no valid paths found by probes')

        if timed_out:
            for task in request.tasks:
                task.cancel()

        if request.done is not None and not request.done.done():
            request.done.set_result(result)
        return result
