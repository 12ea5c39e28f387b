"""Probe runs: fast, non-interacting traversals along a solved path.

A probe moves at a fixed high speed along the straight segments of the shortest
path between two waypoints, tests its position against every checkpoint volume
as it goes and accumulates the simulated travel time. It never takes part in
vehicle negotiation. Probes are pooled by the ProbeManager and reused.
"""
import asyncio
from typing import Callable, Iterable, List, Optional

from speedwatch.checkpoint.checkpoint import Checkpoint
from speedwatch.map.map import RoadGraph, Waypoint
from speedwatch.utils.traffic_utils import sample_segment
from speedwatch.utils.vector import Vector


class ProbeRun:
    """A single pooled probe.

    Attributes:
        id: Pool index of the probe.
        speed: Travel speed in m/s.
        step: Simulated seconds between two volume tests.
        in_use: True while the probe is outstanding.
        is_best_path: True once the probe is retained as a canonical route marker.
        start: Start waypoint of the last run.
        end: Target waypoint of the last run.
        path_found: Whether the last run found a path.
        elapsed: Simulated travel time of the last run in seconds.
        recorded_checkpoints: Checkpoints entered during the last run, in order, without repeats.
        recorded_path: Positions visited at waypoint boundaries.
    """

    def __init__(self, probe_id: int, speed: float, step: float):
        self.id = probe_id
        self.speed = speed
        self.step = step
        self.in_use = False
        self.is_best_path = False
        self.start: Optional[Waypoint] = None
        self.end: Optional[Waypoint] = None
        self.path_found = False
        self.elapsed = 0.0
        self.recorded_checkpoints: List[Checkpoint] = []
        self.recorded_path: List[Vector] = []

    def __repr__(self):
        return (f'ProbeRun(id={self.id}, in_use={self.in_use}, best={self.is_best_path}, '
                f'elapsed={self.elapsed:.2f}, checkpoints={[cp.id for cp in self.recorded_checkpoints]})')

    def reset(self):
        """Clear the results of the last run so the probe can be reused."""
        self.start = None
        self.end = None
        self.path_found = False
        self.elapsed = 0.0
        self.recorded_checkpoints = []
        self.recorded_path = []
        self.is_best_path = False

    def set_as_best_path(self):
        """Retain this probe's route as the canonical marker for a connection."""
        self.is_best_path = True

    async def run(self, graph: RoadGraph, start: Waypoint, end: Waypoint,
                  checkpoints: Callable[[], Iterable[Checkpoint]]) -> 'ProbeRun':
        """Traverse the shortest path from start to end.

        Suspends between segments so other tasks and the simulation keep running.

        Args:
            graph: Road graph used to solve the path.
            start: Start waypoint.
            end: Target waypoint.
            checkpoints: Returns the checkpoints to test against.

        Returns:
            This probe, with its results filled in.
        """
        self.start = start
        self.end = end
        self.path_found = False
        self.elapsed = 0.0
        self.recorded_checkpoints = []
        self.recorded_path = []

        path = graph.get_shortest_path(start, end)
        if not path:
            return self

        self.path_found = True
        volumes = list(checkpoints())
        self.recorded_path.append(path[0].position)
        self._record_volumes(path[0].position, volumes)

        # never step over a volume thinner than one sample gap
        sample_gap = self.speed * self.step
        if volumes:
            sample_gap = min(sample_gap, min(cp.size[1] for cp in volumes) / 2)
        for i in range(len(path) - 1):
            segment_start = path[i].position
            segment_end = path[i + 1].position
            for point in sample_segment(segment_start, segment_end, sample_gap):
                self._record_volumes(point, volumes)
            self.elapsed += segment_start.distance(segment_end) / self.speed
            self.recorded_path.append(segment_end)
            await asyncio.sleep(0)

        return self

    def _record_volumes(self, point: Vector, volumes: List[Checkpoint]):
        for checkpoint in volumes:
            if checkpoint not in self.recorded_checkpoints and checkpoint.contains(point):
                self.recorded_checkpoints.append(checkpoint)
