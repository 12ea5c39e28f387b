"""Spawn management: weighted vehicle spawning and the enforcement test plan.

In normal operation a vehicle is requested every `spawner.spawn_interval`
seconds while fewer than `spawner.max_vehicles` are on the road. Each request
picks weighted start and end waypoints and a behavior, asks a probe for the
checkpoints on the route and then spawns the vehicle.

The test plan grades the enforcement: it waits for the road to clear, spawns
a fixed number of test vehicles and records for every vehicle that reaches its
destination whether it really sped and whether it was caught.
"""
import asyncio
import os
import random
from dataclasses import dataclass
from enum import Enum, auto
from typing import List, Optional, Sequence

import pandas as pd

from speedwatch.agent.vehicle import Vehicle, VehicleBehavior
from speedwatch.events import DESTINATION_REACHED, LIFETIME_EXPIRED
from speedwatch.map.map import Waypoint
from speedwatch.utils.async_utils import schedule
from speedwatch.utils.logger import Logger


class SpawnerState(Enum):
    """Operating mode of the spawner."""
    NORMAL = auto()
    CLEARING = auto()  # waiting for the road to empty before a test plan
    TESTING = auto()


@dataclass
class WeightedPoint:
    """Spawn or destination waypoint with a selection weight."""
    waypoint: Waypoint
    weight: float = 10.0


@dataclass
class TestResult:
    """Enforcement outcome for one test vehicle."""
    __test__ = False

    plate: str
    behavior: str
    actually_speeding: bool
    was_detected: bool

    @property
    def outcome(self) -> str:
        if self.actually_speeding and not self.was_detected:
            return 'MISSED_SPEEDER'
        if not self.actually_speeding and self.was_detected:
            return 'FALSE_ALARM'
        return 'OK'


class SpawnManager:
    """Spawns vehicles and runs the test plan."""

    def __init__(self, graph, network, probe_manager, vehicle_manager, event_bus, config, rng: random.Random = None):
        """Initialize the spawn manager.

        Args:
            graph: Road graph used to solve vehicle paths.
            network: CheckpointNetwork providing the initial speed limit.
            probe_manager: ProbeManager discovering route checkpoints.
            vehicle_manager: VehicleManager receiving new vehicles.
            event_bus: Channel for vehicle lifecycle events.
            config: Configuration with the `spawner.*` section.
            rng: Random source; a new seeded one when omitted.
        """
        self.graph = graph
        self.network = network
        self.probe_manager = probe_manager
        self.vehicle_manager = vehicle_manager
        self.event_bus = event_bus
        self.config = config
        self.rng = rng or random.Random(config.get('speedwatch.seed', 0))

        self.spawn_interval = config['spawner.spawn_interval']
        self.max_vehicles = config['spawner.max_vehicles']
        self.ratio_compliant = config['spawner.ratio_compliant']
        self.ratio_over_limit = config['spawner.ratio_over_limit']
        self.max_pick_attempts = config['spawner.max_pick_attempts']

        self.test_total = config['spawner.test_plan.total_vehicles']
        self.test_interval = config['spawner.test_plan.spawn_interval']
        self.test_output_path = config['spawner.test_plan.output_path']

        self.start_points: List[WeightedPoint] = []
        self.end_points: List[WeightedPoint] = []

        self.state = SpawnerState.NORMAL
        self.now = 0.0
        self._timer = 0.0
        self._pending = 0

        self.test_spawned = 0
        self.test_finished = 0
        self.results: List[TestResult] = []
        self._test_vehicles = set()

        self._subscriptions = [
            event_bus.subscribe(DESTINATION_REACHED, self._on_destination_reached),
            event_bus.subscribe(LIFETIME_EXPIRED, self._on_lifetime_expired),
        ]

        self.logger = Logger.get_logger('SpawnManager')

    @property
    def vehicle_count(self) -> int:
        return len(self.vehicle_manager.vehicles) + self._pending

    def set_spawn_points(self, start_points: Sequence[WeightedPoint], end_points: Sequence[WeightedPoint]):
        self.start_points = list(start_points)
        self.end_points = list(end_points)

    def update(self, dt: float, now: float):
        """Advance the spawn timer and spawn when due.

        Args:
            dt: Tick length in seconds.
            now: Current simulation time.
        """
        self.now = now

        if self.state == SpawnerState.CLEARING:
            if self.vehicle_count == 0:
                self.logger.info('Phase 2: Spawning test vehicles...')
                self.state = SpawnerState.TESTING
                self._timer = 0.0
            return

        self._timer += dt
        if self.state == SpawnerState.TESTING:
            if self._timer >= self.test_interval and self.vehicle_count < self.max_vehicles \
                    and self.test_spawned < self.test_total:
                self.request_spawn()
                self._timer = 0.0
        elif self._timer >= self.spawn_interval and self.vehicle_count < self.max_vehicles:
            self.request_spawn()
            self._timer = 0.0

    def pick_weighted(self, points: Sequence[WeightedPoint]) -> Optional[Waypoint]:
        """Pick a waypoint with probability proportional to its weight.

        Negative weights count as zero; a non-positive total picks uniformly.
        """
        if not points:
            return None
        total = sum(max(0.0, p.weight) for p in points)
        if total <= 0:
            return self.rng.choice(points).waypoint

        target = self.rng.uniform(0, total)
        current = 0.0
        for point in points:
            current += max(0.0, point.weight)
            if target <= current:
                return point.waypoint
        return points[0].waypoint

    def determine_behavior(self) -> VehicleBehavior:
        value = self.rng.random()
        if value < self.ratio_compliant:
            return VehicleBehavior.COMPLIANT
        if value < self.ratio_compliant + self.ratio_over_limit:
            return VehicleBehavior.OVER_LIMIT
        return VehicleBehavior.ADAPTIVE

    def pick_endpoints(self):
        """Pick distinct start and end waypoints with a path between them.

        Returns:
            Tuple (start, end), or (None, None) after `max_pick_attempts` misses.
        """
        for _ in range(self.max_pick_attempts):
            start = self.pick_weighted(self.start_points)
            end = self.pick_weighted(self.end_points)
            if start is None or end is None:
                break
            if start is not end and self.graph.get_shortest_path(start, end):
                return start, end
        return None, None

    def request_spawn(self):
        """Pick endpoints and a behavior, discover the route and spawn a vehicle.

        Returns:
            The discovery task inside a running event loop, the discovery result
            otherwise, or None when no connected endpoints could be picked.
        """
        start, end = self.pick_endpoints()
        if start is None:
            self.logger.warning(f'No connected start and end waypoints after {self.max_pick_attempts} attempts')
            return None

        behavior = self.determine_behavior()
        testing = self.state == SpawnerState.TESTING
        if testing:
            self.test_spawned += 1
        self._pending += 1

        def _spawn(result):
            checkpoints, _ = result
            return self.spawn_with_route(start, end, behavior, checkpoints, testing)

        try:
            outcome = schedule(self.probe_manager.discover_path(start, end), _spawn)
        except Exception as e:
            self._pending -= 1
            self._discovery_failed(start, end, testing, f'{type(e).__name__}: {e}')
            return None

        if isinstance(outcome, asyncio.Task):
            outcome.add_done_callback(lambda task: self._discovery_done(task, start, end, testing))
        else:
            self._pending -= 1
        return outcome

    def _discovery_done(self, task: asyncio.Task, start: Waypoint, end: Waypoint, testing: bool):
        self._pending -= 1
        if task.cancelled():
            self._discovery_failed(start, end, testing, 'cancelled')
        elif task.exception() is not None:
            error = task.exception()
            self._discovery_failed(start, end, testing, f'{type(error).__name__}: {error}')

    def _discovery_failed(self, start: Waypoint, end: Waypoint, testing: bool, reason: str):
        self.logger.error(f'Route discovery {start.id} -> {end.id} failed ({reason}), spawn skipped')
        if testing:
            self._count_finished()

    def spawn_with_route(self, start: Waypoint, end: Waypoint, behavior: VehicleBehavior,
                         checkpoints: List, testing: bool = False) -> Optional[Vehicle]:
        """Create a vehicle that already knows the checkpoints on its route.

        The initial speed limit comes from the connection between the first two
        route checkpoints when it exists.
        """
        path = self.graph.get_shortest_path(start, end)
        if not path:
            self.logger.warning(f'No path from {start.id} to {end.id}, spawn skipped')
            if testing:
                self._count_finished()
            return None

        vehicle = Vehicle(path, end, behavior, self.config, spawn_time=self.now, rng=self.rng)
        vehicle.set_route(checkpoints)
        if len(checkpoints) >= 2:
            connection = self.network.get_connection(checkpoints[0].id, checkpoints[1].id)
            if connection is not None:
                vehicle.speed_limit = connection.speed_limit
                vehicle.compute_target_speed()
                vehicle.current_speed = vehicle.target_speed

        if testing:
            self._test_vehicles.add(vehicle.id)
        return self.vehicle_manager.add_vehicle(vehicle)

    # Test plan
    def start_test_plan(self, total_vehicles: int = None):
        """Clear the road, then spawn and grade `total_vehicles` test vehicles."""
        if self.state != SpawnerState.NORMAL:
            self.logger.warning(f'Test plan already running ({self.state.name})')
            return
        if total_vehicles is not None:
            self.test_total = total_vehicles
        self.logger.info('--- STARTING TEST PLAN ---')
        self.logger.info('Phase 1: Clearing existing traffic...')
        self.state = SpawnerState.CLEARING
        self.test_spawned = 0
        self.test_finished = 0
        self.results = []
        self._test_vehicles = set()

    @property
    def test_plan_running(self) -> bool:
        return self.state != SpawnerState.NORMAL

    def _on_destination_reached(self, vehicle, **_):
        if self.state != SpawnerState.TESTING or vehicle.id not in self._test_vehicles:
            return
        self.results.append(TestResult(plate=vehicle.plate, behavior=vehicle.behavior.name,
                                       actually_speeding=vehicle.was_actually_speeding,
                                       was_detected=vehicle.was_detected))
        self._count_finished()

    def _on_lifetime_expired(self, vehicle, **_):
        if self.state != SpawnerState.TESTING or vehicle.id not in self._test_vehicles:
            return
        self._count_finished()

    def _count_finished(self):
        self.test_finished += 1
        if self.test_finished % 50 == 0:
            self.logger.info(f'Test Progress: {self.test_finished}/{self.test_total}')
        if self.test_finished >= self.test_total:
            self.logger.info('Phase 3: Saving Data...')
            self.save_test_results()
            self.state = SpawnerState.NORMAL
            self.logger.info('--- TEST PLAN COMPLETE ---')

    def results_frame(self) -> pd.DataFrame:
        rows = [{
            'LicensePlate': r.plate,
            'Behavior': r.behavior,
            'ActuallySpeeding': r.actually_speeding,
            'WasDetected': r.was_detected,
            'Result': r.outcome,
        } for r in self.results]
        return pd.DataFrame(rows, columns=['LicensePlate', 'Behavior', 'ActuallySpeeding', 'WasDetected', 'Result'])

    def save_test_results(self, path: str = None) -> str:
        """Write the test results to CSV and return the file path."""
        path = path or self.test_output_path
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        self.results_frame().to_csv(path, index=False)
        self.logger.info(f'Test Plan saved to: {path}')
        return path

    def close(self):
        for subscription in self._subscriptions:
            self.event_bus.unsubscribe(subscription)
        self._subscriptions = []
