"""Checkpoint network: checkpoints, timed connections and the violation decision.

The network owns every checkpoint and the directed connections between them.
Creating a connection measures its road distance, stores it and schedules a
probe calibration. Vehicles report every checkpoint they enter; the network
compares the time since the vehicle's previous checkpoint with the legal
minimum for the connection and flags speeders.
"""
import asyncio
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from speedwatch.checkpoint.checkpoint import Checkpoint
from speedwatch.checkpoint.connection import SPEED_CONVERSION, Connection
from speedwatch.errors import UnknownCheckpointError
from speedwatch.events import (CHECKPOINT_TRIGGERED, NETWORK_CHANGED,
                               VIOLATION_DETECTED, EventBus)
from speedwatch.map.map import RoadGraph
from speedwatch.utils.async_utils import schedule
from speedwatch.utils.logger import Logger

MIN_PATH_DISTANCE = 0.1
NO_CHECKPOINT = -1


@dataclass
class PassDecision:
    """Result of comparing a vehicle's traversal time with the legal minimum."""
    plate: str
    from_id: int
    to_id: int
    elapsed: float
    min_legal_time: float
    speed: float
    speed_limit: float
    violation: bool


class CheckpointNetwork:
    """Registry of checkpoints and connections with the local violation decision."""

    def __init__(self, graph: RoadGraph, probe_manager, event_bus: EventBus, config=None):
        """Initialize the network.

        Args:
            graph: Road graph used for distance measurement.
            probe_manager: ProbeManager that calibrates new connections.
            event_bus: Channel for network_changed, violation_detected and checkpoint_triggered.
            config: Optional configuration.
        """
        self.graph = graph
        self.probe_manager = probe_manager
        self.event_bus = event_bus
        self.config = config

        self.checkpoints: Dict[int, Checkpoint] = {}
        self.connections: Dict[Tuple[int, int], Connection] = {}
        self.calibrations: Dict[Tuple[int, int], asyncio.Task] = {}

        self.logger = Logger.get_logger('CheckpointNetwork')
        if probe_manager is not None:
            probe_manager.attach_network(self)

    def __repr__(self):
        return f'CheckpointNetwork(checkpoints={len(self.checkpoints)}, connections={len(self.connections)})'

    # Checkpoints
    def register_checkpoint(self, checkpoint: Checkpoint) -> Checkpoint:
        """Add a checkpoint. A checkpoint id is registered once and kept for the network lifetime."""
        if checkpoint.id not in self.checkpoints:
            self.checkpoints[checkpoint.id] = checkpoint
            self.logger.info(f'Registered checkpoint {checkpoint.id} with {len(checkpoint.anchors)} anchors')
        return self.checkpoints[checkpoint.id]

    def get_checkpoint(self, checkpoint_id: int) -> Optional[Checkpoint]:
        return self.checkpoints.get(checkpoint_id)

    def get_all_checkpoints(self) -> List[Checkpoint]:
        return list(self.checkpoints.values())

    # Connections
    def get_connection(self, from_id: int, to_id: int) -> Optional[Connection]:
        return self.connections.get((from_id, to_id))

    def get_connections(self) -> List[Connection]:
        return list(self.connections.values())

    def create_connection(self, from_id: int, to_id: int, speed_limit: float) -> Connection:
        """Create or replace the connection from_id -> to_id.

        The distance is the solved path length between the first anchors of the two
        checkpoints, or the straight-line distance between the checkpoints when no
        path exists. Calibration is scheduled and network_changed is published.

        Args:
            from_id: Id of the start checkpoint.
            to_id: Id of the end checkpoint.
            speed_limit: Speed limit in km/h.

        Returns:
            The new connection.

        Raises:
            UnknownCheckpointError: If either checkpoint is not registered.
        """
        for checkpoint_id in (from_id, to_id):
            if checkpoint_id not in self.checkpoints:
                raise UnknownCheckpointError(checkpoint_id)

        distance = self.calculate_path_distance(from_id, to_id)
        connection = Connection(from_id, to_id, speed_limit, distance)
        self.connections[(from_id, to_id)] = connection
        self.logger.info(f'Connection created: {from_id} -> {to_id} (Dist: {distance:.1f}m, Limit: {speed_limit}km/h)')

        self.recalculate_connection_time(from_id, to_id)
        self.event_bus.publish(NETWORK_CHANGED)
        return connection

    def update_connection_speed(self, from_id: int, to_id: int, new_speed: float) -> bool:
        """Change the speed limit of an existing connection in place.

        Returns:
            False when the connection does not exist.
        """
        connection = self.get_connection(from_id, to_id)
        if connection is None:
            return False
        connection.speed_limit = float(new_speed)
        self.logger.info(f'Connection {from_id} -> {to_id} speed limit set to {new_speed}km/h')
        self.event_bus.publish(NETWORK_CHANGED)
        return True

    def calculate_path_distance(self, from_id: int, to_id: int) -> float:
        """Road distance between two checkpoints in meters.

        Uses the path between the first anchors; falls back to the straight-line
        distance between the checkpoint centers. Unknown ids give 0.
        """
        from_cp = self.checkpoints.get(from_id)
        to_cp = self.checkpoints.get(to_id)
        if from_cp is None or to_cp is None:
            return 0.0

        distance = 0.0
        start, end = from_cp.first_anchor(), to_cp.first_anchor()
        if start is not None and end is not None:
            path = self.graph.get_shortest_path(start, end)
            if path and len(path) > 1:
                distance = RoadGraph.path_length(path)

        if distance <= MIN_PATH_DISTANCE:
            distance = from_cp.position.distance(to_cp.position)
        return distance

    def recalculate_connection_time(self, from_id: int, to_id: int):
        """Schedule a probe calibration for a connection.

        Inside a running event loop the calibration runs as a background task that
        is returned and kept in `calibrations`. Without a loop it runs to completion
        before returning its result.
        """
        from_cp = self.checkpoints.get(from_id)
        to_cp = self.checkpoints.get(to_id)
        if from_cp is None or to_cp is None or self.probe_manager is None:
            return None

        scheduled = schedule(self._calibrate(from_cp, to_cp))
        if isinstance(scheduled, asyncio.Task):
            self.calibrations[(from_id, to_id)] = scheduled
        return scheduled

    async def _calibrate(self, from_cp: Checkpoint, to_cp: Checkpoint):
        try:
            return await self.probe_manager.calibrate_connection(from_cp, to_cp)
        except Exception as e:
            self.logger.error(f'Calibration {from_cp.id} -> {to_cp.id} failed: {type(e).__name__}: {e}', exc_info=True)
            return None

    async def wait_for_calibrations(self):
        """Wait for every scheduled calibration task to finish."""
        tasks = list(self.calibrations.values())
        if tasks:
            await asyncio.gather(*tasks)

    # Violation decision
    def report_checkpoint_pass(self, vehicle, checkpoint_id: int, timestamp: float) -> Optional[PassDecision]:
        """Process a vehicle entering a checkpoint.

        The vehicle carries `last_checkpoint_id` and `last_timestamp`. A repeat of the
        last checkpoint is ignored. Otherwise the state always advances to
        (checkpoint_id, timestamp); a decision is made only when a connection links
        the two checkpoints.

        Args:
            vehicle: Object with plate, last_checkpoint_id, last_timestamp and mark_as_speeder().
            checkpoint_id: Checkpoint entered.
            timestamp: Simulation time of the crossing in seconds.

        Returns:
            The decision, or None when no decision was made.
        """
        last_id = vehicle.last_checkpoint_id
        if last_id == checkpoint_id:
            return None

        decision = None
        if last_id != NO_CHECKPOINT:
            connection = self.get_connection(last_id, checkpoint_id)
            elapsed = timestamp - vehicle.last_timestamp
            if connection is not None and elapsed > 0:
                decision = self._decide(vehicle.plate, connection, elapsed)

        vehicle.last_checkpoint_id = checkpoint_id
        vehicle.last_timestamp = timestamp

        violation = decision is not None and decision.violation
        if violation:
            self.logger.info(f'VIOLATION: {vehicle.plate} {decision.speed:.1f}km/h on {last_id} -> {checkpoint_id} '
                             f'(limit {decision.speed_limit}km/h)')
            vehicle.mark_as_speeder()
            self.event_bus.publish(VIOLATION_DETECTED, vehicle=vehicle, from_id=last_id,
                                   to_id=checkpoint_id, speed=decision.speed)
        self.event_bus.publish(CHECKPOINT_TRIGGERED, checkpoint_id=checkpoint_id, plate=vehicle.plate, violation=violation)
        return decision

    def _decide(self, plate: str, connection: Connection, elapsed: float) -> PassDecision:
        min_legal = connection.min_legal_time()
        speed = connection.distance / elapsed * SPEED_CONVERSION
        self.logger.debug(f'Vehicle {plate}: {connection.distance:.1f}m in {elapsed:.2f}s = {speed:.1f}km/h '
                          f'(Limit: {connection.speed_limit}, Min Time: {min_legal:.2f})')
        return PassDecision(plate=plate, from_id=connection.from_id, to_id=connection.to_id, elapsed=elapsed,
                            min_legal_time=min_legal, speed=speed, speed_limit=connection.speed_limit,
                            violation=elapsed < min_legal)
