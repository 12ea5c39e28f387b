"""Remote enforcement mirror.

The mirror repeats the checkpoint network's violation decision for crossings
reported from outside the simulation (plate, external checkpoint id, optional
timestamp). It keeps the last sighting per plate, records accepted traversals
for congestion estimation and stores confirmed violations.

Reports for one plate may arrive out of order. A report older than the
stored sighting (elapsed <= 0) is answered without a violation and does not
touch the stored sighting.
"""
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, List, Optional, Tuple

from speedwatch.checkpoint.connection import SPEED_CONVERSION
from speedwatch.enforcement.congestion import TraversalLog
from speedwatch.enforcement.distance_query import DistanceQueryBroker
from speedwatch.enforcement.violation_store import (ViolationRecord,
                                                   ViolationStore)
from speedwatch.errors import DistanceQueryTimeout, UnknownCheckpointError
from speedwatch.utils.logger import Logger

VIOLATION_ADDED = 'violation_added'
NODE_TRIGGERED = 'node_triggered'
CONNECTION_ADDED = 'connection_added'
CONNECTION_UPDATED = 'connection_updated'

# decision kinds
CHECKED = 'checked'
NO_PRIOR = 'no_prior'
NO_CONNECTION = 'no_connection'
OUT_OF_ORDER = 'out_of_order'
NOT_FOUND = 'not_found'


@dataclass
class MirrorNode:
    node_id: int
    external_id: object


@dataclass
class MirrorConnection:
    connection_id: int
    from_node: int
    to_node: int
    distance: float
    speed_limit: float

    def legal_time(self) -> float:
        """Legal minimum traversal time in seconds; 0 for a non-positive limit."""
        if self.speed_limit <= 0:
            return 0.0
        return self.distance / self.speed_limit * SPEED_CONVERSION

    def to_dict(self) -> dict:
        return {
            'connection_id': self.connection_id,
            'from_node_id': self.from_node,
            'to_node_id': self.to_node,
            'distance': self.distance,
            'speed_limit': self.speed_limit,
        }


@dataclass
class Sighting:
    node_id: int
    timestamp: float


@dataclass
class CrossingDecision:
    """Answer to a crossing report."""
    kind: str
    status: bool
    car_speed: float
    legal_limit: float
    timestamp: float
    node_id: Optional[int]
    car_plate: str

    def to_dict(self) -> dict:
        if self.kind == NOT_FOUND:
            return {'error': 'Node not found', 'status': NOT_FOUND, 'car_plate': self.car_plate}
        return {
            'status': self.status,
            'car_speed': self.car_speed,
            'legal_limit': self.legal_limit,
            'timestamp': self.timestamp,
            'node_id': self.node_id,
            'car_plate': self.car_plate,
        }


def _to_seconds(timestamp) -> float:
    if isinstance(timestamp, datetime):
        return timestamp.timestamp()
    return float(timestamp)


class EnforcementMirror:
    """Mirror of the violation decision for externally reported crossings."""

    def __init__(self, config, broker: DistanceQueryBroker = None, store: ViolationStore = None,
                 clock: Callable[[], float] = time.time):
        """Initialize the mirror.

        Args:
            config: Configuration with the `mirror.*` section.
            broker: Distance query broker; a new one when omitted.
            store: Violation store; a new one when omitted.
            clock: Returns the receipt time in seconds for reports without a timestamp.
        """
        self.config = config
        self.broker = broker or DistanceQueryBroker(config['mirror.distance_query_timeout'])
        self.store = store or ViolationStore()
        self.clock = clock

        self.nodes: Dict[object, MirrorNode] = {}
        self.connections: Dict[int, MirrorConnection] = {}
        self._by_nodes: Dict[Tuple[int, int], int] = {}
        self.last_seen: Dict[str, Sighting] = {}
        self.traversals = TraversalLog()

        self._listeners: Dict[str, List[Callable[[dict], None]]] = {}
        self._next_node_id = 1
        self._next_connection_id = 1

        self.logger = Logger.get_logger('EnforcementMirror')

    # Listeners
    def add_listener(self, topic: str, listener: Callable[[dict], None]) -> None:
        self._listeners.setdefault(topic, []).append(listener)

    def _emit(self, topic: str, payload: dict):
        for listener in list(self._listeners.get(topic, [])):
            try:
                listener(payload)
            except Exception as e:
                self.logger.error(f'Listener for {topic} failed: {type(e).__name__}: {e}', exc_info=True)

    # Topology
    def register_node(self, external_id) -> MirrorNode:
        """Register a checkpoint under its external id; registering twice returns the same node."""
        node = self.nodes.get(external_id)
        if node is None:
            node = MirrorNode(self._next_node_id, external_id)
            self._next_node_id += 1
            self.nodes[external_id] = node
            self.logger.info(f'Registered node {node.node_id} for checkpoint {external_id}')
        return node

    def get_node(self, external_id) -> Optional[MirrorNode]:
        return self.nodes.get(external_id)

    async def create_connection(self, from_external, to_external, distance: float = None,
                                speed_limit: float = 50.0) -> int:
        """Create or replace the connection between two registered nodes.

        When no distance is given it is requested from the simulation through
        the broker; no driver or no reply in time gives a distance of 0.

        Returns:
            The connection id.

        Raises:
            UnknownCheckpointError: If either external id is not registered.
        """
        from_node = self.nodes.get(from_external)
        to_node = self.nodes.get(to_external)
        if from_node is None:
            raise UnknownCheckpointError(from_external)
        if to_node is None:
            raise UnknownCheckpointError(to_external)

        if distance is None:
            distance = await self._query_distance(from_external, to_external)

        key = (from_node.node_id, to_node.node_id)
        connection_id = self._by_nodes.get(key)
        if connection_id is None:
            connection_id = self._next_connection_id
            self._next_connection_id += 1
            self._by_nodes[key] = connection_id

        connection = MirrorConnection(connection_id, from_node.node_id, to_node.node_id,
                                      max(0.0, float(distance)), float(speed_limit))
        self.connections[connection_id] = connection
        self.logger.info(f'Connection {connection_id}: {from_external} -> {to_external} '
                         f'(Dist: {connection.distance:.1f}m, Limit: {connection.speed_limit}km/h)')
        self._emit(CONNECTION_ADDED, connection.to_dict())
        return connection_id

    def update_connection(self, connection_id: int, distance: float = None, speed_limit: float = None) -> bool:
        connection = self.connections.get(connection_id)
        if connection is None:
            return False
        if distance is not None:
            connection.distance = max(0.0, float(distance))
        if speed_limit is not None:
            connection.speed_limit = float(speed_limit)
        self._emit(CONNECTION_UPDATED, connection.to_dict())
        return True

    def get_connection_between(self, from_node: int, to_node: int) -> Optional[MirrorConnection]:
        connection_id = self._by_nodes.get((from_node, to_node))
        return self.connections.get(connection_id) if connection_id is not None else None

    async def _query_distance(self, from_external, to_external) -> float:
        if not self.broker.has_driver:
            self.logger.warning(f'No distance driver for {from_external} -> {to_external}, using 0')
            return 0.0
        try:
            return await self.broker.request_distance(from_external, to_external)
        except DistanceQueryTimeout as e:
            self.logger.warning(f'{e}, using 0 for {from_external} -> {to_external}')
            return 0.0

    # Crossings
    def report_crossing(self, plate: str, external_id, timestamp=None) -> CrossingDecision:
        """Judge one reported crossing.

        Args:
            plate: License plate of the vehicle.
            external_id: External id of the checkpoint crossed.
            timestamp: Crossing time in seconds or as a datetime; receipt time when omitted.

        Returns:
            The decision for the crossing.
        """
        sighting_time = self.clock() if timestamp is None else _to_seconds(timestamp)
        node = self.nodes.get(external_id)
        if node is None:
            self.logger.warning(f'Crossing by {plate} at unknown checkpoint {external_id}')
            return CrossingDecision(NOT_FOUND, False, 0.0, 0.0, sighting_time, None, plate)

        decision = self._decide(plate, node, sighting_time)
        if decision.status:
            self.logger.info(f'Car {plate} is violating the speed limit! '
                             f'Going {decision.car_speed:.1f} in a {decision.legal_limit} zone!')
            self._emit(VIOLATION_ADDED, {'car_plate': plate, 'car_speed': decision.car_speed,
                                         'timestamp': sighting_time})
        self._emit(NODE_TRIGGERED, {'id_in_project': external_id, 'car_plate': plate,
                                    'violation': decision.status})
        return decision

    def _decide(self, plate: str, node: MirrorNode, sighting_time: float) -> CrossingDecision:
        previous = self.last_seen.get(plate)
        if previous is None:
            self.last_seen[plate] = Sighting(node.node_id, sighting_time)
            return CrossingDecision(NO_PRIOR, False, 0.0, 0.0, sighting_time, node.node_id, plate)

        connection = self.get_connection_between(previous.node_id, node.node_id)
        if connection is None:
            self.logger.debug(f'No connection {previous.node_id} -> {node.node_id} for {plate}')
            return CrossingDecision(NO_CONNECTION, False, 0.0, 0.0, sighting_time, node.node_id, plate)

        elapsed = sighting_time - previous.timestamp
        if elapsed <= 0:
            self.logger.debug(f'Out-of-order report for {plate}: {sighting_time} is not after {previous.timestamp}')
            return CrossingDecision(OUT_OF_ORDER, False, 0.0, connection.speed_limit, sighting_time,
                                    node.node_id, plate)

        self.traversals.record(connection.connection_id, elapsed, sighting_time)
        legal_time = connection.legal_time()
        speed = connection.distance / elapsed * SPEED_CONVERSION
        violation = elapsed < legal_time
        self.last_seen[plate] = Sighting(node.node_id, sighting_time)

        if violation:
            self.store.add(ViolationRecord(plate=plate, speed=speed, legal_limit=connection.speed_limit,
                                           timestamp=sighting_time, from_node=previous.node_id,
                                           to_node=node.node_id))
        return CrossingDecision(CHECKED, violation, speed, connection.speed_limit, sighting_time,
                                node.node_id, plate)
