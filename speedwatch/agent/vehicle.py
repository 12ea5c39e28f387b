"""Vehicle agent module for simulating vehicles driving between checkpoints."""
import random
import string
from dataclasses import dataclass
from enum import Enum, auto
from typing import List, Optional

import numpy as np

from speedwatch.agent.base_agent import BaseAgent
from speedwatch.checkpoint.checkpoint import Checkpoint
from speedwatch.checkpoint.connection import SPEED_CONVERSION, Connection
from speedwatch.events import NETWORK_CHANGED
from speedwatch.map.map import Waypoint
from speedwatch.utils.async_utils import schedule
from speedwatch.utils.logger import Logger
from speedwatch.utils.traffic_utils import (catmull_rom, catmull_rom_heading,
                                            lerp, spline_window)
from speedwatch.utils.vector import Vector


class VehicleBehavior(Enum):
    """Driving behavior of a vehicle."""
    COMPLIANT = auto()  # stays below the limit
    OVER_LIMIT = auto()  # always above the limit
    ADAPTIVE = auto()  # slows down only near checkpoints


@dataclass
class Negotiation:
    """Outcome of the local negotiation with nearby vehicles for one tick."""
    desired_speed: float
    hard_stop: bool = False
    limiting_peer: Optional['Vehicle'] = None


def generate_plate(rng: random.Random = None) -> str:
    """Random plate of the form ABC-123."""
    rng = rng or random
    letters = ''.join(rng.choice(string.ascii_uppercase) for _ in range(3))
    return f'{letters}-{rng.randint(100, 999)}'


class Vehicle(BaseAgent):
    """Vehicle agent following a solved waypoint path.

    The vehicle carries its own passport: plate, behavior and the
    `was_actually_speeding` / `was_detected` flags used to grade enforcement.
    The tick logic lives in VehicleManager; the vehicle exposes the individual
    steps (target speed, negotiation, speed update, movement, checkpoint pass).
    """

    _id_counter = 0

    def __init__(self, path: List[Waypoint], destination: Waypoint, behavior: VehicleBehavior, config,
                 spawn_time: float = 0.0, plate: str = None, random_factor: float = None, rng: random.Random = None):
        """Initialize a vehicle agent.

        Args:
            path: Solved waypoint path from the spawn point to the destination.
            destination: Destination waypoint.
            behavior: Driving behavior.
            config: Configuration with the `vehicle.*` section.
            spawn_time: Simulation time of the spawn; older vehicles win deadlocks.
            plate: License plate; generated when omitted.
            random_factor: Fraction in [0, 1] picking the speed within the behavior range.
            rng: Random source for the plate and the random factor.
        """
        rng = rng or random
        start = path[0].position
        heading = path[1].position - start if len(path) > 1 else Vector(1, 0, 0)
        super().__init__(start, heading)

        self.id = Vehicle._id_counter
        Vehicle._id_counter += 1

        self.config = config
        self.plate = plate or generate_plate(rng)
        self.behavior = behavior
        self.spawn_time = spawn_time
        self.random_factor = rng.random() if random_factor is None else random_factor

        # passport
        self.was_actually_speeding = False
        self.was_detected = False

        # path following
        self.path = list(path)
        self.destination = destination
        self.current_waypoint = path[0]
        self.segment_index = 0
        self.segment_traveled = 0.0

        # route knowledge
        self.route_checkpoints: List[Checkpoint] = []
        self.route_index = 0
        self.speed_limit = config['vehicle.default_speed_limit']
        self.current_connection: Optional[Connection] = None

        # enforcement state
        self.last_checkpoint_id = -1
        self.last_timestamp = 0.0
        self.inside_checkpoints = set()

        # negotiation state
        self.limiting_peer: Optional['Vehicle'] = None
        self.ignored_peer: Optional['Vehicle'] = None

        self.inner_radius = config['vehicle.inner_radius']
        self.outer_radius = config['vehicle.outer_radius']
        self.inner_angle = config['vehicle.inner_angle']
        self.outer_angle = config['vehicle.outer_angle']
        self.acceleration = config['vehicle.acceleration']
        self.deceleration = config['vehicle.deceleration']

        self.lifetime = 0.0
        self.alive = True
        self._subscription = None
        self._event_bus = None

        self.target_speed = 0.0
        self.compute_target_speed()
        self.current_speed = self.target_speed

        self.logger = Logger.get_logger('Vehicle')

    @classmethod
    def reset_id_counter(cls):
        """Reset the vehicle ID counter to zero."""
        cls._id_counter = 0

    def __str__(self):
        return f'Vehicle(id={self.id}, plate={self.plate}, behavior={self.behavior.name})'

    def __repr__(self):
        return (f'Vehicle(id={self.id}, plate={self.plate}, behavior={self.behavior.name}, position={self.position}, '
                f'speed={self.current_speed * SPEED_CONVERSION:.1f}km/h, route={[cp.id for cp in self.route_checkpoints]})')

    @property
    def arrived(self) -> bool:
        return self.segment_index >= len(self.path) - 1

    def mark_as_speeder(self):
        """Record that an enforcement point flagged this vehicle."""
        self.was_detected = True

    # Speed
    def compute_target_speed(self) -> float:
        """Recompute the target speed in m/s from the speed limit and the behavior.

        Compliant driving targets `limit - offset - r * safe_range * limit`; over-limit
        driving targets `limit + offset + r * dangerous_range * limit`, where r is the
        vehicle's random factor. Adaptive vehicles drive compliant inside the
        awareness radius of their next checkpoint and over the limit elsewhere.
        """
        base = self.speed_limit
        offset = self.config['vehicle.speed_offset_percent'] * base

        speeding = self.behavior == VehicleBehavior.OVER_LIMIT or (
            self.behavior == VehicleBehavior.ADAPTIVE and not self.is_near_next_checkpoint())

        if speeding:
            target = base + offset + self.random_factor * self.config['vehicle.dangerous_range_percent'] * base
            self.was_actually_speeding = True
        else:
            target = base - offset - self.random_factor * self.config['vehicle.safe_range_percent'] * base

        self.target_speed = max(0.0, target) / SPEED_CONVERSION
        return self.target_speed

    def next_checkpoint(self) -> Optional[Checkpoint]:
        if self.route_index < len(self.route_checkpoints):
            return self.route_checkpoints[self.route_index]
        return None

    def is_near_next_checkpoint(self) -> bool:
        checkpoint = self.next_checkpoint()
        if checkpoint is None:
            return False
        return self.position.distance(checkpoint.position) <= self.config['vehicle.checkpoint_awareness_radius']

    def negotiate(self, peers: List['Vehicle'], ignore: Optional['Vehicle'] = None) -> Negotiation:
        """Classify nearby vehicles and derive this tick's desired speed.

        Peers outside the outer angle are ignored. Within the inner radius any
        qualifying peer forces a hard stop. Further out, a peer within the inner
        angle caps the speed at its current speed and a peer between the inner and
        outer angle brings the desired speed to zero. The nearest qualifying peer
        is the limiting peer.

        Args:
            peers: Vehicles within the outer radius.
            ignore: Peer left out of the negotiation (deadlock resolution).

        Returns:
            The negotiation result.
        """
        result = Negotiation(desired_speed=self.target_speed)
        closest = float('inf')

        for peer in peers:
            if peer is self or peer is ignore:
                continue
            offset = peer.position - self.position
            distance = offset.length()
            if distance == 0 or distance > self.outer_radius:
                continue

            angle = abs(np.degrees(np.arccos(np.clip(offset.normalize().dot(self.direction), -1, 1))))
            if angle >= self.outer_angle:
                continue

            if distance < self.inner_radius:
                result.hard_stop = True
            elif angle < self.inner_angle:
                result.desired_speed = min(result.desired_speed, peer.current_speed)
            else:
                result.desired_speed = 0.0

            if distance < closest:
                closest = distance
                result.limiting_peer = peer

        return result

    def apply_speed(self, negotiation: Negotiation, dt: float) -> float:
        """Move the current speed toward the desired speed.

        A hard stop zeroes the speed at once; otherwise the speed is smoothed with
        the deceleration rate when slowing down and the acceleration rate when
        speeding up.
        """
        if negotiation.hard_stop:
            self.current_speed = 0.0
        else:
            rate = self.deceleration if negotiation.desired_speed < self.current_speed else self.acceleration
            self.current_speed = lerp(self.current_speed, negotiation.desired_speed, rate * dt)
        return self.current_speed

    # Movement
    def advance(self, dt: float) -> bool:
        """Move along the path by the distance covered at the current speed.

        Progress along each segment is parameterized by distance traveled; the
        position is interpolated on the Catmull-Rom curve through the segment's
        four-point window. Leftover distance carries over into the next segment.

        Returns:
            True once the destination has been reached.
        """
        if self.arrived:
            return True
        if self.current_speed <= self.config['vehicle.min_moving_speed']:
            return False

        remaining = self.current_speed * dt
        while remaining > 0 and not self.arrived:
            p1 = self.path[self.segment_index].position
            p2 = self.path[self.segment_index + 1].position
            left = p1.distance(p2) - self.segment_traveled
            if remaining < left:
                self.segment_traveled += remaining
                remaining = 0.0
            else:
                remaining -= max(0.0, left)
                self.segment_index += 1
                self.segment_traveled = 0.0
                self.current_waypoint = self.path[self.segment_index]

        if self.arrived:
            self.position = self.path[-1].position
            self.current_speed = 0.0
            return True

        window = spline_window([wp.position for wp in self.path], self.segment_index)
        segment_length = window[1].distance(window[2])
        t = min(1.0, self.segment_traveled / segment_length) if segment_length > 0 else 1.0
        self.position = catmull_rom(t, *window)
        self.direction = catmull_rom_heading(t, *window)
        return False

    # Checkpoints
    def on_checkpoint_passed(self, checkpoint: Checkpoint, network) -> None:
        """Advance the route past `checkpoint` and move onto the next connection.

        Looks the checkpoint up from the current route index onward. When found,
        the route index moves past it, the speed limit follows the connection to
        the next route checkpoint and occupancy moves from the old connection to
        the new one. Passing the last route checkpoint leaves the connection.
        """
        for i in range(self.route_index, len(self.route_checkpoints)):
            if self.route_checkpoints[i] is not checkpoint:
                continue
            self.route_index = i + 1

            if i + 1 < len(self.route_checkpoints):
                connection = network.get_connection(checkpoint.id, self.route_checkpoints[i + 1].id)
                if connection is not None:
                    self.speed_limit = connection.speed_limit
                    if connection is not self.current_connection:
                        self._leave_connection()
                        self.current_connection = connection
                        connection.increment_occupancy()
            else:
                self._leave_connection()
            return

    def _leave_connection(self):
        if self.current_connection is not None:
            self.current_connection.decrement_occupancy()
            self.current_connection = None

    # Route knowledge
    def set_route(self, checkpoints: List[Checkpoint]):
        self.route_checkpoints = list(checkpoints)
        self.route_index = 0

    def subscribe(self, event_bus, probe_manager):
        """Refresh the route whenever the checkpoint network changes."""
        def _on_network_changed(**_):
            self.refresh_route(probe_manager)
        self._subscription = event_bus.subscribe(NETWORK_CHANGED, _on_network_changed)
        self._event_bus = event_bus

    def refresh_route(self, probe_manager):
        """Ask a probe for the checkpoints between the current waypoint and the destination."""
        if not self.alive or self.current_waypoint is None or self.destination is None:
            return None

        def _apply(result):
            checkpoints, _ = result
            if self.alive:
                self.set_route(checkpoints)
                self.logger.debug(f'{self.plate} refreshed route: {len(checkpoints)} checkpoints')

        return schedule(probe_manager.discover_path(self.current_waypoint, self.destination), _apply)

    def destroy(self):
        """Release the held connection and drop the network subscription."""
        if not self.alive:
            return
        self.alive = False
        self._leave_connection()
        if self._subscription is not None:
            self._event_bus.unsubscribe(self._subscription)
            self._subscription = None
