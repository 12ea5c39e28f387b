"""Vehicle management module for the enforcement simulation.

This module owns the live vehicles and advances them once per simulation tick.
A tick runs in phases so that the outcome does not depend on the order in
which vehicles are visited:

1. Plan: every vehicle recomputes its target speed and negotiates with the
   neighbors found in a quadtree rebuilt for this tick. All vehicles read the
   positions and speeds left by the previous tick.
2. Deadlocks: two vehicles limiting each other are resolved in favor of the
   older one, which re-negotiates without the other.
3. Apply: speeds are updated from the plans.
4. Move: vehicles advance along their paths, checkpoint volumes are tested
   for entry and vehicles past their destination or lifetime are removed.
"""
from typing import Callable, Dict, List

from speedwatch.agent.vehicle import Negotiation, Vehicle
from speedwatch.checkpoint.checkpoint import Checkpoint
from speedwatch.events import (DESTINATION_REACHED, LIFETIME_EXPIRED,
                               VEHICLE_DESTROYED)
from speedwatch.utils.logger import Logger
from speedwatch.utils.quadtree import QuadTree
from speedwatch.utils.traffic_utils import sample_segment


def _position_of(vehicle: Vehicle):
    return vehicle.position


class VehicleManager:
    """Manages vehicles in the enforcement simulation.

    Crossing listeners are called with (vehicle, checkpoint, timestamp) for every
    checkpoint a vehicle enters, after the checkpoint network has judged it.
    """

    def __init__(self, network, probe_manager, event_bus, config):
        """Initialize the vehicle manager.

        Args:
            network: CheckpointNetwork judging the crossings.
            probe_manager: ProbeManager used for route refreshes.
            event_bus: Channel for lifecycle events.
            config: Configuration with the `vehicle.*` section.
        """
        self.network = network
        self.probe_manager = probe_manager
        self.event_bus = event_bus
        self.config = config
        self.maximum_lifetime = config['vehicle.maximum_lifetime']

        self.vehicles: List[Vehicle] = []
        self._crossing_listeners: List[Callable] = []

        self.logger = Logger.get_logger('VehicleManager')
        self.logger.info('VehicleManager initialized')

    def __len__(self):
        return len(self.vehicles)

    def add_vehicle(self, vehicle: Vehicle) -> Vehicle:
        """Start managing a vehicle and subscribe it to network changes."""
        self.vehicles.append(vehicle)
        vehicle.subscribe(self.event_bus, self.probe_manager)
        self.logger.info(f'Spawned Vehicle: {vehicle.plate} ({vehicle.behavior.name}) at {vehicle.position}')
        return vehicle

    def add_crossing_listener(self, listener: Callable) -> None:
        self._crossing_listeners.append(listener)

    def remove_crossing_listener(self, listener: Callable) -> None:
        if listener in self._crossing_listeners:
            self._crossing_listeners.remove(listener)

    def clear(self):
        """Destroy every vehicle without lifecycle events."""
        for vehicle in self.vehicles:
            vehicle.destroy()
        self.vehicles = []

    def update_vehicles(self, dt: float, now: float):
        """Advance every vehicle by one tick.

        Args:
            dt: Tick length in seconds.
            now: Simulation time at the end of the tick, used as crossing timestamp.
        """
        active = [vehicle for vehicle in self.vehicles if vehicle.alive]
        if not active:
            return

        outer = max(vehicle.outer_radius for vehicle in active)
        tree = QuadTree.from_points(active, _position_of, margin=outer)

        neighbors: Dict[Vehicle, List[Vehicle]] = {}
        raw_limiting: Dict[Vehicle, Vehicle] = {}
        plans: Dict[Vehicle, Negotiation] = {}

        for vehicle in active:
            vehicle.compute_target_speed()
            peers = tree.query_radius(vehicle.position, vehicle.outer_radius, _position_of)
            neighbors[vehicle] = peers
            plan = vehicle.negotiate(peers)
            raw_limiting[vehicle] = plan.limiting_peer

            # keep ignoring a peer only while it is still the one holding us back
            if vehicle.ignored_peer is not None and plan.limiting_peer is vehicle.ignored_peer:
                plan = vehicle.negotiate(peers, ignore=vehicle.ignored_peer)
            else:
                vehicle.ignored_peer = None
            plans[vehicle] = plan

        for vehicle in active:
            peer = raw_limiting[vehicle]
            if peer is None or vehicle.ignored_peer is not None:
                continue
            if raw_limiting.get(peer) is vehicle and self._wins_deadlock(vehicle, peer):
                vehicle.ignored_peer = peer
                plans[vehicle] = vehicle.negotiate(neighbors[vehicle], ignore=peer)
                self.logger.debug(f'Deadlock between {vehicle.plate} and {peer.plate}: {vehicle.plate} proceeds')

        for vehicle in active:
            vehicle.limiting_peer = plans[vehicle].limiting_peer
            vehicle.apply_speed(plans[vehicle], dt)

        checkpoints = self.network.get_all_checkpoints()
        for vehicle in active:
            previous = vehicle.position
            arrived = vehicle.advance(dt)
            self._detect_checkpoints(vehicle, previous, checkpoints, now)

            vehicle.lifetime += dt
            if arrived:
                self._finish(vehicle, DESTINATION_REACHED)
            elif vehicle.lifetime > self.maximum_lifetime:
                self.logger.info(f'Vehicle {vehicle.plate} exceeded its lifetime of {self.maximum_lifetime}s')
                self._finish(vehicle, LIFETIME_EXPIRED)

    @staticmethod
    def _wins_deadlock(vehicle: Vehicle, peer: Vehicle) -> bool:
        return (vehicle.spawn_time, vehicle.id) < (peer.spawn_time, peer.id)

    def _detect_checkpoints(self, vehicle: Vehicle, previous, checkpoints: List[Checkpoint], now: float):
        """Report every checkpoint volume the vehicle entered during this tick.

        The stretch between the previous and the new position is sampled at half
        the thinnest checkpoint depth so no volume is stepped over.
        """
        if not checkpoints:
            vehicle.inside_checkpoints = set()
            return

        gap = min(cp.size[1] for cp in checkpoints) / 2
        points = [previous] + sample_segment(previous, vehicle.position, gap)

        entered = []
        for point in points:
            for checkpoint in checkpoints:
                if checkpoint.id in vehicle.inside_checkpoints or checkpoint in entered:
                    continue
                if checkpoint.contains(point):
                    entered.append(checkpoint)

        vehicle.inside_checkpoints = {cp.id for cp in checkpoints if cp.contains(vehicle.position)}

        for checkpoint in entered:
            self._handle_crossing(vehicle, checkpoint, now)

    def _handle_crossing(self, vehicle: Vehicle, checkpoint: Checkpoint, now: float):
        vehicle.on_checkpoint_passed(checkpoint, self.network)
        self.network.report_checkpoint_pass(vehicle, checkpoint.id, now)
        for listener in list(self._crossing_listeners):
            try:
                listener(vehicle, checkpoint, now)
            except Exception as e:
                self.logger.error(f'Crossing listener failed for {vehicle.plate} at {checkpoint.id}: '
                                  f'{type(e).__name__}: {e}', exc_info=True)

    def _finish(self, vehicle: Vehicle, topic: str):
        vehicle.destroy()
        if vehicle in self.vehicles:
            self.vehicles.remove(vehicle)
        self.event_bus.publish(topic, vehicle=vehicle)
        self.event_bus.publish(VEHICLE_DESTROYED, vehicle=vehicle)
