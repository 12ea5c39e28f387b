"""Communicator module for interfacing with the remote enforcement mirror.

This module connects the simulation to an EnforcementMirror: it registers the
checkpoints and connections of the network as mirror nodes, forwards every
checkpoint crossing as a fire-and-forget report and answers the mirror's
distance queries from the road graph.
"""
from threading import Lock
from typing import Dict, Optional

from speedwatch.checkpoint.checkpoint import Checkpoint
from speedwatch.enforcement.remote_mirror import (CrossingDecision,
                                                  EnforcementMirror)
from speedwatch.utils.async_utils import schedule
from speedwatch.utils.logger import Logger


class EnforcementCommunicator:
    """Class for communicating with the enforcement mirror.

    Checkpoints are known to the mirror by an external id, the checkpoint id
    unless registered otherwise.
    """

    def __init__(self, mirror: EnforcementMirror, network):
        """Initialize the communicator.

        Args:
            mirror: Mirror receiving the crossing reports.
            network: CheckpointNetwork providing topology and distances.
        """
        self.mirror = mirror
        self.network = network
        self.logger = Logger.get_logger('Communicator')

        self.checkpoint_id_to_external: Dict[int, object] = {}
        self.external_to_checkpoint_id: Dict[object, int] = {}
        self.vehicle_manager = None
        self.reports_sent = 0

        self.lock = Lock()

    ##############################################################
    # Topology
    ##############################################################

    def register_checkpoint(self, checkpoint: Checkpoint, external_id=None):
        """Register a checkpoint as a mirror node.

        Args:
            checkpoint: Checkpoint to register.
            external_id: Id used by the mirror; the checkpoint id when omitted.

        Returns:
            The mirror node.
        """
        external_id = checkpoint.id if external_id is None else external_id
        with self.lock:
            self.checkpoint_id_to_external[checkpoint.id] = external_id
            self.external_to_checkpoint_id[external_id] = checkpoint.id
        return self.mirror.register_node(external_id)

    def get_external_id(self, checkpoint_id: int):
        return self.checkpoint_id_to_external.get(checkpoint_id)

    async def sync_topology(self):
        """Register every checkpoint and mirror every connection with its known distance."""
        for checkpoint in self.network.get_all_checkpoints():
            if checkpoint.id not in self.checkpoint_id_to_external:
                self.register_checkpoint(checkpoint)
        for connection in self.network.get_connections():
            await self.mirror.create_connection(self.get_external_id(connection.from_id),
                                                self.get_external_id(connection.to_id),
                                                distance=connection.distance,
                                                speed_limit=connection.speed_limit)
        self.logger.info(f'Synced {len(self.checkpoint_id_to_external)} checkpoints and '
                         f'{len(self.network.get_connections())} connections to the mirror')

    ##############################################################
    # Crossing reports
    ##############################################################

    def attach(self, vehicle_manager):
        """Forward the crossings of every managed vehicle."""
        self.vehicle_manager = vehicle_manager
        vehicle_manager.add_crossing_listener(self.on_crossing)

    def detach(self):
        if self.vehicle_manager is not None:
            self.vehicle_manager.remove_crossing_listener(self.on_crossing)
            self.vehicle_manager = None

    def on_crossing(self, vehicle, checkpoint: Checkpoint, timestamp: float):
        """Send a crossing report without waiting for the decision."""
        external_id = self.get_external_id(checkpoint.id)
        if external_id is None:
            return None
        return schedule(self.report(vehicle, external_id, timestamp))

    async def report(self, vehicle, external_id, timestamp: float) -> Optional[CrossingDecision]:
        """Report one crossing and mark the vehicle when the mirror flags it."""
        try:
            decision = self.mirror.report_crossing(vehicle.plate, external_id, timestamp)
        except Exception as e:
            self.logger.error(f'Report for {vehicle.plate} at {external_id} failed: {type(e).__name__}: {e}',
                              exc_info=True)
            return None
        self.reports_sent += 1
        if decision.status:
            vehicle.mark_as_speeder()
        return decision

    ##############################################################
    # Distance queries
    ##############################################################

    def serve_distance_requests(self):
        self.mirror.broker.register_driver(self.on_distance_request)

    def on_distance_request(self, request: dict):
        """Answer a mirror distance request with the path distance between two checkpoints."""
        from_id = self.external_to_checkpoint_id.get(request['from_node'])
        to_id = self.external_to_checkpoint_id.get(request['to_node'])
        if from_id is None or to_id is None:
            self.logger.warning(f"Distance request {request['request_id']} names unknown checkpoints")
            return
        distance = self.network.calculate_path_distance(from_id, to_id)
        self.mirror.broker.respond(request['request_id'], distance)

    def disconnect(self):
        self.detach()
        self.mirror.broker.unregister_driver(self.on_distance_request)
