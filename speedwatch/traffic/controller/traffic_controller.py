"""Traffic controller module for coordinating the enforcement simulation.

This module provides the main controller: it builds every service explicitly
(road graph, event bus, probe manager, checkpoint network, vehicle and spawn
managers), loads the topology, owns the simulation clock and runs the tick
loop.
"""
import asyncio
import random
import traceback

from speedwatch.agent.vehicle import Vehicle
from speedwatch.checkpoint.checkpoint import Checkpoint, place_checkpoint
from speedwatch.checkpoint.checkpoint_network import CheckpointNetwork
from speedwatch.checkpoint.violation_log import ViolationLog
from speedwatch.config import Config
from speedwatch.events import EventBus
from speedwatch.map.map import RoadGraph
from speedwatch.probe.probe_manager import ProbeManager
from speedwatch.traffic.manager.spawn_manager import SpawnManager, WeightedPoint
from speedwatch.traffic.manager.vehicle_manager import VehicleManager
from speedwatch.utils.load_json import load_json
from speedwatch.utils.logger import Logger
from speedwatch.utils.vector import Vector


class TrafficController:
    """Main controller class for the enforcement simulation.

    A tick (`step`) spawns due vehicles, advances every vehicle and flushes the
    event bus. `simulation` repeats ticks and yields to the event loop between
    them so that probe tasks make progress.
    """

    def __init__(self, config: Config, map: str = None, seed: int = None, dt: float = None):
        """Initialize the traffic controller with configuration.

        Args:
            config: Configuration object containing all simulation parameters.
            map: Path to the topology file; `map.path` from the config when omitted.
            seed: Seed for the random number generator.
            dt: Time step for the simulation.
        """
        self.config = config
        self.map = map if map is not None else config.get('map.path', None)
        self.seed = seed if seed is not None else config['speedwatch.seed']
        self.dt = dt if dt is not None else config['speedwatch.dt']
        self.communicator = None
        self.violation_log = None

        Logger.configure_from(config)
        self.logger = Logger.get_logger('TrafficController')

        self.clock = 0.0
        self.tick = 0
        self._running = False

        self._build_services()
        if self.map:
            self.load_topology_from_file(self.map)

        self.logger.info(f'TrafficController initialized (dt={self.dt}, seed={self.seed})')

    def _build_services(self):
        self.rng = random.Random(self.seed)
        self.graph = RoadGraph()
        self.event_bus = EventBus()
        self.probe_manager = ProbeManager(self.graph, self.config)
        self.network = CheckpointNetwork(self.graph, self.probe_manager, self.event_bus, self.config)
        self.vehicle_manager = VehicleManager(self.network, self.probe_manager, self.event_bus, self.config)
        self.spawn_manager = SpawnManager(self.graph, self.network, self.probe_manager, self.vehicle_manager,
                                          self.event_bus, self.config, rng=self.rng)

    # Initialization
    def init_communicator(self, communicator):
        """Forward crossings to an enforcement mirror and answer its distance queries.

        Args:
            communicator: EnforcementCommunicator bound to this controller's network.
        """
        self.communicator = communicator
        communicator.attach(self.vehicle_manager)
        communicator.serve_distance_requests()

    def disconnect_communicator(self):
        if self.communicator is not None:
            self.communicator.disconnect()
            self.communicator = None

    def init_violation_log(self, path: str = None) -> ViolationLog:
        path = path or self.config['violation_log.path']
        self.violation_log = ViolationLog(self.event_bus, path)
        return self.violation_log

    def load_topology_from_file(self, file_path: str):
        """Load waypoints, checkpoints, connections and spawn points from a JSON file."""
        self.logger.info(f'Loading topology from file: {file_path}')
        self.load_topology(load_json(file_path))

    def load_topology(self, data: dict):
        """Load a topology dictionary.

        Checkpoints with a position are created as given and locked; checkpoints
        without one are placed across the road at their first anchor. Optional
        'start_points' and 'end_points' lists ({'id', 'weight'}) select spawn
        endpoints; by default vehicles start where no road enters and end where
        no road leaves.

        Args:
            data: Dictionary with 'waypoints', 'checkpoints' and 'connections' lists.
        """
        self.graph.initialize_from_dict(data)

        for entry in data.get('checkpoints', []):
            anchors = [self.graph.get_waypoint(a) for a in entry.get('anchors', [])]
            anchors = [a for a in anchors if a is not None]
            if 'position' in entry:
                checkpoint = Checkpoint(entry['id'], Vector(entry['position']), anchors,
                                        size=entry.get('size', self.config['checkpoint.size']),
                                        yaw=entry.get('yaw', 0.0))
                checkpoint.lock_placement()
            elif anchors:
                checkpoint = place_checkpoint(entry['id'], anchors[0], self.graph, self.config)
            else:
                self.logger.warning(f"Checkpoint {entry['id']} has neither position nor anchors, skipped")
                continue
            self.network.register_checkpoint(checkpoint)

        for entry in data.get('connections', []):
            self.network.create_connection(entry['from'], entry['to'], entry['speed_limit'])

        self.spawn_manager.set_spawn_points(self._weighted_points(data.get('start_points'), is_start=True),
                                            self._weighted_points(data.get('end_points'), is_start=False))
        self.logger.info(f'Topology loaded: {self.graph}, {self.network}')

    def _weighted_points(self, entries, is_start: bool):
        if entries:
            return [WeightedPoint(self.graph.get_waypoint(e['id']), e.get('weight', 10.0))
                    for e in entries if self.graph.get_waypoint(e['id']) is not None]

        waypoints = list(self.graph.waypoints.values())
        if is_start:
            entered = {n.id for wp in waypoints for n in wp.neighbors}
            chosen = [wp for wp in waypoints if wp.id not in entered]
        else:
            chosen = [wp for wp in waypoints if not wp.neighbors]
        return [WeightedPoint(wp) for wp in (chosen or waypoints)]

    # Reset
    def reset(self, map: str = None):
        """Drop all vehicles and services and reload the topology.

        Args:
            map: Path to a new topology file; the current one when omitted.
        """
        if map is not None:
            self.map = map
        self.vehicle_manager.clear()
        self.spawn_manager.close()
        if self.violation_log is not None:
            self.violation_log.close()
            self.violation_log = None
        self.disconnect_communicator()
        Vehicle.reset_id_counter()

        self.clock = 0.0
        self.tick = 0
        self._build_services()
        if self.map:
            self.load_topology_from_file(self.map)
        self.logger.info('Simulation reset')

    def stop_simulation(self):
        """Stop the simulation loop after the current tick."""
        self.logger.info('Stopping simulation')
        self._running = False

    # Simulation
    def step(self, dt: float = None):
        """Advance the simulation by one tick."""
        dt = self.dt if dt is None else dt
        self.clock += dt
        self.tick += 1
        self.spawn_manager.update(dt, self.clock)
        self.vehicle_manager.update_vehicles(dt, self.clock)
        self.event_bus.flush()

    async def simulation(self, max_ticks: int = None, realtime: bool = False):
        """Run the simulation until stopped or `max_ticks` ticks have run.

        Args:
            max_ticks: Tick limit; `speedwatch.max_ticks` from the config when omitted,
                unlimited when that is null too.
            realtime: Sleep `dt` between ticks instead of only yielding.
        """
        max_ticks = max_ticks if max_ticks is not None else self.config.get('speedwatch.max_ticks', None)
        self._running = True
        try:
            self.logger.info('Starting simulation')
            while self._running:
                self.step()
                await asyncio.sleep(self.dt if realtime else 0)
                if max_ticks is not None and self.tick >= max_ticks:
                    break
        except (KeyboardInterrupt, asyncio.CancelledError):
            self.logger.info('Simulation interrupted')
            raise
        except Exception as e:
            self.logger.error(f'Error occurred in {__file__}:{e.__traceback__.tb_lineno}')
            self.logger.error(f'Error type: {type(e).__name__}')
            self.logger.error(f'Error message: {str(e)}')
            self.logger.error('Error traceback:')
            self.logger.error(traceback.format_exc())
        finally:
            self._running = False
            self.logger.info(f'Simulation stopped at t={self.clock:.2f}s after {self.tick} ticks')

    @property
    def vehicles(self):
        """Get all vehicles in the simulation.

        Returns:
            List of all vehicle objects.
        """
        return self.vehicle_manager.vehicles

    @property
    def checkpoints(self):
        return self.network.get_all_checkpoints()

    @property
    def connections(self):
        return self.network.get_connections()
