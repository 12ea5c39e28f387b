"""Traffic managers: per-tick vehicle updates and vehicle spawning."""

from speedwatch.traffic.manager.spawn_manager import (SpawnerState,
                                                      SpawnManager,
                                                      TestResult,
                                                      WeightedPoint)
from speedwatch.traffic.manager.vehicle_manager import VehicleManager

__all__ = ['SpawnManager', 'SpawnerState', 'TestResult', 'VehicleManager', 'WeightedPoint']
