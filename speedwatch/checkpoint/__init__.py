"""Checkpoint package: checkpoint volumes, timed connections and the checkpoint network."""

from speedwatch.checkpoint.checkpoint import (Checkpoint, place_checkpoint,
                                              road_direction)
from speedwatch.checkpoint.checkpoint_network import (CheckpointNetwork,
                                                      PassDecision)
from speedwatch.checkpoint.connection import SPEED_CONVERSION, Connection
from speedwatch.checkpoint.violation_log import ViolationLog

__all__ = [
    'Checkpoint',
    'CheckpointNetwork',
    'Connection',
    'PassDecision',
    'SPEED_CONVERSION',
    'ViolationLog',
    'place_checkpoint',
    'road_direction',
]
