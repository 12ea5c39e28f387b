"""Remote enforcement mirror: decision mirror, congestion estimation and distance queries."""

from speedwatch.enforcement.congestion import (CongestionMonitor,
                                               TraversalLog, TraversalSample)
from speedwatch.enforcement.distance_query import DistanceQueryBroker
from speedwatch.enforcement.remote_mirror import (CHECKED, CONNECTION_ADDED,
                                                  CONNECTION_UPDATED,
                                                  NO_CONNECTION, NO_PRIOR,
                                                  NODE_TRIGGERED, NOT_FOUND,
                                                  OUT_OF_ORDER,
                                                  VIOLATION_ADDED,
                                                  CrossingDecision,
                                                  EnforcementMirror,
                                                  MirrorConnection,
                                                  MirrorNode)
from speedwatch.enforcement.violation_store import (ViolationRecord,
                                                    ViolationStore)

__all__ = [
    'CHECKED',
    'CONNECTION_ADDED',
    'CONNECTION_UPDATED',
    'CongestionMonitor',
    'CrossingDecision',
    'DistanceQueryBroker',
    'EnforcementMirror',
    'MirrorConnection',
    'MirrorNode',
    'NODE_TRIGGERED',
    'NOT_FOUND',
    'NO_CONNECTION',
    'NO_PRIOR',
    'OUT_OF_ORDER',
    'TraversalLog',
    'TraversalSample',
    'VIOLATION_ADDED',
    'ViolationRecord',
    'ViolationStore',
]
