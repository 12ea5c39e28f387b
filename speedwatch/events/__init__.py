"""Event channel connecting the network, the vehicles and external collaborators."""

from speedwatch.events.event_bus import (CHECKPOINT_TRIGGERED,
                                         DESTINATION_REACHED, LIFETIME_EXPIRED,
                                         NETWORK_CHANGED, VEHICLE_DESTROYED,
                                         VIOLATION_DETECTED, EventBus,
                                         Subscription)

__all__ = [
    'EventBus',
    'Subscription',
    'NETWORK_CHANGED',
    'VIOLATION_DETECTED',
    'CHECKPOINT_TRIGGERED',
    'VEHICLE_DESTROYED',
    'DESTINATION_REACHED',
    'LIFETIME_EXPIRED',
]
