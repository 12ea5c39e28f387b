"""Traffic controller package.

This package provides the controller that builds the simulation services,
owns the simulation clock and runs the tick loop.
"""

from speedwatch.traffic.controller.traffic_controller import TrafficController

__all__ = ['TrafficController']
