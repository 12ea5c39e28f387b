"""Agent package: vehicles driving the road graph."""

from speedwatch.agent.base_agent import BaseAgent
from speedwatch.agent.vehicle import (Negotiation, Vehicle, VehicleBehavior,
                                      generate_plate)

__all__ = ['BaseAgent', 'Negotiation', 'Vehicle', 'VehicleBehavior', 'generate_plate']
