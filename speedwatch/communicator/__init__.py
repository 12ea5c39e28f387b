"""Communicator package: bridge between the simulation and the enforcement mirror."""

from speedwatch.communicator.communicator import EnforcementCommunicator

__all__ = ['EnforcementCommunicator']
