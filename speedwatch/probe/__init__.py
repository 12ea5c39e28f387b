"""Probe calibration package: pooled probe runs for route discovery and timing."""

from speedwatch.probe.probe_manager import (CalibrationRequest,
                                            CalibrationResult, ProbeManager,
                                            ProbePool)
from speedwatch.probe.probe_run import ProbeRun

__all__ = ['ProbeManager', 'ProbePool', 'ProbeRun', 'CalibrationRequest', 'CalibrationResult']
