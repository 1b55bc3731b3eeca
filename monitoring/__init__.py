"""
monitoring
==========
Runs fall detection and emergency response together.

Public API
----------
FallMonitor    — wires DetectionPipeline, AdaptiveSuppressor and the session state machine
MonitorStatus  — snapshot returned by FallMonitor.status()
MonitorConfig  — all settings; load_config() reads config.json + .env
"""

from monitoring.config import MonitorConfig, load_config, load_contacts
from monitoring.service import FallMonitor, MonitorStatus

__all__ = [
    "FallMonitor",
    "MonitorStatus",
    "MonitorConfig",
    "load_config",
    "load_contacts",
]
