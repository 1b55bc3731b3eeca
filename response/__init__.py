"""
response/__init__.py

Public interface for the response module.

Usage
-----
    from response import EmergencySessionManager, SessionState
    from response import run_escalation, EscalationDispatcher
    from response import AlertConfig, EmergencyContact
"""

from response.emergency_alert import (
    AlertConfig,
    ContactChannelResult,
    DeliveryError,
    EmergencyContact,
    EscalationDispatcher,
    EscalationReport,
    build_alert_message,
    build_twilio_dispatcher,
)
from response.location import FixedLocationProvider, Location, LocationResolver
from response.pipeline import run_escalation
from response.session import EmergencySession, EmergencySessionManager, SessionState

__all__ = [
    # State machine driven by the monitor
    "EmergencySessionManager",
    "EmergencySession",
    "SessionState",
    # Escalation entry point
    "run_escalation",
    "EscalationDispatcher",
    "EscalationReport",
    "ContactChannelResult",
    "DeliveryError",
    "build_alert_message",
    "build_twilio_dispatcher",
    # Config types
    "AlertConfig",
    "EmergencyContact",
    # Location
    "Location",
    "LocationResolver",
    "FixedLocationProvider",
]
