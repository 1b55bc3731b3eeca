"""
response/pipeline.py

Single entry point for the post-activation response sequence.

The session state machine (or a "send test alert" action) only needs to
call run_escalation(). It wraps one EscalationDispatcher pass with status
reporting and guarantees a report comes back even if the dispatcher
itself blows up, so an emergency session can always reach Completed.

Usage
-----
    from response.pipeline import run_escalation

    report = run_escalation(
        dispatcher,
        on_status=lambda msg: print(msg),  # hook this to your UI
    )

    print(report.summary)        # "Alerts sent to 2 of 3 contacts"
    print(report.location_text)  # "Lat: ..., Lon: ..." | "Location unavailable"
    print(report.results)        # list[ContactChannelResult]
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable

from response.emergency_alert import (
    ContactChannelResult,
    EscalationDispatcher,
    EscalationReport,
)

logger = logging.getLogger(__name__)


def run_escalation(
    dispatcher: EscalationDispatcher,
    on_status: Callable[[str], None] | None = None,
    test_mode: bool = False,
) -> EscalationReport:
    """
    Run one escalation pass.

    Parameters
    ----------
    dispatcher : EscalationDispatcher
        Configured channels, contacts and location resolver.

    on_status : Callable[[str], None] | None
        Optional callback invoked at each stage with a human-readable
        status string. If None, status messages only go to the logger.

    test_mode : bool
        If True, every message is labelled as a test.

    Returns
    -------
    EscalationReport
        Never raises; unexpected errors produce a report with a single
        failed entry.
    """
    def status(msg: str) -> None:
        """Emit a status update to the callback and the logger."""
        logger.info("[STATUS] %s", msg)
        if on_status:
            try:
                on_status(msg)
            except Exception:
                logger.error("Status callback failed", exc_info=True)

    status("Contacting emergency contacts...")

    try:
        report = dispatcher.dispatch(test_mode=test_mode)

    except Exception as exc:
        msg = f"Alert failed — unexpected error: {exc}"
        status(msg)
        logger.error(msg, exc_info=True)

        return EscalationReport(
            results=[
                ContactChannelResult(
                    contact_id="*",
                    channel="dispatch",
                    delivered=False,
                    error=str(exc),
                )
            ],
            contacts=len(dispatcher.config.contacts),
            test_mode=test_mode,
            finished_at=datetime.now().isoformat(),
        )

    if report.location is None and dispatcher.config.location_sharing_enabled:
        status("Location unavailable — alerts sent without coordinates.")
    status(f"Alert sequence complete — {report.summary}.")
    return report
