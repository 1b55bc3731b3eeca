# emergency alerting for the fall monitor.

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Mapping, Protocol, Sequence

from dotenv import load_dotenv
from twilio.rest import Client as TwilioClient
from twilio.base.exceptions import TwilioRestException

from response.location import Location, LocationResolver, format_location

# Logging
logger = logging.getLogger(__name__)

WHATSAPP = "whatsapp"
SMS      = "sms"
CALL     = "call"

DEFAULT_CHANNEL_PRIORITY = (WHATSAPP, SMS)   # richer channel first


class DeliveryError(Exception):
    """A channel could not deliver one message. Never fatal to the session."""


# Data classes
@dataclass
class EmergencyContact:
    name: str # display name used in log messages and the spoken call message.
    phone: str # phone number in E.164 format (e.g. "+12125551234").
    is_primary: bool = False # the contact who gets the direct call.
    whatsapp_enabled: bool = True # per-contact channel preferences
    sms_enabled: bool = True
    relationship: str = ""
    contact_id: str = "" # defaults to the phone number

    def __post_init__(self):
        if not self.contact_id:
            self.contact_id = self.phone

    def is_valid(self) -> bool:
        digits = re.sub(r"\D", "", self.phone)
        return bool(self.name.strip()) and len(digits) >= 7

    def accepts(self, channel: str) -> bool:
        if channel == WHATSAPP:
            return self.whatsapp_enabled
        if channel == SMS:
            return self.sms_enabled
        return True


@dataclass
class AlertConfig:
    user_name: str # the monitored user's name, used in every message.
    contacts: list[EmergencyContact] # everyone to notify
    channel_priority: tuple[str, ...] = DEFAULT_CHANNEL_PRIORITY
    whatsapp_enabled: bool = True # global channel switches
    sms_enabled: bool = True
    auto_call_enabled: bool = False # place a direct call to the primary contact
    location_sharing_enabled: bool = True

    @property
    def primary_contact(self) -> EmergencyContact | None:
        for contact in self.contacts:
            if contact.is_primary:
                return contact
        return None

    def channel_enabled(self, channel: str) -> bool:
        if channel == WHATSAPP:
            return self.whatsapp_enabled
        if channel == SMS:
            return self.sms_enabled
        return True


@dataclass
class ContactChannelResult:
    contact_id: str # which contact the attempt was for
    channel: str # "whatsapp" | "sms" | "call"
    delivered: bool # whether the channel accepted the message
    error: str | None = None # error message if delivered is False, otherwise None.
    timestamp: str = field(default_factory=lambda: datetime.now().isoformat()) # when the attempt was made


@dataclass
class EscalationReport:
    """
    Outcome of one escalation pass.

    results       : one entry per channel attempt (and the call, if placed)
    location      : fix used in the message, or None
    location_text : what the message said about location
    contacts      : how many contacts were configured
    """
    results: list[ContactChannelResult] = field(default_factory=list)
    location: Location | None = None
    location_text: str = ""
    contacts: int = 0
    test_mode: bool = False
    started_at: str = field(default_factory=lambda: datetime.now().isoformat())
    finished_at: str | None = None

    @property
    def delivered_contacts(self) -> set[str]:
        return {r.contact_id for r in self.results if r.delivered and r.channel != CALL}

    def delivered_via(self, contact_id: str) -> str | None:
        for r in self.results:
            if r.contact_id == contact_id and r.delivered and r.channel != CALL:
                return r.channel
        return None

    @property
    def summary(self) -> str:
        return f"Alerts sent to {len(self.delivered_contacts)} of {self.contacts} contacts"


# Collaborator contracts
class MessageChannel(Protocol):
    name: str

    def send(self, address: str, text: str) -> None:
        """Deliver `text` to `address`; raise DeliveryError on failure."""


class CallChannel(Protocol):
    def call(self, address: str) -> None:
        """Start a call; failures raise, success is not awaited."""


# Main class
class EscalationDispatcher:
    """
    Runs the alert fan-out once a session activates.

    Usage
    -----
        config = AlertConfig(
            user_name="Margaret",
            contacts=[
                EmergencyContact("Susan", "+12125551234", is_primary=True),
                EmergencyContact("David", "+13105559876", whatsapp_enabled=False),
            ],
        )
        dispatcher = EscalationDispatcher(
            config,
            channels={"whatsapp": whatsapp, "sms": sms},
            caller=voice,
            location=LocationResolver(provider),
        )
        report = dispatcher.dispatch()

    Each contact walks the channel priority list until one channel
    delivers. A failure on one channel or one contact never stops the
    others, and nothing is retried.
    """

    def __init__(
        self,
        config: AlertConfig,
        channels: Mapping[str, MessageChannel],
        caller: CallChannel | None = None,
        location: LocationResolver | None = None,
    ):
        self.config   = config
        self.channels = dict(channels)
        self.caller   = caller
        self.location = location

    # Public API
    def dispatch(self, test_mode: bool = False) -> EscalationReport:
        """
        Execute the full alert sequence:
            1. Resolve location (bounded wait, placeholder on failure).
            2. Message every contact, falling back through the channel list.
            3. Call the primary contact if auto-call is enabled.

        Returns
        -------
        EscalationReport
            Per-contact, per-channel results. Returned even if nothing was delivered.
        """
        report = EscalationReport(contacts=len(self.config.contacts), test_mode=test_mode)

        logger.warning(
            "ALERT TRIGGERED | user=%s | test=%s | contacts=%d",
            self.config.user_name,
            test_mode,
            len(self.config.contacts),
        )

        # --- 1. Location ---
        location = self._resolve_location()
        report.location      = location
        report.location_text = format_location(location)

        message = build_alert_message(
            self.config.user_name,
            location,
            datetime.now(),
            test_mode=test_mode,
        )

        # --- 2. Message every contact ---
        if not self.config.contacts:
            logger.warning("No emergency contacts configured")
        for contact in self.config.contacts:
            report.results.extend(self._notify_contact(contact, message))

        # --- 3. Direct call ---
        if self.config.auto_call_enabled:
            call_result = self._call_primary()
            if call_result is not None:
                report.results.append(call_result)

        report.finished_at = datetime.now().isoformat()
        logger.info("Alert sequence complete: %s.", report.summary)
        return report

    # -----------------------------------------------------------------------
    # Internal helpers
    # -----------------------------------------------------------------------

    def _resolve_location(self) -> Location | None:
        if not self.config.location_sharing_enabled or self.location is None:
            return None
        return self.location.resolve()

    def _notify_contact(self, contact: EmergencyContact, message: str) -> list[ContactChannelResult]:
        """Try each enabled channel in priority order until one delivers."""
        results: list[ContactChannelResult] = []

        for channel_name in self.config.channel_priority:
            if not (self.config.channel_enabled(channel_name) and contact.accepts(channel_name)):
                continue
            channel = self.channels.get(channel_name)
            if channel is None:
                continue

            result = self._attempt(contact, channel_name, channel, message)
            results.append(result)
            if result.delivered:
                break

        if not results:
            logger.warning("No usable channel for %s (%s)", contact.name, contact.contact_id)
        elif not results[-1].delivered:
            logger.error("All channels failed for %s (%s)", contact.name, contact.contact_id)
        return results

    def _attempt(
        self,
        contact: EmergencyContact,
        channel_name: str,
        channel: MessageChannel,
        message: str,
    ) -> ContactChannelResult:
        try:
            channel.send(contact.phone, message)
            logger.info("Alert delivered | to=%s | channel=%s", contact.phone, channel_name)
            return ContactChannelResult(contact.contact_id, channel_name, delivered=True)

        except DeliveryError as exc:
            logger.error("Alert failed | to=%s | channel=%s | error=%s", contact.phone, channel_name, exc)
            return ContactChannelResult(contact.contact_id, channel_name, delivered=False, error=str(exc))

        except Exception as exc:
            logger.error(
                "Alert unexpected error | to=%s | channel=%s | error=%s",
                contact.phone,
                channel_name,
                str(exc),
                exc_info=True,
            )
            return ContactChannelResult(contact.contact_id, channel_name, delivered=False, error=str(exc))

    def _call_primary(self) -> ContactChannelResult | None:
        primary = self.config.primary_contact
        if primary is None:
            logger.warning("No primary emergency contact configured")
            return None
        if self.caller is None:
            logger.warning("Auto-call enabled but no calling channel configured")
            return None

        try:
            self.caller.call(primary.phone)
            logger.info("Emergency call initiated | to=%s", primary.phone)
            return ContactChannelResult(primary.contact_id, CALL, delivered=True)
        except Exception as exc:
            logger.error("Emergency call failed | to=%s | error=%s", primary.phone, exc)
            return ContactChannelResult(primary.contact_id, CALL, delivered=False, error=str(exc))


def build_alert_message(
    user_name: str,
    location: Location | None,
    when: datetime,
    test_mode: bool = False,
) -> str:
    """Text sent over every messaging channel."""
    prefix = "[TEST] This is a test of the emergency alert system. " if test_mode else ""
    lines = [
        f"{prefix}EMERGENCY ALERT: {user_name} may have fallen and needs assistance.",
        f"Time: {when.strftime('%Y-%m-%d %H:%M:%S')}",
        f"Location: {format_location(location)}",
    ]
    if location is not None:
        lines.append(f"Map: {location.maps_link}")
    lines.append("Please check on them immediately or call emergency services if you cannot reach them.")
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# Twilio channels
# ---------------------------------------------------------------------------

class TwilioSmsChannel:
    name = SMS

    def __init__(self, client: TwilioClient, from_number: str):
        self._client      = client
        self._from_number = from_number

    def send(self, address: str, text: str) -> None:
        try:
            message = self._client.messages.create(
                body=text,
                from_=self._from_number,
                to=address,
            )
        except TwilioRestException as exc:
            raise DeliveryError(exc.msg) from exc
        logger.info("SMS sent | to=%s | sid=%s", address, message.sid)


class TwilioWhatsAppChannel(TwilioSmsChannel):
    """Same API as SMS; Twilio routes it over WhatsApp via the address prefix."""

    name = WHATSAPP

    def send(self, address: str, text: str) -> None:
        try:
            message = self._client.messages.create(
                body=text,
                from_=_whatsapp_address(self._from_number),
                to=_whatsapp_address(address),
            )
        except TwilioRestException as exc:
            raise DeliveryError(exc.msg) from exc
        logger.info("WhatsApp message sent | to=%s | sid=%s", address, message.sid)


class TwilioVoiceCaller:
    """
    Places a voice call that reads the alert aloud.

    The TwiML says the message twice with a one-second pause between
    the two readings.
    """

    def __init__(self, client: TwilioClient, from_number: str, user_name: str, test_mode: bool = False):
        self._client      = client
        self._from_number = from_number
        self.user_name    = user_name
        self.test_mode    = test_mode

    def call(self, address: str) -> None:
        try:
            call = self._client.calls.create(
                twiml=self._build_twiml(),
                from_=self._from_number,
                to=address,
            )
        except TwilioRestException as exc:
            raise DeliveryError(exc.msg) from exc
        logger.info("Call placed | to=%s | sid=%s", address, call.sid)

    def _build_twiml(self) -> str:
        test_prefix = "This is a test of the emergency alert system. " if self.test_mode else ""

        message = (
            f"{test_prefix}"
            f"This is an automated alert. "
            f"{self.user_name} may have fallen and did not cancel the alert. "
            f"Please check on them immediately and call "
            f"emergency services if needed."
        )

        return (
            f'<Response>'
            f'<Say voice="alice">{message}</Say>'
            f'<Pause length="1"/>'
            f'<Say voice="alice">{message}</Say>'
            f'</Response>'
        )


class ConsoleChannel:
    """
    Prints messages instead of sending them. Used for dry runs and demos;
    *** no real message is delivered ***
    """

    def __init__(self, name: str):
        self.name = name

    def send(self, address: str, text: str) -> None:
        print(
            f"\n"
            f"{'=' * 60}\n"
            f"[{self.name.upper()} — DRY RUN] to {address}\n"
            f"{'=' * 60}\n"
            f"{text}\n"
            f"{'=' * 60}\n"
        )

    def call(self, address: str) -> None:
        print(f"[{self.name.upper()} — DRY RUN] calling {address}")


def build_twilio_dispatcher(
    config: AlertConfig,
    location: LocationResolver | None = None,
    dotenv_path: str | None = None,
) -> EscalationDispatcher:
    """
    Create a dispatcher with Twilio WhatsApp, SMS and voice channels.

    Credentials come from the environment (a .env file is loaded first):
    TWILIO_ACCOUNT_SID, TWILIO_AUTH_TOKEN, TWILIO_FROM_NUMBER and,
    optionally, TWILIO_WHATSAPP_FROM (defaults to TWILIO_FROM_NUMBER).

    Raises EnvironmentError if a required variable is missing.
    """
    load_dotenv(dotenv_path=dotenv_path)

    sid         = os.environ.get("TWILIO_ACCOUNT_SID", "")
    token       = os.environ.get("TWILIO_AUTH_TOKEN", "")
    from_number = os.environ.get("TWILIO_FROM_NUMBER", "")

    # Validate credentials before doing anything else
    missing = [
        name for name, val in [
            ("TWILIO_ACCOUNT_SID",  sid),
            ("TWILIO_AUTH_TOKEN",   token),
            ("TWILIO_FROM_NUMBER",  from_number),
        ]
        if not val
    ]
    if missing:
        raise EnvironmentError(
            f"Missing required .env variable(s): {', '.join(missing)}"
        )

    whatsapp_from = os.environ.get("TWILIO_WHATSAPP_FROM", "") or from_number

    logger.info("Twilio credentials loaded | SID=%s...", sid[:5])
    client = TwilioClient(sid, token)

    channels: dict[str, MessageChannel] = {
        WHATSAPP: TwilioWhatsAppChannel(client, whatsapp_from),
        SMS:      TwilioSmsChannel(client, from_number),
    }
    caller = TwilioVoiceCaller(client, from_number, config.user_name)
    return EscalationDispatcher(config, channels, caller=caller, location=location)


def _whatsapp_address(number: str) -> str:
    return number if number.startswith("whatsapp:") else f"whatsapp:{number}"
