from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

logger = logging.getLogger(__name__)

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
SERVER_RE = re.compile(
    r"^[a-zA-Z0-9]([a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?(\.[a-zA-Z0-9]([a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?)*$"
)


class EmailChannel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore", coerce_numbers_to_str=True)

    type: Literal["email"] = "email"
    enabled: bool = False
    email: str = ""
    password: str = ""
    incoming_server: str = Field(default="", alias="incomingServer")
    outgoing_server: str = Field(default="", alias="outgoingServer")
    incoming_port: str = Field(default="993", alias="incomingPort")
    outgoing_port: str = Field(default="587", alias="outgoingPort")


class WhatsappChannel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore", coerce_numbers_to_str=True)

    type: Literal["whatsapp"] = "whatsapp"
    enabled: bool = False
    phone_number: str | None = Field(default=None, alias="phoneNumber")


class OtherChannel(BaseModel):
    model_config = ConfigDict(extra="allow")

    type: Literal["other"] = "other"
    name: str = ""
    enabled: bool = False


Channel = Annotated[Union[EmailChannel, WhatsappChannel, OtherChannel], Field(discriminator="type")]
_CHANNEL_ADAPTER: TypeAdapter[Channel] = TypeAdapter(Channel)


@dataclass(slots=True)
class NormalizedChannels:
    channels: list[EmailChannel | WhatsappChannel | OtherChannel] = field(default_factory=list)
    issues: list[str] = field(default_factory=list)

    @property
    def email(self) -> EmailChannel | None:
        return _prefer_enabled([c for c in self.channels if isinstance(c, EmailChannel)])

    @property
    def whatsapp(self) -> WhatsappChannel | None:
        return _prefer_enabled([c for c in self.channels if isinstance(c, WhatsappChannel)])

    @property
    def has_email_channel(self) -> bool:
        return self.email is not None and self.email.enabled

    @property
    def has_whatsapp_channel(self) -> bool:
        return self.whatsapp is not None and self.whatsapp.enabled

    @property
    def has_any_channel(self) -> bool:
        return self.has_email_channel or self.has_whatsapp_channel


@dataclass(slots=True, frozen=True)
class PrerequisiteCheck:
    is_valid: bool
    reason: str
    errors: tuple[str, ...] = ()


def normalize_channels(raw: Any) -> NormalizedChannels:
    """Normalize site channel settings into one list of typed channels.

    Settings arrive either as a list (``[{"type": "email", ...}]``) or as an
    object keyed by channel name (``{"email": {...}, "whatsapp": {...}}``).
    A ``{"channels": ...}`` wrapper, as stored in the settings row, is unwrapped.
    """
    result = NormalizedChannels()
    if raw is None:
        return result
    if isinstance(raw, dict) and "channels" in raw and len(raw) == 1:
        raw = raw["channels"]

    if isinstance(raw, list):
        entries = [(None, item) for item in raw]
    elif isinstance(raw, dict):
        entries = list(raw.items())
    else:
        result.issues.append(f"channels settings are neither a list nor an object: {type(raw).__name__}")
        return result

    for key, item in entries:
        if not isinstance(item, dict):
            result.issues.append(f"channel entry {key or '?'} is not an object")
            continue
        declared = item.get("type") or key
        channel_type = str(declared).strip().lower() if declared else ""
        payload = {name: value for name, value in item.items() if value is not None}
        if channel_type in {"email", "whatsapp"}:
            payload["type"] = channel_type
        else:
            payload["type"] = "other"
            payload.setdefault("name", channel_type)
        try:
            result.channels.append(_CHANNEL_ADAPTER.validate_python(payload))
        except ValidationError as exc:
            result.issues.append(f"channel {channel_type or '?'} is malformed: {exc.error_count()} error(s)")
    if result.issues:
        logger.debug("channel normalization issues: %s", result.issues)
    return result


def validate_email_channel(channel: EmailChannel | None) -> PrerequisiteCheck:
    if channel is None:
        return PrerequisiteCheck(False, "No email configuration found", ("Email configuration is missing",))
    if not channel.enabled:
        return PrerequisiteCheck(False, "Email sync is disabled", ("Email sync is disabled in configuration",))

    errors: list[str] = []
    if not channel.email.strip():
        errors.append("Email address is missing")
    elif not EMAIL_RE.match(channel.email.strip()):
        errors.append("Email address format is invalid")

    if not channel.password.strip():
        errors.append("Email password is missing")

    for label, server in (("Incoming", channel.incoming_server), ("Outgoing", channel.outgoing_server)):
        if not server.strip():
            errors.append(f"{label} server is missing")
        elif not SERVER_RE.match(server.strip()):
            errors.append(f"{label} server format is invalid")

    for label, port in (("Incoming", channel.incoming_port), ("Outgoing", channel.outgoing_port)):
        if not str(port).strip():
            errors.append(f"{label} port is missing")
        elif not _valid_port(str(port)):
            errors.append(f"{label} port is invalid")

    if errors:
        return PrerequisiteCheck(False, ", ".join(errors), tuple(errors))
    return PrerequisiteCheck(True, "Email configuration is valid")


def _valid_port(raw: str) -> bool:
    try:
        port = int(raw.strip())
    except ValueError:
        return False
    return 0 < port <= 65535


def _prefer_enabled(channels: list[Any]) -> Any:
    for channel in channels:
        if channel.enabled:
            return channel
    return channels[0] if channels else None
