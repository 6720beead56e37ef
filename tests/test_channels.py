from outreach_scheduler.schemas.channels import (
    EmailChannel,
    NormalizedChannels,
    normalize_channels,
    validate_email_channel,
)
from outreach_scheduler.schemas.scheduling import SiteIn
from outreach_scheduler.services.records import Site

EMAIL_SETTINGS = {
    "type": "email",
    "enabled": True,
    "email": "ops@example.com",
    "password": "secret",
    "incomingServer": "imap.example.com",
    "outgoingServer": "smtp.example.com",
    "incomingPort": 993,
    "outgoingPort": 587,
}


def test_list_and_keyed_forms_normalize_to_the_same_channels() -> None:
    as_list = normalize_channels([EMAIL_SETTINGS, {"type": "whatsapp", "enabled": True, "phoneNumber": "+100"}])
    keyed = dict(EMAIL_SETTINGS)
    keyed.pop("type")
    as_object = normalize_channels({"email": keyed, "whatsapp": {"enabled": True, "phoneNumber": "+100"}})

    for channels in (as_list, as_object):
        assert channels.has_email_channel
        assert channels.has_whatsapp_channel
        assert channels.email is not None
        assert channels.email.incoming_port == "993"
        assert channels.whatsapp is not None
        assert channels.whatsapp.phone_number == "+100"


def test_settings_wrapper_is_unwrapped() -> None:
    channels = normalize_channels({"channels": [EMAIL_SETTINGS]})
    assert channels.has_email_channel


def test_unknown_and_malformed_entries_are_reported_not_raised() -> None:
    channels = normalize_channels([{"type": "telegram", "enabled": True}, "nonsense"])
    assert not channels.has_any_channel
    assert channels.channels[0].type == "other"
    assert channels.issues == ["channel entry ? is not an object"]


def test_missing_settings_have_no_channels() -> None:
    assert not normalize_channels(None).has_any_channel
    assert normalize_channels(42).issues


def test_valid_email_channel_passes() -> None:
    check = validate_email_channel(normalize_channels([EMAIL_SETTINGS]).email)
    assert check.is_valid
    assert check.reason == "Email configuration is valid"


def test_disabled_email_channel_is_reported() -> None:
    channels = normalize_channels([{**EMAIL_SETTINGS, "enabled": False}])
    check = validate_email_channel(channels.email)
    assert not check.is_valid
    assert check.reason == "Email sync is disabled"


def test_email_channel_field_errors_are_collected() -> None:
    channel = EmailChannel(enabled=True, email="not-an-address", password="", incoming_server="imap.example.com")
    channel.incoming_port = "99999"
    check = validate_email_channel(channel)
    assert not check.is_valid
    assert "Email address format is invalid" in check.errors
    assert "Email password is missing" in check.errors
    assert "Outgoing server is missing" in check.errors
    assert "Incoming port is invalid" in check.errors


def test_missing_email_channel() -> None:
    check = validate_email_channel(None)
    assert not check.is_valid
    assert check.reason == "No email configuration found"


def test_sites_hold_channels_normalized_once() -> None:
    site = Site(id="site-1", channels=[EMAIL_SETTINGS])
    assert isinstance(site.channels, NormalizedChannels)
    assert site.channels.has_email_channel

    same = Site(id="site-1", channels=site.channels)
    assert same.channels is site.channels

    from_api = SiteIn(id="site-2", channels={"whatsapp": {"enabled": True, "phoneNumber": "+100"}}).to_site()
    assert isinstance(from_api.channels, NormalizedChannels)
    assert from_api.channels.has_whatsapp_channel
    assert not from_api.channels.has_email_channel
    assert not Site(id="site-3").channels.has_any_channel
