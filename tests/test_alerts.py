"""Alert dispatcher: two independent best-effort steps, never raising."""

from __future__ import annotations

from dataclasses import replace
from urllib.parse import parse_qs, urlparse

from twilio.base.exceptions import TwilioException

from callguard.services.alerts import AlertDispatcher

from conftest import FakeTelephony

KEY = "Conf-+33612345678"


async def test_dispatch_sends_sms_and_announces_in_matching_conference(alert_config):
    backend = FakeTelephony({"Conf-other": "CF0", KEY: "CF1"})
    outcome = await AlertDispatcher(backend, config=alert_config).dispatch(KEY)

    assert outcome.notified and outcome.announced
    assert outcome.conference_sid == "CF1"
    assert outcome.errors == []
    assert backend.messages == [{
        "body": alert_config.sms_body,
        "from": "+15550001111",
        "to": "+33600000000",
    }]
    assert backend.announcements[0]["sid"] == "CF1"


async def test_announce_url_is_a_twimlet_message(alert_config):
    dispatcher = AlertDispatcher(FakeTelephony(), config=alert_config)
    url = urlparse(dispatcher.announce_url)
    query = parse_qs(url.query)

    assert url.netloc == "twimlets.com"
    assert query["Message"] == ["Attention, please verify the identity of the person."]
    assert query["Voice"] == ["female"]
    assert query["Language"] == ["fr-FR"]


async def test_sms_failure_does_not_prevent_announcement(alert_config):
    backend = FakeTelephony({KEY: "CF1"})
    backend.message_error = TwilioException("21211 invalid 'To' number")

    outcome = await AlertDispatcher(backend, config=alert_config).dispatch(KEY)

    assert not outcome.notified
    assert outcome.announced
    assert len(outcome.errors) == 1
    assert "invalid 'To' number" in outcome.errors[0]


async def test_conference_failure_does_not_prevent_sms(alert_config):
    backend = FakeTelephony({KEY: "CF1"})
    backend.conference_error = TwilioException("20003 authenticate")

    outcome = await AlertDispatcher(backend, config=alert_config).dispatch(KEY)

    assert outcome.notified
    assert not outcome.announced
    assert backend.messages


async def test_no_matching_conference_is_not_fatal(alert_config):
    backend = FakeTelephony({"Conf-someone-else": "CF9"})

    outcome = await AlertDispatcher(backend, config=alert_config).dispatch(KEY)

    assert outcome.notified
    assert not outcome.announced
    assert backend.announcements == []
    assert "no active conference" in outcome.errors[0]


async def test_fallback_to_first_conference_when_enabled(alert_config):
    backend = FakeTelephony({"Conf-someone-else": "CF9"})
    config = replace(alert_config, fallback_first_conference=True)

    outcome = await AlertDispatcher(backend, config=config).dispatch(KEY)

    assert outcome.conference_sid == "CF9"


async def test_unexpected_backend_errors_never_escape(alert_config):
    backend = FakeTelephony({KEY: "CF1"})
    backend.message_error = RuntimeError("event loop hiccup")
    backend.conference_error = ConnectionResetError("peer reset")

    outcome = await AlertDispatcher(backend, config=alert_config).dispatch(KEY)

    assert not outcome.notified and not outcome.announced
    assert len(outcome.errors) == 2


async def test_missing_recipient_skips_sms(alert_config):
    backend = FakeTelephony({KEY: "CF1"})
    config = replace(alert_config, recipient="")

    outcome = await AlertDispatcher(backend, config=config).dispatch(KEY)

    assert backend.messages == []
    assert outcome.announced
    assert "no alert recipient" in outcome.errors[0]
