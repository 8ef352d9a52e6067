"""
CallGuard: Alert Dispatcher

On a positive verdict two independent best-effort actions run together:
  (a) SMS notification to the preconfigured recipient
  (b) in-call announcement in the call's active conference

Each step reports its own outcome. A failure of one never prevents the
other, nothing is retried, and dispatch() never raises into the session.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, List, Optional
from urllib.parse import urlencode

from twilio.base.exceptions import TwilioException
from twilio.http.async_http_client import AsyncTwilioHttpClient
from twilio.rest import Client

from ..core.config import AlertConfig, alert_cfg
from ..core.errors import DispatchError
from ..core.interfaces import TelephonyBackend
from ..core.models import AlertOutcome

logger = logging.getLogger("callguard.alerts")


# ═══════════════════════════════════════════════════════════════════════════
# Twilio backend
# ═══════════════════════════════════════════════════════════════════════════

class TwilioTelephony:
    """TelephonyBackend over the Twilio REST API using its async HTTP client."""

    def __init__(self, config: AlertConfig = alert_cfg, client: Any = None) -> None:
        self._config = config
        self._client = client

    def _get_client(self) -> Any:
        if self._client is None:
            self._client = Client(
                self._config.twilio_account_sid,
                self._config.twilio_auth_token,
                http_client=AsyncTwilioHttpClient(),
            )
        return self._client

    async def send_message(self, body: str, from_: str, to: str) -> str:
        message = await self._get_client().messages.create_async(
            body=body, from_=from_, to=to,
        )
        return message.sid

    async def list_active_conferences(
        self, friendly_name: Optional[str] = None, limit: int = 5,
    ) -> List[str]:
        filters: dict = {"status": "in-progress", "limit": limit}
        if friendly_name:
            filters["friendly_name"] = friendly_name
        conferences = await self._get_client().conferences.list_async(**filters)
        return [c.sid for c in conferences]

    async def announce(self, conference_sid: str, announce_url: str) -> str:
        conference = await self._get_client().conferences(conference_sid).update_async(
            announce_url=announce_url,
        )
        return conference.sid

    async def aclose(self) -> None:
        if self._client is None:
            return
        http_client = getattr(self._client, "http_client", None)
        if isinstance(http_client, AsyncTwilioHttpClient):
            await http_client.close()


# ═══════════════════════════════════════════════════════════════════════════
# Dispatcher
# ═══════════════════════════════════════════════════════════════════════════

class AlertDispatcher:
    """
    Fire-and-forget alert boundary.

    Usage:
        dispatcher = AlertDispatcher(TwilioTelephony())
        outcome = await dispatcher.dispatch("Conf-+33612345678")
    """

    def __init__(
        self,
        backend: TelephonyBackend,
        config: AlertConfig = alert_cfg,
    ) -> None:
        self._backend = backend
        self._config = config

    @property
    def announce_url(self) -> str:
        query = urlencode({
            "Message": self._config.announce_message,
            "Voice": self._config.announce_voice,
            "Language": self._config.announce_language,
        })
        return f"{self._config.announce_base_url}?{query}"

    async def dispatch(self, call_key: str) -> AlertOutcome:
        logger.info(f"🎵 Triggering fraud alert for {call_key}")
        outcome = AlertOutcome(call_key=call_key)

        results = await asyncio.gather(
            self._notify(),
            self._announce(call_key),
            return_exceptions=True,
        )
        notified, announced = results

        if isinstance(notified, BaseException):
            outcome.errors.append(str(notified))
            logger.error(f"❌ SMS alert failed for {call_key}: {notified}")
        else:
            outcome.notification_sid = notified
            logger.info(f"📩 SMS alert sent: {notified}")

        if isinstance(announced, BaseException):
            outcome.errors.append(str(announced))
            logger.error(f"❌ Fraud announcement failed for {call_key}: {announced}")
        elif announced is None:
            outcome.errors.append(f"announce: no active conference for {call_key}")
            logger.warning(f"No active conference found for {call_key}")
        else:
            outcome.conference_sid = announced
            logger.info(f"🎧 Fraud announcement triggered in conference {announced}")

        return outcome

    async def _notify(self) -> str:
        if not self._config.recipient:
            raise DispatchError("notify", "no alert recipient configured")
        try:
            return await self._backend.send_message(
                body=self._config.sms_body,
                from_=self._config.from_number,
                to=self._config.recipient,
            )
        except TwilioException as e:
            raise DispatchError("notify", str(e)) from e

    async def _announce(self, call_key: str) -> Optional[str]:
        """Conference id the announcement went to, or None if none matched."""
        try:
            matches = await self._backend.list_active_conferences(
                friendly_name=call_key, limit=self._config.conference_list_limit,
            )
            if not matches and self._config.fallback_first_conference:
                matches = await self._backend.list_active_conferences(
                    limit=self._config.conference_list_limit,
                )
                if matches:
                    logger.warning(
                        f"No conference named {call_key}, falling back to {matches[0]}"
                    )
            if not matches:
                return None
            return await self._backend.announce(matches[0], self.announce_url)
        except TwilioException as e:
            raise DispatchError("announce", str(e)) from e
