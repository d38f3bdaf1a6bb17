from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from xml.sax.saxutils import quoteattr

from calls.errors import CallPlacementError
from config.settings import get_settings

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class TwilioConfig:
    account_sid: str
    auth_token: str
    from_number: str
    public_base_url: str

    @property
    def stream_url(self) -> str:
        return to_ws_url(f"{self.public_base_url}/api/twilio/stream")


def get_twilio_config() -> TwilioConfig:
    settings = get_settings()
    if not settings.twilio_account_sid or not settings.twilio_auth_token:
        raise ValueError("Twilio credentials are not configured")
    if not settings.twilio_from_number:
        raise ValueError("Twilio from-number is not configured")
    if not settings.public_base_url:
        raise ValueError("PUBLIC_BASE_URL is required for Twilio media streams")

    return TwilioConfig(
        account_sid=settings.twilio_account_sid,
        auth_token=settings.twilio_auth_token,
        from_number=settings.twilio_from_number,
        public_base_url=settings.public_base_url.rstrip("/"),
    )


def build_twilio_client():
    from twilio.rest import Client

    cfg = get_twilio_config()
    return Client(cfg.account_sid, cfg.auth_token)


def to_ws_url(http_url: str) -> str:
    if http_url.startswith("https://"):
        return "wss://" + http_url.removeprefix("https://")
    if http_url.startswith("http://"):
        return "ws://" + http_url.removeprefix("http://")
    return http_url


def twiml_connect_stream(*, stream_url: str, prompt: str, echo: bool) -> str:
    """TwiML that bridges the call to our media stream with the prompt as a parameter."""

    return (
        "<?xml version=\"1.0\" encoding=\"UTF-8\"?>"
        "<Response>"
        "<Connect>"
        f"<Stream url={quoteattr(stream_url)}>"
        f"<Parameter name=\"prompt\" value={quoteattr(prompt)}/>"
        f"<Parameter name=\"loop\" value=\"{'1' if echo else '0'}\"/>"
        "</Stream>"
        "</Connect>"
        "</Response>"
    )


async def place_call(twilio_client, cfg: TwilioConfig, *, to_number: str, prompt: str) -> str:
    """Dial `to_number`; the answered call streams into the relay with `prompt`."""

    twiml = twiml_connect_stream(stream_url=cfg.stream_url, prompt=prompt, echo=False)
    try:
        call = await asyncio.to_thread(
            twilio_client.calls.create,
            to=to_number,
            from_=cfg.from_number,
            twiml=twiml,
        )
    except Exception as exc:
        raise CallPlacementError(f"Twilio call to {to_number} failed: {exc}") from exc

    LOGGER.info("Placed call %s to %s", call.sid, to_number)
    return str(call.sid)


async def hang_up_call(twilio_client, call_sid: str) -> None:
    try:
        await asyncio.to_thread(lambda: twilio_client.calls(call_sid).update(status="completed"))
    except Exception as exc:
        raise CallPlacementError(f"Twilio hang-up of {call_sid} failed: {exc}") from exc
