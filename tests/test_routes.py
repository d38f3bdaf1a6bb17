from __future__ import annotations

import base64

import pytest
from conftest import FakeNotifier
from fastapi.testclient import TestClient

from calls.registry import SessionRegistry
from integrations.twilio_client import TwilioConfig


class FakeTwilioCall:
    def __init__(self, sid: str) -> None:
        self.sid = sid
        self.updates: list[dict] = []

    def update(self, **kwargs):
        self.updates.append(kwargs)
        return self


class FakeTwilioCalls:
    def __init__(self) -> None:
        self.created: list[dict] = []
        self.by_sid: dict[str, FakeTwilioCall] = {}

    def create(self, *, to: str, from_: str, twiml: str):
        self.created.append({"to": to, "from_": from_, "twiml": twiml})
        return FakeTwilioCall("CA123")

    def __call__(self, sid: str) -> FakeTwilioCall:
        return self.by_sid.setdefault(sid, FakeTwilioCall(sid))


class FakeTwilioClient:
    def __init__(self) -> None:
        self.calls = FakeTwilioCalls()


class FakeSession:
    def __init__(self, stream_sid: str, call_sid: str) -> None:
        self.stream_sid = stream_sid
        self.call_sid = call_sid
        self.ended = 0

    async def on_end(self) -> None:
        self.ended += 1


TWILIO_CFG = TwilioConfig(
    account_sid="AC123",
    auth_token="token",
    from_number="+15005550006",
    public_base_url="https://relay.example.com",
)


@pytest.fixture()
def wired(app):
    import api.dependencies as deps

    notifier = FakeNotifier()
    registry = SessionRegistry()
    twilio = FakeTwilioClient()
    app.dependency_overrides[deps.get_notifier] = lambda: notifier
    app.dependency_overrides[deps.get_registry] = lambda: registry
    app.dependency_overrides[deps.get_twilio_client] = lambda: twilio
    app.dependency_overrides[deps.get_twilio_cfg] = lambda: TWILIO_CFG

    with TestClient(app) as client:
        yield client, notifier, registry, twilio

    app.dependency_overrides.clear()


def test_health_reports_active_calls(wired) -> None:
    client, _, registry, _ = wired
    registry.register(FakeSession("MZ1", "CA1"))

    resp = client.get("/api/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok", "active_calls": 1}


def test_groupme_call_command_places_call(wired) -> None:
    client, notifier, _, twilio = wired

    resp = client.post("/api/groupme", json={"text": "call 4355551212 and tell Sam dinner is at six."})

    assert resp.status_code == 200
    assert resp.json()["action"] == "call"
    assert resp.json()["call_sid"] == "CA123"
    (created,) = twilio.calls.created
    assert created["to"] == "+14355551212"
    assert created["from_"] == "+15005550006"
    assert "wss://relay.example.com/api/twilio/stream" in created["twiml"]
    assert "Sam dinner is at six" in created["twiml"]
    assert notifier.messages == ['Calling +14355551212 now and saying: "Sam dinner is at six"']


def test_groupme_usage_hint_and_invalid_number(wired) -> None:
    client, notifier, _, twilio = wired

    assert client.post("/api/groupme", json={"text": "hello bot"}).json()["action"] == "usage"
    assert client.post("/api/groupme", json={"text": "call 123 and tell x"}).json()["action"] == "invalid_number"

    assert notifier.messages[0].startswith("Try: call")
    assert notifier.messages[1] == 'Could not find a valid phone number in "123"'
    assert twilio.calls.created == []


def test_groupme_ignores_bot_messages(wired) -> None:
    client, notifier, _, _ = wired
    resp = client.post("/api/groupme", json={"text": "call 4355551212 and tell x", "sender_type": "bot"})
    assert resp.json()["action"] == "ignored"
    assert notifier.messages == []


def test_groupme_shared_secret(wired, monkeypatch) -> None:
    client, _, _, _ = wired
    from config.settings import get_settings

    monkeypatch.setattr(get_settings(), "groupme_shared_secret", "s3cret")

    assert client.post("/api/groupme", json={"text": "hello"}).status_code == 403
    resp = client.post("/api/groupme", json={"text": "hello"}, headers={"x-shared-secret": "s3cret"})
    assert resp.status_code == 200


def test_groupme_hang_up_ends_the_latest_call(wired) -> None:
    client, notifier, registry, twilio = wired
    older, latest = FakeSession("MZ1", "CA1"), FakeSession("MZ2", "CA2")
    registry.register(older)
    registry.register(latest)

    resp = client.post("/api/groupme", json={"text": "hang up"})

    assert resp.json() == {"status": "ok", "action": "hangup", "call_sid": "CA2"}
    assert twilio.calls("CA2").updates == [{"status": "completed"}]
    assert latest.ended == 1
    assert older.ended == 0
    assert notifier.messages == ["Hanging up."]


def test_groupme_hang_up_without_calls(wired) -> None:
    client, notifier, _, _ = wired
    resp = client.post("/api/groupme", json={"text": "hang up"})
    assert resp.json()["action"] == "hangup"
    assert notifier.messages == ["No active call to hang up."]


def test_twiml_endpoint(wired) -> None:
    client, _, _, _ = wired
    resp = client.get("/api/twilio/twiml", params={"prompt": "a & b", "loop": "1"})
    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("application/xml")
    assert "<Connect><Stream" in resp.text
    assert 'value="a &amp; b"' in resp.text
    assert 'name="loop" value="1"' in resp.text

    resp = client.post("/api/twilio/twiml")
    assert 'name="prompt" value="test"' in resp.text
    assert 'name="loop" value="0"' in resp.text


def test_media_stream_echo_mode(app) -> None:
    import api.dependencies as deps
    from calls.session import CallSession, SessionConfig

    notifier = FakeNotifier()
    registry = SessionRegistry()

    def session_factory(send):
        return CallSession(SessionConfig(), send_to_transport=send, notifier=notifier, on_closed=registry.unregister)

    app.dependency_overrides[deps.get_registry] = lambda: registry
    app.dependency_overrides[deps.get_session_factory] = lambda: session_factory

    payload = base64.b64encode(b"\x01\x02\x03").decode("ascii")
    with TestClient(app) as client:
        with client.websocket_connect("/api/twilio/stream") as ws:
            ws.send_text("garbage")
            ws.send_json(
                {
                    "event": "start",
                    "start": {"streamSid": "MZ9", "callSid": "CA9", "customParameters": {"loop": "1"}},
                }
            )
            ws.send_json({"event": "media", "media": {"track": "inbound", "payload": payload}})
            echoed = ws.receive_json()
            ws.send_json({"event": "stop"})

    app.dependency_overrides.clear()

    assert echoed == {"event": "media", "streamSid": "MZ9", "media": {"payload": payload}}
    assert notifier.messages == []


def test_stored_transcript_is_served(wired) -> None:
    client, _, _, _ = wired

    async def _seed():
        from calls.models import TranscriptEntry
        from db.repository import CallRepository

        entries = [
            TranscriptEntry("agent", "Hello! Sam has a message for you.", 0, 0, 0),
            TranscriptEntry("caller", "Thanks, tell him yes.", 1, 1, 1),
        ]
        await CallRepository().save_transcript(
            "CA-stored",
            stream_sid="MZ-stored",
            prompt="dinner at six",
            entries=entries,
            summary="Sam's message was delivered.",
            source="post_call",
        )

    client.portal.call(_seed)

    resp = client.get("/api/calls/CA-stored/transcript")
    assert resp.status_code == 200
    payload = resp.json()
    assert payload["prompt"] == "dinner at six"
    assert payload["summary"] == "Sam's message was delivered."
    assert [line["speaker"] for line in payload["lines"]] == ["agent", "caller"]
    assert payload["lines"][1]["text"] == "Thanks, tell him yes."

    assert client.get("/api/calls/unknown/transcript").status_code == 404
