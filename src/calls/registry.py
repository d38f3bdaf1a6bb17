from __future__ import annotations

import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:  # pragma: no cover
    from calls.session import CallSession

LOGGER = logging.getLogger(__name__)


class SessionRegistry:
    """Active call sessions keyed by Twilio stream sid and call sid.

    Single-process store; all access happens on the event loop.
    """

    def __init__(self) -> None:
        self._by_stream: dict[str, CallSession] = {}
        self._by_call: dict[str, CallSession] = {}

    def register(self, session: CallSession) -> None:
        if not session.stream_sid:
            raise ValueError("Session has no stream sid yet")
        self._by_stream[session.stream_sid] = session
        if session.call_sid:
            self._by_call[session.call_sid] = session
        LOGGER.info("Registered session stream=%s call=%s", session.stream_sid, session.call_sid)

    def unregister(self, session: CallSession) -> None:
        if session.stream_sid and self._by_stream.get(session.stream_sid) is session:
            del self._by_stream[session.stream_sid]
        if session.call_sid and self._by_call.get(session.call_sid) is session:
            del self._by_call[session.call_sid]

    def get(self, key: str) -> CallSession | None:
        """Look up by stream sid or call sid."""

        return self._by_stream.get(key) or self._by_call.get(key)

    def active(self) -> list[CallSession]:
        return list(self._by_stream.values())

    def __len__(self) -> int:
        return len(self._by_stream)
