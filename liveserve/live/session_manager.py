"""
Live Session Manager for the live-reload server

Manages one Server-Sent Events stream per connected browser tab:
- Subscribes a per-connection reload callback to the Change Bus on connect
- Pushes a reload frame to the stream whenever a change is published
- Unsubscribes when the underlying connection closes
- Publishes manually triggered reloads straight onto the bus
"""

import asyncio
import json
import logging
from collections.abc import AsyncGenerator
from typing import Any

from fastapi.responses import StreamingResponse

from liveserve.live.change_bus import ChangeBus, ChangeEvent

# Reconnect interval advertised to EventSource clients, in milliseconds
RETRY_INTERVAL_MS = 5000

RELOAD_PAYLOAD = json.dumps({"reload": True}, separators=(",", ":"))
RELOAD_FRAME = f"data: {RELOAD_PAYLOAD}\n\n".encode()
PREAMBLE = f"retry: {RETRY_INTERVAL_MS}\n\n".encode()

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "Access-Control-Allow-Origin": "*",
}

MAX_PENDING_FRAMES = 100


class LiveSession:
    """One browser connection waiting for reload notifications."""

    def __init__(self, session_id: int, max_pending: int = MAX_PENDING_FRAMES) -> None:
        self.session_id = session_id
        self.closed = False
        self.frames_sent = 0
        self._queue: asyncio.Queue[bytes] = asyncio.Queue(maxsize=max_pending)

    def send_reload(self, event: ChangeEvent) -> None:
        """Change Bus callback: queue a reload frame without blocking the publisher."""
        if self.closed:
            return

        # Drop oldest if full to avoid blocking
        if self._queue.full():
            self._queue.get_nowait()
        self._queue.put_nowait(RELOAD_FRAME)

    def close(self) -> None:
        """Mark the session closed and wake a stream waiting on it."""
        if self.closed:
            return

        self.closed = True
        if self._queue.full():
            self._queue.get_nowait()
        # Empty frame is the end-of-stream marker
        self._queue.put_nowait(b"")

    async def next_frame(self) -> bytes:
        """Wait for the next frame; an empty result means the session is closed."""
        frame = await self._queue.get()
        if frame:
            self.frames_sent += 1
        return frame

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def __repr__(self) -> str:
        return f"<LiveSession {self.session_id} closed={self.closed}>"


class LiveSessionManager:
    """
    Owns the live-reload push streams.

    The only way a session ends is its connection closing; there is no
    idle timeout and no server-side ping.
    """

    def __init__(self, bus: ChangeBus) -> None:
        self.logger = logging.getLogger(__name__)
        self.bus = bus

        self._sessions: dict[int, LiveSession] = {}
        self._session_count = 0

        self.stats = {
            "total_sessions": 0,
            "current_sessions": 0,
            "frames_sent": 0,
            "manual_triggers": 0,
        }

    def connect(self) -> LiveSession:
        """
        Register a new session with the Change Bus.

        Returns:
            The session whose reload callback is now subscribed
        """
        self._session_count += 1
        session = LiveSession(self._session_count)

        self._sessions[session.session_id] = session
        self.bus.subscribe(session.send_reload)

        self.stats["total_sessions"] += 1
        self.stats["current_sessions"] = len(self._sessions)
        self.logger.info(f"[live] client connected. Active sessions: {len(self._sessions)}")

        return session

    def disconnect(self, session: LiveSession) -> None:
        """Unsubscribe a session. Safe to call more than once."""
        self.bus.unsubscribe(session.send_reload)
        if self._sessions.pop(session.session_id, None) is None:
            return

        session.close()
        self.stats["current_sessions"] = len(self._sessions)
        self.logger.info(f"[live] client disconnected. Active sessions: {len(self._sessions)}")

    async def stream(self, session: LiveSession) -> AsyncGenerator[bytes, None]:
        """
        Body of the push stream for one session.

        Yields the reconnect preamble, then one reload frame per published
        change. Starlette cancels the generator when the client goes away,
        which is what triggers the unsubscribe.
        """
        try:
            yield PREAMBLE

            while True:
                frame = await session.next_frame()
                if not frame:
                    break
                self.stats["frames_sent"] += 1
                yield frame
        except asyncio.CancelledError:
            pass
        finally:
            self.disconnect(session)

    def open_stream(self) -> StreamingResponse:
        """Accept a browser connection and return its event-stream response."""
        session = self.connect()
        return StreamingResponse(self.stream(session), headers=SSE_HEADERS, media_type="text/event-stream")

    def trigger_reload(self, source: str = "manual") -> int:
        """
        Publish a reload without any filesystem change.

        Returns:
            Number of subscribers notified
        """
        self.stats["manual_triggers"] += 1
        self.logger.info(f"[live] reload requested ({source})")
        return self.bus.publish(ChangeEvent(source=source))

    def close_all(self) -> None:
        """Disconnect every session, used on application shutdown."""
        for session in list(self._sessions.values()):
            self.disconnect(session)

    def get_session_count(self) -> int:
        return len(self._sessions)

    def get_stats(self) -> dict[str, Any]:
        """Get a copy of the session statistics."""
        self.stats["current_sessions"] = len(self._sessions)
        return self.stats.copy()
