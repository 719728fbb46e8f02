"""Connection to the external automation agent (desktop control service).

AgentTransport is the capability boundary a real agent implementation has to
satisfy: connect, submit_work, poll_status, capture_screen, cancel.
SimulatedAgent is the reference implementation used when no real agent is
wired in. AgentConnection owns the connect/disconnect lifecycle and the
session token, and gates every task operation.
"""

import base64
import io
import itertools
import logging
import random
import threading
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional

from PIL import Image, ImageDraw

from cecilia.brain.errors import AuthenticationFailed, NotConnected, PermanentTaskFailure
from cecilia.config import (
    AGENT_CONNECT_DELAY,
    AGENT_FAILURE_RATE,
    AGENT_TASK_DURATION,
    SCREEN_HEIGHT,
    SCREEN_WIDTH,
)
from cecilia.utils.clock import SYSTEM_CLOCK, Clock

logger = logging.getLogger("cecilia.agent")


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


@dataclass
class WorkStatus:
    """One status report from the agent for a piece of submitted work."""

    state: str  # "running" | "completed" | "failed"
    progress: float = 0.0  # 0-100
    result: Any = None
    error: Optional[str] = None
    transient: bool = False
    screenshot: Optional[str] = None  # base64 data URI, if the agent captured one


class AgentTransport(ABC):
    """What the task engine needs from an automation agent."""

    @abstractmethod
    def connect(self, credential: str) -> str:
        """Authenticate and return a session token. Raise AuthenticationFailed on rejection."""

    def disconnect(self) -> None:
        """Release the session. Optional for transports without server-side sessions."""

    @abstractmethod
    def submit_work(self, task) -> str:
        """Start executing a task on the agent, return the agent's work id."""

    @abstractmethod
    def poll_status(self, work_id: str) -> WorkStatus:
        """Report progress / outcome of submitted work.

        May raise TransientTaskFailure or PermanentTaskFailure instead of
        returning a failed WorkStatus.
        """

    @abstractmethod
    def capture_screen(self, selector: Optional[str] = None) -> str:
        """Return a base64 image of the screen, or of the element matched by selector."""

    @abstractmethod
    def cancel(self, work_id: str) -> None:
        """Ask the agent to abandon submitted work. Best-effort."""


def render_capture(width: int, height: int, label: str) -> str:
    """Render a placeholder capture and return it as a base64 PNG data URI."""
    img = Image.new("RGB", (width, height), color=(18, 24, 38))
    draw = ImageDraw.Draw(img)
    draw.rectangle([0, 0, width - 1, height - 1], outline=(80, 140, 220))
    draw.text((10, 10), label, fill=(220, 220, 220))

    buf = io.BytesIO()
    img.save(buf, format="PNG", optimize=True)
    return "data:image/png;base64," + base64.b64encode(buf.getvalue()).decode("utf-8")


class SimulatedAgent(AgentTransport):
    """In-process stand-in for the desktop agent.

    Connecting takes a fixed delay. Work runs for a fixed duration with
    linear progress, then completes, or fails transiently with
    failure_rate probability. All waiting and randomness goes through the
    injected clock and random source.
    """

    def __init__(
        self,
        clock: Optional[Clock] = None,
        rng: Optional[random.Random] = None,
        connect_delay: float = AGENT_CONNECT_DELAY,
        task_duration: float = AGENT_TASK_DURATION,
        failure_rate: float = AGENT_FAILURE_RATE,
        accepted_credentials: Optional[set[str]] = None,
        screen_size: tuple[int, int] = (SCREEN_WIDTH, SCREEN_HEIGHT),
        capture_on_complete: bool = False,
    ):
        self._clock = clock or SYSTEM_CLOCK
        self._rng = rng or random.Random()
        self._connect_delay = connect_delay
        self._task_duration = task_duration
        self._failure_rate = failure_rate
        self._accepted = accepted_credentials  # None = accept any credential
        self._screen_size = screen_size
        self._capture_on_complete = capture_on_complete

        self._lock = threading.Lock()
        self._work: dict[str, dict] = {}
        self._ids = itertools.count(1)

    def connect(self, credential: str) -> str:
        logger.info("Connecting to automation agent...")
        self._clock.sleep(self._connect_delay)
        if self._accepted is not None and credential not in self._accepted:
            raise AuthenticationFailed("Automation agent rejected the credential")
        logger.info("Connected to automation agent")
        return f"session_{uuid.uuid4().hex}"

    def disconnect(self) -> None:
        with self._lock:
            self._work.clear()

    def submit_work(self, task) -> str:
        work_id = f"work_{next(self._ids)}"
        with self._lock:
            self._work[work_id] = {
                "task_id": task.id,
                "action": task.action,
                "started": self._clock.monotonic(),
                "outcome": None,
                "cancelled": False,
            }
        logger.debug("Accepted %s/%s as %s", task.category, task.action, work_id)
        return work_id

    def poll_status(self, work_id: str) -> WorkStatus:
        with self._lock:
            work = self._work.get(work_id)
            if work is None:
                raise PermanentTaskFailure(f"Unknown work id: {work_id}")
            if work["cancelled"]:
                return WorkStatus("failed", error="cancelled by agent")

            elapsed = self._clock.monotonic() - work["started"]
            if elapsed < self._task_duration:
                return WorkStatus("running", progress=100.0 * elapsed / self._task_duration)

            if work["outcome"] is None:
                work["outcome"] = "completed" if self._rng.random() >= self._failure_rate else "failed"
            outcome = work["outcome"]
            action = work["action"]

        if outcome == "failed":
            return WorkStatus(
                "failed",
                progress=100.0,
                error="Failed to execute task: Simulated error",
                transient=True,
            )

        screenshot = None
        if self._capture_on_complete:
            screenshot = render_capture(*self._screen_size, label=f"{action} done")
        return WorkStatus(
            "completed",
            progress=100.0,
            result={"success": True, "message": "Task completed successfully"},
            screenshot=screenshot,
        )

    def capture_screen(self, selector: Optional[str] = None) -> str:
        width, height = self._screen_size
        if selector:
            logger.info("Capturing screen with selector: %s", selector)
            return render_capture(max(width // 4, 1), max(height // 4, 1), label=selector)
        logger.info("Capturing full screen")
        return render_capture(width, height, label="full screen")

    def cancel(self, work_id: str) -> None:
        with self._lock:
            work = self._work.get(work_id)
            if work is not None:
                work["cancelled"] = True


class AgentConnection:
    """Owns the authenticated link to the automation agent.

    State machine: DISCONNECTED -> CONNECTING -> CONNECTED -> DISCONNECTED.
    Transitions are serialized by an internal lock. is_connected() is a
    plain attribute read, safe from any thread. The session token is set
    only while CONNECTED.
    """

    def __init__(self, transport: AgentTransport, clock: Optional[Clock] = None):
        self._transport = transport
        self._clock = clock or SYSTEM_CLOCK
        self._lock = threading.Lock()
        self._state = ConnectionState.DISCONNECTED
        self._token: Optional[str] = None
        self._connected_at: Optional[float] = None
        self._listeners: list[Callable[[ConnectionState], None]] = []

    @property
    def transport(self) -> AgentTransport:
        return self._transport

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def token(self) -> Optional[str]:
        return self._token if self._state is ConnectionState.CONNECTED else None

    @property
    def connected_at(self) -> Optional[float]:
        return self._connected_at

    def is_connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED

    def require_connected(self) -> None:
        """Raise NotConnected unless the link is up right now."""
        if not self.is_connected():
            raise NotConnected()

    def add_listener(self, callback: Callable[[ConnectionState], None]) -> None:
        """Register a callback invoked with the new state on every transition."""
        self._listeners.append(callback)

    def connect(self, credential: str) -> None:
        """Authenticate with the agent. No-op if already connected.

        Raises AuthenticationFailed (and returns to DISCONNECTED) if the
        agent rejects the credential.
        """
        with self._lock:
            if self._state is ConnectionState.CONNECTED:
                logger.debug("connect() while connected, ignoring")
                return

            if not credential or not credential.strip():
                raise AuthenticationFailed("An agent credential is required")

            self._set_state(ConnectionState.CONNECTING)
            try:
                token = self._transport.connect(credential)
            except AuthenticationFailed:
                self._set_state(ConnectionState.DISCONNECTED)
                logger.warning("Agent rejected the credential")
                raise
            except Exception as e:
                self._set_state(ConnectionState.DISCONNECTED)
                logger.error("Agent connection failed: %s", e)
                raise AuthenticationFailed(f"Agent connection failed: {e}") from e

            self._token = token or credential
            self._connected_at = self._clock.time()
            self._set_state(ConnectionState.CONNECTED)

    def disconnect(self) -> None:
        """Drop the link and clear the token. No-op if already disconnected."""
        with self._lock:
            if self._state is not ConnectionState.CONNECTED:
                return
            try:
                self._transport.disconnect()
            except Exception as e:
                logger.warning("Agent disconnect hook failed: %s", e)
            self._token = None
            self._connected_at = None
            self._set_state(ConnectionState.DISCONNECTED)
            logger.info("Disconnected from automation agent")

    def _set_state(self, state: ConnectionState) -> None:
        if state is not ConnectionState.CONNECTED:
            self._token = None
        self._state = state
        for callback in list(self._listeners):
            try:
                callback(state)
            except Exception as e:
                logger.warning("Connection listener failed: %s", e)
