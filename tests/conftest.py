"""Shared fakes and fixtures for the Cecilia test suite.

FakeClock replaces real sleeping so retry backoff and simulated agent delays
run instantly. ScriptedTransport plays back canned agent status reports so
task outcomes are deterministic.
"""

import random
import threading
import time
from datetime import datetime

import pytest

from cecilia.brain.agent_connection import AgentConnection, AgentTransport, WorkStatus
from cecilia.brain.app_registry import KeywordResolver, load_registry
from cecilia.brain.errors import AuthenticationFailed
from cecilia.brain.orchestrator import Orchestrator
from cecilia.brain.task_engine import TaskLifecycleEngine
from cecilia.dashboard.state import AssistantState
from cecilia.personality import ConversationState, PersonalityResponder, PersonalityTraits
from cecilia.utils.clock import Clock

START = datetime(2026, 3, 2, 9, 0, 0)


class FakeClock(Clock):
    """Clock whose sleep() advances time instead of blocking."""

    def __init__(self, start: datetime = START):
        self._lock = threading.Lock()
        self._wall = start.timestamp()
        self._mono = 1000.0
        self.sleeps = []

    def time(self) -> float:
        with self._lock:
            return self._wall

    def monotonic(self) -> float:
        with self._lock:
            return self._mono

    def advance(self, seconds: float) -> None:
        with self._lock:
            self._wall += seconds
            self._mono += seconds

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        if seconds > 0:
            self.advance(seconds)
        time.sleep(0.001)  # let other threads run


def running(progress: float) -> WorkStatus:
    return WorkStatus("running", progress=progress)


def completed(result=None, screenshot=None) -> WorkStatus:
    return WorkStatus("completed", progress=100.0, result=result if result is not None else {"ok": True}, screenshot=screenshot)


def failed(error: str = "agent error", transient: bool = False) -> WorkStatus:
    return WorkStatus("failed", error=error, transient=transient)


class ScriptedTransport(AgentTransport):
    """Agent fake that plays back one script of status reports per submission.

    Each script is a list of WorkStatus (or exceptions to raise). Polls walk
    the list and then keep returning the last entry. Without a script the
    work completes on the first poll. Setting `block` makes polls wait on it.
    """

    def __init__(self, scripts=None, reject: bool = False):
        self.scripts = list(scripts or [])
        self.reject = reject
        self.block = None
        self.connect_calls = []
        self.disconnect_calls = 0
        self.submitted = []
        self.cancelled = []
        self._lock = threading.Lock()
        self._queues = {}

    def connect(self, credential: str) -> str:
        self.connect_calls.append(credential)
        if self.reject:
            raise AuthenticationFailed("bad credential")
        return f"token-{credential}"

    def disconnect(self) -> None:
        self.disconnect_calls += 1

    def submit_work(self, task) -> str:
        with self._lock:
            self.submitted.append(task)
            work_id = f"w{len(self.submitted)}"
            script = self.scripts.pop(0) if self.scripts else [completed()]
            self._queues[work_id] = list(script)
        return work_id

    def poll_status(self, work_id: str) -> WorkStatus:
        if self.block is not None:
            self.block.wait(5)
        with self._lock:
            queue = self._queues[work_id]
            item = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(item, Exception):
            raise item
        return item

    def capture_screen(self, selector=None) -> str:
        return f"data:image/png;base64,{selector or 'full'}"

    def cancel(self, work_id: str) -> None:
        with self._lock:
            self.cancelled.append(work_id)

    def release(self) -> None:
        if self.block is not None:
            self.block.set()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def rng():
    return random.Random(42)


@pytest.fixture
def transport():
    t = ScriptedTransport()
    yield t
    t.release()


@pytest.fixture
def connection(transport, clock):
    conn = AgentConnection(transport, clock=clock)
    conn.connect("abc")
    return conn


@pytest.fixture
def engine(connection, clock):
    return TaskLifecycleEngine(connection, clock=clock, poll_interval=0.01)


@pytest.fixture
def registry():
    return load_registry()


@pytest.fixture
def resolver(registry):
    return KeywordResolver(registry)


@pytest.fixture
def conversation(clock):
    return ConversationState(traits=PersonalityTraits(humor=False), last_interaction=clock.now())


@pytest.fixture
def orchestrator(resolver, connection, engine, clock, rng, conversation):
    responder = PersonalityResponder(clock=clock, rng=rng)
    return Orchestrator(
        resolver=resolver,
        connection=connection,
        engine=engine,
        responder=responder,
        conversation=conversation,
        state=AssistantState(),
    )
