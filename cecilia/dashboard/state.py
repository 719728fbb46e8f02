"""Thread-safe shared state between the Cecilia core and whatever UI renders it."""

import threading
import time
from typing import Optional

from cecilia.config import STATE_MAX_CONVERSATION, STATE_MAX_TASKS


class AssistantState:
    """Shared state that core components write to and the presentation layer polls.

    All writes are thread-safe (protected by a lock).
    A version counter increments on every change so pollers only re-render
    when something actually changed.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._version = 0
        self._start_time = time.time()

        # System state
        self.status = "initializing"
        self.connection = "disconnected"

        # Content
        self.conversation = []  # [{"role": str, "text": str, "timestamp": str}]
        self.tasks = []  # [{"id", "category", "action", "parameters", "status", "result"?, "error"?, "progress"}]
        self.last_capture: Optional[dict] = None  # {"selector": str|None, "bytes": int, "timestamp": str}

    # -- Thread-safe setters --

    def set_status(self, status: str):
        """Set the assistant status label (e.g. 'idle', 'working', 'speaking')."""
        with self._lock:
            self.status = status
            self._version += 1

    def set_connection(self, connection: str):
        """Update the agent connection label. Only bumps version on change."""
        with self._lock:
            if self.connection != connection:
                self.connection = connection
                self._version += 1

    def add_conversation(self, role: str, text: str):
        """Append a conversation turn. Keeps the last STATE_MAX_CONVERSATION messages."""
        with self._lock:
            self.conversation.append(
                {
                    "role": role,
                    "text": text,
                    "timestamp": time.strftime("%H:%M:%S"),
                }
            )
            if len(self.conversation) > STATE_MAX_CONVERSATION:
                self.conversation = self.conversation[-STATE_MAX_CONVERSATION:]
            self._version += 1

    # -- Tasks --

    def upsert_task(self, task: dict):
        """Insert or replace a task record by ID. Keeps the last STATE_MAX_TASKS."""
        with self._lock:
            for i, t in enumerate(self.tasks):
                if t.get("id") == task.get("id"):
                    progress = t.get("progress", 0.0)
                    self.tasks[i] = {**task, "progress": task.get("progress", progress)}
                    break
            else:
                self.tasks.append({"progress": 0.0, **task})
                if len(self.tasks) > STATE_MAX_TASKS:
                    self.tasks = self.tasks[-STATE_MAX_TASKS:]
            self._version += 1

    def set_task_progress(self, task_id: str, progress: float) -> bool:
        """Update progress for a task by ID. Returns True if found."""
        with self._lock:
            for t in self.tasks:
                if t.get("id") == task_id:
                    t["progress"] = round(progress, 1)
                    self._version += 1
                    return True
            return False

    def set_last_capture(self, selector: Optional[str], image: str):
        """Record that a screen capture happened (not the image itself)."""
        with self._lock:
            self.last_capture = {
                "selector": selector,
                "bytes": len(image),
                "timestamp": time.strftime("%H:%M:%S"),
            }
            self._version += 1

    # -- Snapshot for the UI --

    @property
    def version(self) -> int:
        """Monotonic counter incremented on state changes."""
        return self._version

    def to_dict(self) -> dict:
        """Snapshot full state as a JSON-serializable dict."""
        with self._lock:
            return {
                "status": self.status,
                "connection": self.connection,
                "conversation": list(self.conversation),
                "tasks": [dict(t) for t in self.tasks],
                "lastCapture": dict(self.last_capture) if self.last_capture else None,
                "uptime": round(time.time() - self._start_time, 1),
                "version": self._version,
            }
