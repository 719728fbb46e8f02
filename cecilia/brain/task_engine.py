"""Task lifecycle engine — runs automation tasks on the agent and tracks their state.

Lifecycle of one task:
    pending -> running -> completed | failed
A transient failure with retries left goes back to pending, waits out the
backoff, and runs again. Completed and failed are terminal: the first
terminal transition wins (worker, timeout watchdog or stop_all) and the task
is never touched again.

Each task runs on its own daemon thread that submits the work and polls the
agent. Callers get snapshots, never the live task object.
"""

import copy
import logging
import threading
import uuid
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Callable, Optional

from cecilia.brain.errors import (
    InvalidTaskDraft,
    NotConnected,
    PermanentTaskFailure,
    TaskFailure,
    TimeoutExceeded,
    TransientTaskFailure,
)
from cecilia.config import (
    MAX_TASK_RETRIES,
    TASK_HISTORY_LIMIT,
    TASK_POLL_INTERVAL,
    TASK_RETRY_BACKOFF,
    TASK_RETRY_DELAY,
    TASK_RETRY_MAX_DELAY,
)
from cecilia.utils.clock import SYSTEM_CLOCK, Clock

logger = logging.getLogger("cecilia.tasks")

STOPPED_BY_USER = "stopped by user"


class TaskCategory(str, Enum):
    EMAIL = "email"
    SOCIAL = "social"
    DATA = "data"
    WEB = "web"
    CALENDAR = "calendar"
    CUSTOM = "custom"


class TaskStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_STATUSES = frozenset({TaskStatus.COMPLETED, TaskStatus.FAILED})


@dataclass
class TaskDraft:
    """What the caller wants done. Missing fields get engine defaults."""

    id: Optional[str] = None
    category: Optional[str] = None
    action: Optional[str] = None
    parameters: Optional[dict[str, Any]] = None


@dataclass
class TaskOptions:
    retries: int = 0
    timeout: Optional[float] = None  # seconds; None = wait for the agent
    retry_delay: float = TASK_RETRY_DELAY
    backoff: float = TASK_RETRY_BACKOFF
    on_progress: Optional[Callable[[float], None]] = None
    on_screen_capture: Optional[Callable[[str], None]] = None
    on_complete: Optional[Callable[["AutomationTask"], None]] = None


@dataclass
class AutomationTask:
    id: str
    category: TaskCategory
    action: str
    parameters: dict[str, Any] = field(default_factory=dict)
    status: TaskStatus = TaskStatus.PENDING
    result: Any = None  # set only when completed
    error: Optional[str] = None  # set only when failed
    retry_count: int = 0
    created_at: float = 0.0
    finished_at: Optional[float] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def snapshot(self) -> "AutomationTask":
        """Independent copy for callers; mutating it does not affect the engine."""
        return replace(
            self,
            parameters=copy.deepcopy(self.parameters),
            result=copy.deepcopy(self.result),
        )

    def to_dict(self) -> dict:
        """Shape handed to the presentation layer."""
        data = {
            "id": self.id,
            "category": self.category.value,
            "action": self.action,
            "parameters": dict(self.parameters),
            "status": self.status.value,
        }
        if self.status is TaskStatus.COMPLETED:
            data["result"] = self.result
        if self.status is TaskStatus.FAILED:
            data["error"] = self.error
        if self.retry_count:
            data["retries"] = self.retry_count
        return data


@dataclass
class TaskEvent:
    kind: str  # "pending" | "running" | "progress" | "completed" | "failed"
    task: AutomationTask
    progress: Optional[float] = None


class _TaskRun:
    """Engine-private execution record for one task."""

    __slots__ = ("task", "options", "lock", "done", "work_id", "progress", "timer")

    def __init__(self, task: AutomationTask, options: TaskOptions):
        self.task = task
        self.options = options
        # Re-entrant: callbacks run under this lock and may call back into the engine
        self.lock = threading.RLock()
        self.done = threading.Event()
        self.work_id: Optional[str] = None
        self.progress: Optional[float] = None  # highest value reported to the caller
        self.timer: Optional[threading.Timer] = None


class TaskLifecycleEngine:
    """Submit tasks to the automation agent and drive them to a terminal state."""

    def __init__(
        self,
        connection,
        clock: Optional[Clock] = None,
        poll_interval: float = TASK_POLL_INTERVAL,
        history_limit: int = TASK_HISTORY_LIMIT,
    ):
        self._connection = connection
        self._clock = clock or SYSTEM_CLOCK
        self._poll_interval = poll_interval
        self._history_limit = history_limit

        self._lock = threading.Lock()
        self._runs: dict[str, _TaskRun] = {}  # insertion order = submission order
        self._listeners: list[Callable[[TaskEvent], None]] = []

    # ── Public API ───────────────────────────────────────────────────

    def add_listener(self, callback: Callable[[TaskEvent], None]) -> None:
        """Receive every status change and progress update, for every task."""
        self._listeners.append(callback)

    def submit(self, draft: Optional[TaskDraft] = None, options: Optional[TaskOptions] = None) -> AutomationTask:
        """Accept a task and start it in the background.

        Returns a snapshot in the running state. Raises NotConnected when the
        agent link is down (no task is created) and InvalidTaskDraft for a bad
        draft or options. Execution failures never raise: they end up in the
        task's error field.
        """
        options = options or TaskOptions()
        self._connection.require_connected()
        self._validate_options(options)

        run = _TaskRun(self._materialize(draft or TaskDraft()), options)
        task = run.task

        with self._lock:
            if task.id in self._runs:
                raise InvalidTaskDraft(f"Task id already in use: {task.id}")
            self._runs[task.id] = run
            self._trim_history()

        logger.info(
            "[tasks] Executing task %s: %s/%s %s",
            task.id,
            task.category.value,
            task.action,
            _short(task.parameters),
        )
        self._emit(TaskEvent("pending", task.snapshot()))

        with run.lock:
            if not task.is_terminal:
                self._set_status(run, TaskStatus.RUNNING)
                # Started under run.lock so _finish either sees the timer or runs first
                if options.timeout is not None:
                    run.timer = threading.Timer(options.timeout, self._expire, args=(run,))
                    run.timer.daemon = True
                    run.timer.start()
            accepted = task.snapshot()

        threading.Thread(target=self._execute, args=(run,), name=f"task-{task.id}", daemon=True).start()
        return accepted

    def wait(self, task_id: str, timeout: Optional[float] = None) -> AutomationTask:
        """Block until the task is terminal (or the wait times out) and return a snapshot."""
        run = self._get_run(task_id)
        run.done.wait(timeout)
        return self._snapshot(run)

    def run(self, draft: Optional[TaskDraft] = None, options: Optional[TaskOptions] = None) -> AutomationTask:
        """submit() and wait for the terminal state."""
        task = self.submit(draft, options)
        return self.wait(task.id)

    def get(self, task_id: str) -> Optional[AutomationTask]:
        with self._lock:
            run = self._runs.get(task_id)
        return self._snapshot(run) if run else None

    def tasks(self, status: Optional[TaskStatus] = None) -> list[AutomationTask]:
        """Snapshots of known tasks in submission order, optionally filtered by status."""
        with self._lock:
            runs = list(self._runs.values())
        snapshots = [self._snapshot(r) for r in runs]
        if status is not None:
            snapshots = [t for t in snapshots if t.status is TaskStatus(status)]
        return snapshots

    def capture_screen(self, selector: Optional[str] = None) -> str:
        """Capture the screen (or one element) through the agent. Needs a live connection."""
        self._connection.require_connected()
        return self._connection.transport.capture_screen(selector)

    def stop_all(self) -> int:
        """Fail every unfinished task with "stopped by user". Returns how many were stopped.

        No-op while disconnected. Tasks that already reached a terminal state
        are left alone.
        """
        if not self._connection.is_connected():
            logger.debug("[tasks] stop_all() while disconnected, nothing to do")
            return 0

        with self._lock:
            runs = [r for r in self._runs.values() if not r.task.is_terminal]

        stopped = 0
        for run in runs:
            if self._finish(run, TaskStatus.FAILED, error=STOPPED_BY_USER):
                stopped += 1
                self._cancel_work(run)

        logger.info("[tasks] Stopped %d automation task(s)", stopped)
        return stopped

    # ── Execution ────────────────────────────────────────────────────

    def _execute(self, run: _TaskRun) -> None:
        task = run.task
        max_retries = min(run.options.retries, MAX_TASK_RETRIES)
        attempt = 0
        t0 = self._clock.monotonic()

        while True:
            try:
                status = self._attempt(run)
                if status is None:
                    return
                if self._finish(run, TaskStatus.COMPLETED, result=status.result):
                    logger.info(
                        "[tasks] Task %s completed in %.1fs (%d retries)",
                        task.id,
                        self._clock.monotonic() - t0,
                        attempt,
                    )
                return
            except TaskFailure as e:
                if task.is_terminal:
                    return
                if e.transient and attempt < max_retries:
                    attempt += 1
                    if not self._prepare_retry(run, attempt, max_retries, e):
                        return
                    continue
                self._finish(run, TaskStatus.FAILED, error=str(e) or type(e).__name__)
                logger.warning("[tasks] Task %s failed after %d retries: %s", task.id, attempt, e)
                return
            except Exception as e:
                logger.error("[tasks] Task %s crashed: %s", task.id, e, exc_info=True)
                self._finish(run, TaskStatus.FAILED, error=f"Unexpected agent error: {e}")
                return

    def _attempt(self, run: _TaskRun):
        """One submit-and-poll cycle. Returns the completed WorkStatus, or None if
        the task was finished from outside (timeout, stop_all) meanwhile."""
        if run.task.is_terminal:
            return None
        self._check_link()

        transport = self._connection.transport
        with run.lock:
            outgoing = run.task.snapshot()
        run.work_id = transport.submit_work(outgoing)

        while True:
            if run.task.is_terminal:
                self._cancel_work(run)
                return None
            self._check_link()

            status = transport.poll_status(run.work_id)
            if status.screenshot:
                self._report_capture(run, status.screenshot)
            self._report_progress(run, status.progress)

            if status.state == "completed":
                return status
            if status.state == "failed":
                failure_cls = TransientTaskFailure if status.transient else PermanentTaskFailure
                raise failure_cls(status.error or "Agent reported a failure")

            self._clock.sleep(self._poll_interval)

    def _prepare_retry(self, run: _TaskRun, attempt: int, max_retries: int, error: Exception) -> bool:
        """Move the task back to pending, wait out the backoff, then mark it running.

        Returns False if the task was finished from outside during the wait.
        """
        options = run.options
        delay = min(options.retry_delay * (options.backoff ** (attempt - 1)), TASK_RETRY_MAX_DELAY)
        logger.warning(
            "[tasks] Task %s transient failure (%s), retry %d/%d in %.1fs",
            run.task.id,
            error,
            attempt,
            max_retries,
            delay,
        )

        with run.lock:
            if run.task.is_terminal:
                return False
            run.task.retry_count = attempt
            run.work_id = None
            self._set_status(run, TaskStatus.PENDING)

        self._clock.sleep(delay)

        with run.lock:
            if run.task.is_terminal:
                return False
            self._set_status(run, TaskStatus.RUNNING)
        return True

    def _check_link(self) -> None:
        if not self._connection.is_connected():
            raise PermanentTaskFailure(str(NotConnected()))

    def _expire(self, run: _TaskRun) -> None:
        """Timeout watchdog: fail the task and stop waiting on the agent."""
        if self._finish(run, TaskStatus.FAILED, error=str(TimeoutExceeded())):
            logger.warning("[tasks] Task %s timed out after %.1fs", run.task.id, run.options.timeout)
            self._cancel_work(run)

    def _cancel_work(self, run: _TaskRun) -> None:
        work_id = run.work_id
        if not work_id:
            return
        try:
            self._connection.transport.cancel(work_id)
        except Exception as e:
            logger.warning("[tasks] Could not cancel %s on the agent: %s", work_id, e)

    # ── State transitions ────────────────────────────────────────────

    def _finish(self, run: _TaskRun, status: TaskStatus, result: Any = None, error: Optional[str] = None) -> bool:
        """Move a task to its terminal state. Returns False if it was already terminal."""
        with run.lock:
            task = run.task
            if task.is_terminal:
                return False

            if status is TaskStatus.COMPLETED:
                if isinstance(result, dict) and task.retry_count:
                    result = {**result, "retries": task.retry_count}
                task.result = result if result is not None else {}
                task.error = None
            else:
                task.result = None
                task.error = error or "Task failed"
            task.finished_at = self._clock.time()
            self._set_status(run, status)
            final = task.snapshot()
            run.done.set()

        if run.timer is not None:
            run.timer.cancel()

        callback = run.options.on_complete
        if callback:
            try:
                callback(final)
            except Exception as e:
                logger.warning("[tasks] on_complete callback failed for %s: %s", task.id, e)
        return True

    def _set_status(self, run: _TaskRun, status: TaskStatus) -> None:
        """Caller must hold run.lock."""
        run.task.status = status
        self._emit(TaskEvent(status.value, run.task.snapshot()))

    def _report_progress(self, run: _TaskRun, value) -> None:
        try:
            value = max(0.0, min(100.0, float(value)))
        except (TypeError, ValueError):
            return

        with run.lock:
            if run.task.is_terminal:
                return
            if run.progress is not None and value <= run.progress:
                return
            run.progress = value

            callback = run.options.on_progress
            if callback:
                try:
                    callback(value)
                except Exception as e:
                    logger.debug("[tasks] on_progress callback failed for %s: %s", run.task.id, e)
            self._emit(TaskEvent("progress", run.task.snapshot(), progress=value))

    def _report_capture(self, run: _TaskRun, image: str) -> None:
        callback = run.options.on_screen_capture
        if not callback or run.task.is_terminal:
            return
        try:
            callback(image)
        except Exception as e:
            logger.debug("[tasks] on_screen_capture callback failed for %s: %s", run.task.id, e)

    def _emit(self, event: TaskEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                logger.debug("[tasks] Listener failed on %s event: %s", event.kind, e)

    # ── Helpers ──────────────────────────────────────────────────────

    def _materialize(self, draft: TaskDraft) -> AutomationTask:
        try:
            category = TaskCategory(draft.category) if draft.category else TaskCategory.CUSTOM
        except ValueError:
            valid = ", ".join(c.value for c in TaskCategory)
            raise InvalidTaskDraft(f"Unknown task category '{draft.category}' (expected one of: {valid})") from None

        if draft.parameters is not None and not isinstance(draft.parameters, dict):
            raise InvalidTaskDraft("Task parameters must be a mapping")

        return AutomationTask(
            id=draft.id or self._new_task_id(),
            category=category,
            action=draft.action or "execute",
            parameters=dict(draft.parameters or {}),
            status=TaskStatus.PENDING,
            created_at=self._clock.time(),
        )

    def _new_task_id(self) -> str:
        return f"task_{int(self._clock.time() * 1000)}_{uuid.uuid4().hex[:6]}"

    def _validate_options(self, options: TaskOptions) -> None:
        if options.retries < 0:
            raise InvalidTaskDraft("retries must be >= 0")
        if options.timeout is not None and options.timeout <= 0:
            raise InvalidTaskDraft("timeout must be a positive number of seconds")
        if options.retry_delay < 0 or options.backoff < 1:
            raise InvalidTaskDraft("retry_delay must be >= 0 and backoff >= 1")
        if options.retries > MAX_TASK_RETRIES:
            logger.warning("[tasks] Capping retries at %d (asked for %d)", MAX_TASK_RETRIES, options.retries)

    def _trim_history(self) -> None:
        """Drop the oldest finished tasks beyond the history limit. Caller holds self._lock."""
        finished = [task_id for task_id, r in self._runs.items() if r.task.is_terminal]
        excess = len(finished) - self._history_limit
        for task_id in finished[: max(excess, 0)]:
            del self._runs[task_id]

    def _get_run(self, task_id: str) -> _TaskRun:
        with self._lock:
            run = self._runs.get(task_id)
        if run is None:
            raise KeyError(f"Unknown task: {task_id}")
        return run

    @staticmethod
    def _snapshot(run: _TaskRun) -> AutomationTask:
        with run.lock:
            return run.task.snapshot()


def _short(d: dict) -> str:
    """Short dict representation for logging."""
    s = str(d)
    return s if len(s) <= 100 else s[:100] + "..."
