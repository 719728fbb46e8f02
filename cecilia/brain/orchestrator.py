"""Command orchestrator — the facade the presentation layer talks to.

    raw text -> intent + keyword resolution -> TaskDraft -> TaskLifecycleEngine
             -> progress / terminal events -> AssistantState + spoken reply

Every collaborator is constructed by the caller and injected, so tests can
swap in a fake agent transport, a fake clock and a seeded random source.
"""

import logging
import re
from dataclasses import dataclass
from typing import Callable, Optional

from cecilia.brain.agent_connection import AgentConnection, ConnectionState
from cecilia.brain.app_registry import ApplicationDescriptor, KeywordResolver
from cecilia.brain.intent import Intent, classify_command
from cecilia.brain.task_engine import (
    AutomationTask,
    TaskDraft,
    TaskEvent,
    TaskLifecycleEngine,
    TaskOptions,
    TaskStatus,
)
from cecilia.dashboard.state import AssistantState
from cecilia.personality import ConversationState, PersonalityResponder

logger = logging.getLogger("cecilia.orchestrator")

_LEADING_VERB_RE = re.compile(r"^\s*(?:please\s+)?(?:open|launch|start|go to|show me|check)\s+", re.IGNORECASE)

DEFAULT_REPLY = "I'm not sure how to help with that yet. Try asking me to open an app, send an email or schedule something."


@dataclass
class CommandOutcome:
    kind: str  # "task" | "browser" | "unhandled"
    text: str
    intent: Intent
    message: str
    descriptor: Optional[ApplicationDescriptor] = None
    task: Optional[AutomationTask] = None
    url: Optional[str] = None


class Orchestrator:
    """Turns commands into automation tasks and reports their outcome."""

    def __init__(
        self,
        resolver: KeywordResolver,
        connection: AgentConnection,
        engine: TaskLifecycleEngine,
        responder: PersonalityResponder,
        conversation: ConversationState,
        state: Optional[AssistantState] = None,
        speak: Optional[Callable[[str], None]] = None,
    ):
        self._resolver = resolver
        self._connection = connection
        self._engine = engine
        self._responder = responder
        self._conversation = conversation
        self._speak = speak
        self.state = state or AssistantState()

        self._connection.add_listener(self._on_connection_change)
        self._engine.add_listener(self._on_task_event)
        self.state.set_connection(self._connection.state.value)
        self.state.set_status("idle")

    # ── Inbound pass-throughs ────────────────────────────────────────

    def resolve(self, phrase: str) -> Optional[ApplicationDescriptor]:
        return self._resolver.resolve(phrase)

    def submit(self, draft: Optional[TaskDraft] = None, options: Optional[TaskOptions] = None) -> AutomationTask:
        return self._engine.submit(draft, options)

    def connect(self, credential: str) -> None:
        self._connection.connect(credential)

    def disconnect(self) -> None:
        self._connection.disconnect()

    def is_connected(self) -> bool:
        return self._connection.is_connected()

    def capture_screen(self, selector: Optional[str] = None) -> str:
        image = self._engine.capture_screen(selector)
        self.state.set_last_capture(selector, image)
        return image

    def stop_all(self) -> int:
        return self._engine.stop_all()

    def get_welcome_message(self, state: Optional[ConversationState] = None) -> str:
        return self._responder.get_welcome_message(state or self._conversation)

    def update_last_interaction(self) -> None:
        self._responder.update_last_interaction(self._conversation)

    # ── Commands ─────────────────────────────────────────────────────

    def handle_command(self, text: str, options: Optional[TaskOptions] = None, wait: bool = True) -> CommandOutcome:
        """Resolve a command, run it on the agent and return what happened.

        Raises NotConnected if the command needs the agent and the link is
        down (unless the application has a browser URL to fall back to).
        Task failures are reported in the outcome, not raised.
        """
        self.update_last_interaction()
        text = (text or "").strip()
        intent = classify_command(text)
        if not text:
            return self._reply(CommandOutcome("unhandled", text, intent, DEFAULT_REPLY))

        self.state.add_conversation("user", text)
        resolution = self._resolver.match(text)
        descriptor = resolution.descriptor if resolution else None
        logger.info(
            "Command %r -> intent=%s, app=%s",
            text,
            intent.name,
            descriptor.name if descriptor else None,
        )

        if descriptor is not None:
            if not self._connection.is_connected() and descriptor.url:
                message = f"I've opened {descriptor.name} in a new browser tab."
                return self._reply(
                    CommandOutcome("browser", text, intent, message, descriptor=descriptor, url=descriptor.url)
                )
            draft = self._draft_for_app(text, intent, descriptor, resolution.matched)
        elif intent.known:
            draft = TaskDraft(category=intent.category, action=intent.action, parameters=dict(intent.entities))
        else:
            return self._reply(CommandOutcome("unhandled", text, intent, DEFAULT_REPLY))

        self.state.set_status("working")
        try:
            task = self._engine.submit(draft, options)
            if wait:
                task = self._engine.wait(task.id)
        finally:
            self.state.set_status("idle")

        message = self._describe(task, descriptor)
        return self._reply(CommandOutcome("task", text, intent, message, descriptor=descriptor, task=task))

    def _draft_for_app(
        self, text: str, intent: Intent, descriptor: ApplicationDescriptor, matched: str
    ) -> TaskDraft:
        parameters = {"command": descriptor.command, "application": descriptor.name}
        if descriptor.url:
            parameters["url"] = descriptor.url

        query = _residual(text, matched)
        if query:
            parameters["query"] = query

        # An explicit launch verb ("open email") always opens the app.
        action = "open"
        launch = _LEADING_VERB_RE.match(text) is not None
        if not launch and intent.known and intent.name not in ("open_application", "browse"):
            action = intent.action
            parameters.update(intent.entities)

        return TaskDraft(category=descriptor.category, action=action, parameters=parameters)

    @staticmethod
    def _describe(task: AutomationTask, descriptor: Optional[ApplicationDescriptor]) -> str:
        what = descriptor.name if descriptor else task.action.replace("_", " ")
        if task.status is TaskStatus.COMPLETED:
            if descriptor and task.action == "open":
                return f"I've opened {what} for you. Is there anything specific you'd like to do with it?"
            return f"Done. I've finished the {task.action.replace('_', ' ')} task."
        if task.status is TaskStatus.FAILED:
            return f"I tried to handle {what}, but encountered an error: {task.error}."
        return f"I'm working on {what}. I'll let you know when it's done."

    def _reply(self, outcome: CommandOutcome) -> CommandOutcome:
        self.state.add_conversation("assistant", outcome.message)
        if self._speak:
            try:
                self._speak(outcome.message)
            except Exception as e:
                logger.warning("Speech output failed: %s", e)
        return outcome

    # ── Outbound events ──────────────────────────────────────────────

    def _on_connection_change(self, state: ConnectionState) -> None:
        self.state.set_connection(state.value)

    def _on_task_event(self, event: TaskEvent) -> None:
        if event.kind == "progress":
            self.state.set_task_progress(event.task.id, event.progress)
        else:
            self.state.upsert_task(event.task.to_dict())


def _residual(text: str, matched: str) -> str:
    """What is left of the command once the verb and the app keyword are removed."""
    rest = _LEADING_VERB_RE.sub("", text)
    idx = rest.lower().find(matched.lower()) if matched else -1
    if idx >= 0:
        rest = rest[:idx] + rest[idx + len(matched):]
    return " ".join(rest.split())
