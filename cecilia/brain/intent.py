"""Local rule-based command intent classification.

Cheap keyword heuristics, no API calls. Used for commands that do not name a
registered application, and to pick the action when they do ("send an email
to Sam" resolves the email client, but the action is send_email).
"""

import re
from dataclasses import dataclass, field

# intent -> (task category, task action)
INTENT_TASKS = {
    "send_email": ("email", "send_email"),
    "create_calendar_event": ("calendar", "create_event"),
    "analyze_data": ("data", "analyze"),
    "take_notes": ("custom", "take_notes"),
    "open_application": ("custom", "open"),
    "browse": ("web", "open_url"),
}

_URL_RE = re.compile(r"(https?://[^\s]+)", re.IGNORECASE)
_RECIPIENT_RE = re.compile(r"\bto\s+([a-zA-Z\s]+)", re.IGNORECASE)
_DATE_RE = re.compile(r"\bon\s+([a-zA-Z0-9\s,]+)", re.IGNORECASE)
_TITLE_RE = re.compile(r"\bfor\s+([a-zA-Z0-9\s]+)", re.IGNORECASE)
_OPEN_RE = re.compile(r"\b(?:open|launch|start)\s+([a-zA-Z0-9\s]+)", re.IGNORECASE)


@dataclass
class Intent:
    name: str
    entities: dict = field(default_factory=dict)
    confidence: float = 0.5

    @property
    def known(self) -> bool:
        return self.name != "unknown"

    @property
    def category(self):
        return INTENT_TASKS.get(self.name, (None, None))[0]

    @property
    def action(self):
        return INTENT_TASKS.get(self.name, (None, None))[1]


def _capture(pattern: re.Pattern, text: str):
    match = pattern.search(text)
    if match and match.group(1).strip():
        return match.group(1).strip()
    return None


def classify_command(text: str) -> Intent:
    """Classify a command by keyword. First rule that fires wins."""
    if not text or not text.strip():
        return Intent("unknown")

    lower = text.lower()
    entities = {}

    url = _capture(_URL_RE, text)
    if url:
        return Intent("browse", {"url": url}, 0.8)

    if "email" in lower or "send" in lower:
        recipient = _capture(_RECIPIENT_RE, text)
        if recipient:
            entities["recipient"] = recipient
        return Intent("send_email", entities, 0.8)

    if "schedule" in lower or "calendar" in lower:
        date = _capture(_DATE_RE, text)
        if date:
            entities["date"] = date
        return Intent("create_calendar_event", entities, 0.8)

    if "analyze" in lower or "data" in lower:
        return Intent("analyze_data", entities, 0.8)

    if "note" in lower or "transcribe" in lower:
        title = _capture(_TITLE_RE, text)
        if title:
            entities["title"] = title
        return Intent("take_notes", entities, 0.8)

    if "open" in lower or "launch" in lower or "start" in lower:
        app_name = _capture(_OPEN_RE, text)
        if app_name:
            entities["app_name"] = app_name
        return Intent("open_application", entities, 0.8)

    return Intent("unknown")
