"""
Personality configuration and greeting responder for Cecilia.

Loads personality from YAML presets (cecilia/personalities/*.yaml) or uses defaults.
No module-level singleton: build a PersonalityConfig once at startup, turn it
into a ConversationState and hand both to the PersonalityResponder.
"""

import logging
import math
import random
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Optional

import yaml

from cecilia.config import HUMOR_PROBABILITY, IDLE_REMINDER_MINUTES
from cecilia.utils.clock import SYSTEM_CLOCK, Clock

logger = logging.getLogger("cecilia.personality")

PERSONALITIES_DIR = Path(__file__).parent / "personalities"

DEFAULT_WELCOME = "Hello, I'm Cecilia, your voice-first AI assistant. How may I help you today?"

_DEFAULT_JOKES = [
    "I tried to make a reservation at the library, but they were all booked.",
    "Why don't scientists trust atoms? Because they make up everything!",
    "I'm reading a book about anti-gravity. It's impossible to put down.",
    "Time flies like an arrow. Fruit flies like a banana.",
    "I'd tell you a chemistry joke, but I'm afraid I wouldn't get a reaction.",
]

# Event reminder phrasing per formality level
_REMINDER_TEMPLATES = {
    "casual": "Heads up: {event} is coming up in {days}.",
    "professional": "By the way, I should remind you that you have {event} coming up in {days}.",
    "formal": "Please be reminded that {event} is scheduled in {days}.",
}


class Formality(str, Enum):
    CASUAL = "casual"
    PROFESSIONAL = "professional"
    FORMAL = "formal"


@dataclass
class PersonalityTraits:
    humor: bool = True
    proactive: bool = True
    formality: Formality = Formality.PROFESSIONAL


@dataclass
class UpcomingEvent:
    when: datetime
    description: str


@dataclass
class PersonalityConfig:
    name: str = "Cecilia"
    welcome_message: str = DEFAULT_WELCOME
    humor: bool = True
    proactive: bool = True
    formality: str = "professional"  # "casual" | "professional" | "formal"
    jokes: list[str] = field(default_factory=lambda: list(_DEFAULT_JOKES))


@dataclass
class ConversationState:
    """What the responder needs to know about the conversation so far."""

    welcome_message: str = DEFAULT_WELCOME
    traits: PersonalityTraits = field(default_factory=PersonalityTraits)
    events: list[UpcomingEvent] = field(default_factory=list)
    last_interaction: Optional[datetime] = None  # set from the responder's clock

    @classmethod
    def from_config(cls, config: PersonalityConfig, now: Optional[datetime] = None) -> "ConversationState":
        return cls(
            welcome_message=config.welcome_message,
            traits=PersonalityTraits(
                humor=config.humor,
                proactive=config.proactive,
                formality=Formality(config.formality),
            ),
            last_interaction=now,
        )

    def set_welcome_message(self, message: str) -> None:
        self.welcome_message = message

    def set_trait(self, trait: str, value) -> None:
        """Set humor/proactive (bool) or formality (Formality or its string value)."""
        if trait == "formality":
            self.traits.formality = Formality(value)
        elif trait in ("humor", "proactive") and isinstance(value, bool):
            setattr(self.traits, trait, value)
        else:
            raise ValueError(f"Invalid personality trait {trait}={value!r}")

    def add_event(self, when: datetime, description: str) -> None:
        self.events.append(UpcomingEvent(when, description))


def load_personality(name_or_path: str) -> PersonalityConfig:
    """Load a personality from a YAML preset name or file path.

    Looks for cecilia/personalities/{name}.yaml first, then treats the arg
    as a direct file path. Missing fields fall back to dataclass defaults.
    """
    yaml_path = PERSONALITIES_DIR / f"{name_or_path}.yaml"
    if not yaml_path.is_file():
        yaml_path = Path(name_or_path)
    if not yaml_path.is_file():
        available = [f.stem for f in PERSONALITIES_DIR.glob("*.yaml")]
        raise FileNotFoundError(f"Personality '{name_or_path}' not found. Available: {', '.join(available) or 'none'}")

    with open(yaml_path, encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}

    # Unknown keys in the file are ignored
    known_fields = PersonalityConfig.__dataclass_fields__
    config_kwargs = {k: v for k, v in data.items() if k in known_fields}
    if not config_kwargs.get("jokes"):
        config_kwargs.pop("jokes", None)

    config = PersonalityConfig(**config_kwargs)
    Formality(config.formality)  # reject unknown formality at load time
    logger.info(
        "Personality loaded: %s (humor=%s, proactive=%s, formality=%s)",
        config.name,
        config.humor,
        config.proactive,
        config.formality,
    )
    return config


class PersonalityResponder:
    """Builds greetings from conversation state. Clock and randomness are injectable."""

    def __init__(
        self,
        clock: Optional[Clock] = None,
        rng: Optional[random.Random] = None,
        jokes: Optional[list[str]] = None,
        humor_probability: float = HUMOR_PROBABILITY,
        idle_minutes: float = IDLE_REMINDER_MINUTES,
    ):
        self._clock = clock or SYSTEM_CLOCK
        self._rng = rng or random.Random()
        self._jokes = list(jokes) if jokes else list(_DEFAULT_JOKES)
        self._humor_probability = humor_probability
        self._idle_seconds = idle_minutes * 60

    def get_welcome_message(self, state: ConversationState) -> str:
        """Welcome template, plus the nearest upcoming event, plus (sometimes) a joke."""
        greeting = state.welcome_message
        now = self._clock.now()

        event = self.upcoming_event(state, now)
        if event is not None:
            days = self.days_until(event, now)
            template = _REMINDER_TEMPLATES[Formality(state.traits.formality).value]
            greeting += " " + template.format(
                event=event.description,
                days=f"{days} day" if days == 1 else f"{days} days",
            )

        if state.traits.humor and self._rng.random() < self._humor_probability:
            greeting += " " + self._rng.choice(self._jokes)

        return greeting

    def update_last_interaction(self, state: ConversationState) -> None:
        state.last_interaction = self._clock.now()

    def idle_seconds(self, state: ConversationState) -> float:
        if state.last_interaction is None:
            self.update_last_interaction(state)
        return max(0.0, (self._clock.now() - state.last_interaction).total_seconds())

    def is_idle(self, state: ConversationState) -> bool:
        """True once the user has been silent longer than the idle threshold."""
        return self.idle_seconds(state) > self._idle_seconds

    @staticmethod
    def upcoming_event(state: ConversationState, now: datetime) -> Optional[UpcomingEvent]:
        """Earliest event that has not happened yet, or None."""
        future = [e for e in state.events if e.when > now]
        if not future:
            return None
        return min(future, key=lambda e: e.when)

    @staticmethod
    def days_until(event: UpcomingEvent, now: datetime) -> int:
        """Whole days until the event, partial days rounded up."""
        return math.ceil((event.when - now).total_seconds() / 86400)
