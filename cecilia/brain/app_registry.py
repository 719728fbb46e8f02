"""Application registry and keyword resolver.

Maps a spoken or typed phrase ("open chrome", "check my gmail") to a static
ApplicationDescriptor loaded once from apps.yaml.

Resolution order (first tier that matches wins):
    1. exact:   phrase equals a descriptor's name or command id
    2. keyword: first descriptor, in registry order, whose keyword is a
                substring of the phrase

There is no tokenization or stemming, so a short keyword can match inside an
unrelated word ("edge" in "knowledge"). The registry file is ordered so the
more specific entries are checked first.
"""

import logging
from dataclasses import dataclass
from typing import Optional

import yaml

from cecilia.brain.task_engine import TaskCategory
from cecilia.config import APP_REGISTRY_FILE

logger = logging.getLogger("cecilia.resolver")


@dataclass(frozen=True)
class ApplicationDescriptor:
    name: str
    command: str
    keywords: tuple[str, ...]
    url: Optional[str] = None
    category: str = TaskCategory.CUSTOM.value

    @property
    def primary_keyword(self) -> str:
        return self.keywords[0]


@dataclass(frozen=True)
class Resolution:
    """A resolved phrase: the descriptor, the tier that matched, and the matched text."""

    descriptor: ApplicationDescriptor
    tier: str  # "exact" | "keyword"
    matched: str


def load_registry(path: Optional[str] = None) -> dict[str, ApplicationDescriptor]:
    """Load the application registry from YAML, preserving file order.

    Raises ValueError if an entry has no keywords, if its key is not its
    primary keyword, or if its category is unknown.
    """
    path = path or APP_REGISTRY_FILE
    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}

    if not isinstance(data, dict):
        raise ValueError(f"Application registry {path} must be a mapping of key -> entry")

    registry = build_registry(data)
    logger.info("Loaded %d applications from %s", len(registry), path)
    return registry


def build_registry(entries: dict) -> dict[str, ApplicationDescriptor]:
    """Validate raw registry entries and turn them into descriptors."""
    valid_categories = {c.value for c in TaskCategory}
    registry: dict[str, ApplicationDescriptor] = {}

    for key, entry in entries.items():
        keywords = tuple(str(k).strip().lower() for k in (entry.get("keywords") or []) if str(k).strip())
        if not keywords:
            raise ValueError(f"Application '{key}' has no keywords")
        if str(key).lower() != keywords[0]:
            raise ValueError(f"Application key '{key}' must equal its primary keyword '{keywords[0]}'")

        category = entry.get("category", TaskCategory.CUSTOM.value)
        if category not in valid_categories:
            raise ValueError(f"Application '{key}' has unknown category '{category}'")

        registry[keywords[0]] = ApplicationDescriptor(
            name=entry["name"],
            command=entry["command"],
            keywords=keywords,
            url=entry.get("url"),
            category=category,
        )

    return registry


class KeywordResolver:
    """Resolve phrases against a read-only application registry."""

    def __init__(self, registry: dict[str, ApplicationDescriptor]):
        self._registry = dict(registry)

    @classmethod
    def from_file(cls, path: Optional[str] = None) -> "KeywordResolver":
        return cls(load_registry(path))

    @property
    def registry(self) -> dict[str, ApplicationDescriptor]:
        return dict(self._registry)

    def resolve(self, phrase: str) -> Optional[ApplicationDescriptor]:
        """Return the descriptor bound to this phrase, or None if nothing matches.

        None is the normal "no automation for this phrase" answer, callers
        fall through to their default command handling.
        """
        resolution = self.match(phrase)
        return resolution.descriptor if resolution else None

    def match(self, phrase: str) -> Optional[Resolution]:
        """Like resolve(), but also report which tier matched and on what."""
        if not phrase or not phrase.strip():
            return None

        text = phrase.strip().lower()

        for descriptor in self._registry.values():
            if text == descriptor.name.lower() or text == descriptor.command.lower():
                logger.debug("[resolve] %r -> %s (exact)", phrase, descriptor.name)
                return Resolution(descriptor, "exact", text)

        for descriptor in self._registry.values():
            for keyword in descriptor.keywords:
                if keyword in text:
                    logger.debug("[resolve] %r -> %s (keyword %r)", phrase, descriptor.name, keyword)
                    return Resolution(descriptor, "keyword", keyword)

        logger.debug("[resolve] %r -> no application", phrase)
        return None
