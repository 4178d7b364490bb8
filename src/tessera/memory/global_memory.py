"""Cross-project memory of patterns, expertise, preferences and projects.

GlobalMemory keeps what has been learned about a developer in a user-wide
location so it survives across every project they work on. Four partitions
back it: ``global/patterns``, ``global/expertise``, ``global/preferences``
and ``global/projects``.

Records are created on first observation and mutated in place afterwards;
nothing is deleted except by an explicit ``clear()``. Every mutation stages
the affected partition on the injected PersistentStore, which batches the
physical writes.

Example:
    >>> memory = GlobalMemory(PersistentStore(tmp_path, debounce_ms=0))
    >>> memory.record_pattern("naming", "camelCase", confidence=0.9, source="api")
    >>> memory.add_expertise("backend", 0.8)
    >>> memory.get_confident_patterns()[0].value
    'camelCase'
"""

from __future__ import annotations

import uuid
from pathlib import PurePath
from typing import Any

from tessera.core.logging import get_logger
from tessera.memory.models import (
    ExpertiseEntry,
    Pattern,
    Preference,
    ProjectRecord,
    clamp,
    utc_now,
)
from tessera.memory.persistence import PersistentStore, parse_keyed_records, parse_records

_logger = get_logger("global_memory")

PATTERNS_PARTITION = "global/patterns"
EXPERTISE_PARTITION = "global/expertise"
PREFERENCES_PARTITION = "global/preferences"
PROJECTS_PARTITION = "global/projects"

DEFAULT_CONFIDENCE = 0.5
REINFORCEMENT_STEP = 0.1
"""Confidence added each time an existing pattern is observed again."""

EXPERTISE_RETENTION = 0.7
"""Weight kept by the existing expertise level when a new observation arrives."""

CONFIDENT_THRESHOLD = 0.7
PROFILE_IMPORT_CONFIDENCE = 0.6
PROFILE_LANGUAGE_LEVEL = 0.7
PROFILE_EXPERTISE_LEVEL = 0.6


def blend_expertise(existing: float, observed: float) -> float:
    """Exponentially weighted blend of an expertise level with a new observation."""
    return clamp(
        existing * EXPERTISE_RETENTION + observed * (1 - EXPERTISE_RETENTION),
        0.0,
        1.0,
    )


class GlobalMemory:
    """User-wide persistent memory of learned patterns and preferences.

    Reads lazily load every partition on first use. A partition that is
    missing or corrupt loads empty, so a fresh or damaged store still works.

    Attributes:
        store: The PersistentStore holding the four global partitions.
        initialized: Whether the partitions have been loaded.
    """

    def __init__(self, store: PersistentStore | None = None) -> None:
        self.store = store or PersistentStore()
        self.initialized = False
        self._patterns: list[Pattern] = []
        self._expertise: dict[str, ExpertiseEntry] = {}
        self._preferences: dict[str, Preference] = {}
        self._projects: list[ProjectRecord] = []

    def init(self) -> GlobalMemory:
        """(Re)load every partition from the store.

        Returns:
            This instance, for chaining.
        """
        self._patterns = parse_records(
            PATTERNS_PARTITION,
            self.store.load(PATTERNS_PARTITION, []),
            Pattern.from_dict,
            required="type",
        )
        self._expertise = parse_keyed_records(
            EXPERTISE_PARTITION,
            self.store.load(EXPERTISE_PARTITION, {}),
            ExpertiseEntry.from_dict,
        )
        self._preferences = parse_keyed_records(
            PREFERENCES_PARTITION,
            self.store.load(PREFERENCES_PARTITION, {}),
            Preference.from_dict,
        )
        self._projects = parse_records(
            PROJECTS_PARTITION,
            self.store.load(PROJECTS_PARTITION, []),
            ProjectRecord.from_dict,
            required="path",
        )
        self.initialized = True
        _logger.debug(
            "global_memory_loaded",
            patterns=len(self._patterns),
            expertise=len(self._expertise),
            projects=len(self._projects),
        )
        return self

    def _ensure_loaded(self) -> None:
        if not self.initialized:
            self.init()

    def flush(self) -> None:
        """Write any pending changes immediately."""
        self.store.flush()

    @property
    def patterns(self) -> list[Pattern]:
        """Every stored pattern instance, in insertion order."""
        self._ensure_loaded()
        return list(self._patterns)

    @property
    def projects(self) -> list[ProjectRecord]:
        self._ensure_loaded()
        return list(self._projects)

    @property
    def expertise(self) -> dict[str, ExpertiseEntry]:
        self._ensure_loaded()
        return dict(self._expertise)

    # ------------------------------------------------------------------
    # Persistence helpers
    # ------------------------------------------------------------------

    def _save_patterns(self) -> None:
        self.store.put(PATTERNS_PARTITION, [p.to_dict() for p in self._patterns])

    def _save_expertise(self) -> None:
        self.store.put(
            EXPERTISE_PARTITION,
            {domain: e.to_dict() for domain, e in self._expertise.items()},
        )

    def _save_preferences(self) -> None:
        self.store.put(
            PREFERENCES_PARTITION,
            {key: p.to_dict() for key, p in self._preferences.items()},
        )

    def _save_projects(self) -> None:
        self.store.put(PROJECTS_PARTITION, [p.to_dict() for p in self._projects])

    # ------------------------------------------------------------------
    # Patterns
    # ------------------------------------------------------------------

    def find_pattern(self, pattern_type: str, value: str) -> Pattern | None:
        """Return the stored pattern with this ``(type, value)`` identity, if any."""
        self._ensure_loaded()
        for pattern in self._patterns:
            if pattern.type == pattern_type and pattern.value == value:
                return pattern
        return None

    def record_pattern(
        self,
        pattern_type: str,
        value: str,
        confidence: float | None = None,
        source: str | None = None,
    ) -> Pattern:
        """Record an observed pattern.

        A pattern already known is reinforced: one more occurrence, confidence
        nudged up by 0.1 (capped at 1.0), ``source`` appended if new and
        ``last_seen`` refreshed. Otherwise a new record is inserted.

        Args:
            pattern_type: Pattern family (naming, structure, async, ...).
            value: The pattern itself, e.g. ``camelCase``.
            confidence: Initial confidence for a new pattern (default 0.5).
                Ignored when reinforcing.
            source: Project identifier the observation came from.

        Returns:
            The stored (new or reinforced) pattern.
        """
        existing = self.find_pattern(pattern_type, value)
        now = utc_now()

        if existing is not None:
            existing.occurrences += 1
            existing.confidence = min(1.0, existing.confidence + REINFORCEMENT_STEP)
            existing.last_seen = now
            if source and source not in existing.sources:
                existing.sources.append(source)
            record = existing
            _logger.debug(
                "pattern_reinforced",
                pattern_type=pattern_type,
                occurrences=existing.occurrences,
                confidence=existing.confidence,
            )
        else:
            record = Pattern(
                id=f"gp-{uuid.uuid4().hex[:12]}",
                type=pattern_type,
                value=value,
                confidence=clamp(
                    DEFAULT_CONFIDENCE if confidence is None else confidence, 0.0, 1.0
                ),
                occurrences=1,
                sources=[source] if source else [],
                created_at=now,
                last_seen=now,
            )
            self._patterns.append(record)
            _logger.debug("pattern_recorded", pattern_type=pattern_type, source=source)

        self._save_patterns()
        return record

    def replace_pattern(self, pattern: Pattern) -> None:
        """Persist in-place edits to a stored pattern, clamping its confidence."""
        self._ensure_loaded()
        pattern.confidence = clamp(pattern.confidence, 0.0, 1.0)
        self._save_patterns()

    def get_patterns_by_type(self, pattern_type: str) -> list[Pattern]:
        """Patterns of one type, most confident first."""
        self._ensure_loaded()
        return sorted(
            (p for p in self._patterns if p.type == pattern_type),
            key=lambda p: p.confidence,
            reverse=True,
        )

    def get_dominant_pattern(self, pattern_type: str) -> Pattern | None:
        """The most confident pattern of a type, or None."""
        patterns = self.get_patterns_by_type(pattern_type)
        return patterns[0] if patterns else None

    def get_confident_patterns(self, min_confidence: float = CONFIDENT_THRESHOLD) -> list[Pattern]:
        """Patterns at or above ``min_confidence``, most confident first."""
        self._ensure_loaded()
        return sorted(
            (p for p in self._patterns if p.confidence >= min_confidence),
            key=lambda p: p.confidence,
            reverse=True,
        )

    # ------------------------------------------------------------------
    # Expertise
    # ------------------------------------------------------------------

    def add_expertise(self, domain: str, level: float) -> ExpertiseEntry:
        """Record an expertise observation.

        An existing level becomes ``existing * 0.7 + level * 0.3``; an unknown
        domain is inserted at ``level`` (clamped to [0, 1]).
        """
        self._ensure_loaded()
        now = utc_now()
        current = self._expertise.get(domain)
        if current is not None:
            current.level = blend_expertise(current.level, level)
            current.observation_count += 1
            current.last_updated = now
            entry = current
        else:
            entry = ExpertiseEntry(
                domain=domain,
                level=clamp(level, 0.0, 1.0),
                created_at=now,
                last_updated=now,
            )
            self._expertise[domain] = entry

        self._save_expertise()
        return entry

    def get_expertise(self, domain: str) -> float:
        """Expertise level for a domain, or 0.0 when unknown."""
        self._ensure_loaded()
        entry = self._expertise.get(domain)
        return entry.level if entry else 0.0

    def get_all_expertise(self) -> dict[str, ExpertiseEntry]:
        return self.expertise

    def get_top_expertise(self, limit: int = 5) -> list[ExpertiseEntry]:
        """The ``limit`` strongest expertise domains, strongest first."""
        self._ensure_loaded()
        ranked = sorted(self._expertise.values(), key=lambda e: e.level, reverse=True)
        return ranked[:limit]

    # ------------------------------------------------------------------
    # Preferences
    # ------------------------------------------------------------------

    def set_preference(self, key: str, value: Any) -> None:
        """Set a preference; the last write wins."""
        self._ensure_loaded()
        self._preferences[key] = Preference(key=key, value=value, updated_at=utc_now())
        self._save_preferences()

    def get_preference(self, key: str, default: Any = None) -> Any:
        """Preference value, or ``default`` when unset or set to None."""
        self._ensure_loaded()
        preference = self._preferences.get(key)
        if preference is None or preference.value is None:
            return default
        return preference.value

    def get_all_preferences(self) -> dict[str, Any]:
        self._ensure_loaded()
        return {key: p.value for key, p in self._preferences.items()}

    # ------------------------------------------------------------------
    # Projects
    # ------------------------------------------------------------------

    def register_project(
        self,
        project_path: str,
        metadata: dict[str, Any] | None = None,
    ) -> ProjectRecord:
        """Register a project, or refresh it if already known.

        A known project gets a new ``last_accessed``, one more access and its
        metadata merged with ``metadata``. A new project is named after
        ``metadata["name"]`` or the last path component.
        """
        self._ensure_loaded()
        metadata = dict(metadata or {})
        now = utc_now()

        existing = next((p for p in self._projects if p.path == project_path), None)
        if existing is not None:
            existing.last_accessed = now
            existing.access_count += 1
            existing.metadata.update(metadata)
            record = existing
        else:
            record = ProjectRecord(
                path=project_path,
                name=metadata.get("name") or PurePath(project_path).name or project_path,
                metadata=metadata,
                registered_at=now,
                last_accessed=now,
            )
            self._projects.append(record)
            _logger.info("project_registered", project=project_path, name=record.name)

        self._save_projects()
        return record

    def get_projects(self) -> list[ProjectRecord]:
        return self.projects

    def get_recent_projects(self, limit: int = 10) -> list[ProjectRecord]:
        """Projects ordered by most recent access."""
        self._ensure_loaded()
        ranked = sorted(self._projects, key=lambda p: p.last_accessed, reverse=True)
        return ranked[:limit]

    # ------------------------------------------------------------------
    # Profile sync
    # ------------------------------------------------------------------

    def import_from_profile(self, profile: dict[str, Any], project_path: str) -> None:
        """Fold a per-project profile document into global memory.

        Patterns come in at moderate confidence tagged with the project name,
        primary languages and declared expertise become expertise
        observations, and the project itself is registered.
        """
        project_name = PurePath(project_path).name or project_path

        for item in profile.get("patterns") or []:
            value = item.get("description") or item.get("pattern")
            if not item.get("type") or not value:
                continue
            self.record_pattern(
                item["type"],
                value,
                confidence=PROFILE_IMPORT_CONFIDENCE,
                source=project_name,
            )

        languages = (profile.get("tooling") or {}).get("primaryLanguages") or []
        for language in languages:
            self.add_expertise(language, PROFILE_LANGUAGE_LEVEL)

        for area in profile.get("expertise") or []:
            if isinstance(area, str):
                self.add_expertise(area, PROFILE_EXPERTISE_LEVEL)
            elif isinstance(area, dict) and area.get("domain"):
                self.add_expertise(area["domain"], area.get("level") or PROFILE_EXPERTISE_LEVEL)

        self.register_project(
            project_path,
            {"name": profile.get("name") or project_name, "languages": list(languages)},
        )
        _logger.info("profile_imported", project=project_path)

    def export_to_profile(self, profile: dict[str, Any]) -> dict[str, Any]:
        """Return a copy of ``profile`` enriched with global knowledge."""
        enhanced = dict(profile)
        enhanced["globalPatterns"] = [
            {
                "type": p.type,
                "pattern": p.value,
                "confidence": p.confidence,
                "fromProjects": len(p.sources),
            }
            for p in self.get_confident_patterns(CONFIDENT_THRESHOLD)
        ]
        enhanced["globalExpertise"] = [
            {"domain": e.domain, **e.to_dict()} for e in self.get_top_expertise(10)
        ]
        enhanced["globalPreferences"] = self.get_all_preferences()
        return enhanced

    # ------------------------------------------------------------------
    # Utilities
    # ------------------------------------------------------------------

    def clear(self) -> None:
        """Forget everything. Destructive."""
        self._patterns = []
        self._expertise = {}
        self._preferences = {}
        self._projects = []
        self.initialized = True
        self._save_patterns()
        self._save_expertise()
        self._save_preferences()
        self._save_projects()
        _logger.warning("global_memory_cleared")

    def get_stats(self) -> dict[str, Any]:
        """Summary counts over everything stored."""
        self._ensure_loaded()
        return {
            "total_patterns": len(self._patterns),
            "pattern_types": sorted({p.type for p in self._patterns}),
            "expertise_areas": len(self._expertise),
            "preferences_count": len(self._preferences),
            "projects_count": len(self._projects),
            "high_confidence_patterns": sum(
                1 for p in self._patterns if p.confidence >= CONFIDENT_THRESHOLD
            ),
        }


__all__ = [
    "CONFIDENT_THRESHOLD",
    "EXPERTISE_PARTITION",
    "GlobalMemory",
    "PATTERNS_PARTITION",
    "PREFERENCES_PARTITION",
    "PROJECTS_PARTITION",
    "blend_expertise",
]
