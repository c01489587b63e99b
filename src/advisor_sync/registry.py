"""
Domain Registry.

Static mapping between local domain names and remote field names.
This is the single source of truth for "what gets synchronized":
every domain has exactly one local key and one remote column, and the
mapping is total in both directions.

Key concepts:
- Domain: closed set of synchronized data categories
- ConflictRule: which arbitration variant the ConflictResolver applies
- DomainSpec: one row of the mapping
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Iterator, Mapping

from advisor_sync.errors import UnknownDomainError


class Domain(str, Enum):
    """Synchronized data categories."""

    PROFILE = "profile"
    ACTIVITIES = "activities"
    CHATS = "chats"
    PLAYBOOK = "playbook"
    INSIGHTS = "insights"
    CHECKINS = "checkins"
    NOTES = "notes"
    BOOKMARKS = "bookmarks"
    NUTRITION = "nutrition"
    GROCERY = "grocery"
    FOCUS_GOALS = "focus_goals"
    GOAL_HISTORY = "goal_history"
    SWAPS = "swaps"


class ConflictRule(str, Enum):
    """Conflict arbitration variant for a domain."""

    GENERIC = "generic"
    CALIBRATION = "calibration"  # Never regress day completion
    PROFILE = "profile"          # Never drop critical fields


@dataclass(frozen=True)
class DomainSpec:
    """
    One synchronized domain.

    Attributes:
        domain: The domain identifier
        local_key: Base key in the local store (before profile prefixing)
        remote_field: Column on the per-user remote row
        rule: Conflict arbitration variant
        prune_cap: Entries kept when local quota pruning truncates this domain
    """

    domain: Domain
    local_key: str
    remote_field: str
    rule: ConflictRule = ConflictRule.GENERIC
    prune_cap: int | None = None


_SPECS = (
    DomainSpec(Domain.PROFILE, "health-advisor-profile", "profile_data", ConflictRule.PROFILE),
    DomainSpec(Domain.ACTIVITIES, "health-advisor-activities", "activities_data", prune_cap=50),
    DomainSpec(Domain.CHATS, "health-advisor-chats", "chats_data", prune_cap=50),
    DomainSpec(Domain.PLAYBOOK, "health-advisor-playbook", "playbook_data"),
    DomainSpec(Domain.INSIGHTS, "health-advisor-learned-insights", "insights_data"),
    DomainSpec(Domain.CHECKINS, "health-advisor-checkins", "checkins_data", prune_cap=30),
    DomainSpec(Domain.NOTES, "health-advisor-notes", "notes_data"),
    DomainSpec(Domain.BOOKMARKS, "health-advisor-bookmarks", "bookmarks_data"),
    DomainSpec(
        Domain.NUTRITION,
        "health-advisor-nutrition-calibration",
        "nutrition_data",
        ConflictRule.CALIBRATION,
    ),
    DomainSpec(Domain.GROCERY, "health-advisor-groceries", "grocery_data"),
    DomainSpec(Domain.FOCUS_GOALS, "health-advisor-focus-goals", "goals_data"),
    DomainSpec(Domain.GOAL_HISTORY, "health-advisor-goal-history", "goal_history_data"),
    DomainSpec(Domain.SWAPS, "health-advisor-swaps", "swaps_data"),
)

# Profile-scoped local keys that live beside synchronized domains but never
# leave the device.
PROFILE_SCOPED_EXTRA_KEYS = frozenset({
    "health-advisor-chat",
    "health-advisor-checkin-reminder",
    "health-advisor-grocery",
    "health-advisor-playbook-suggestions",
    "health-advisor-nutrition-profile",
    "health-advisor-meal-pattern",
    "health-advisor-calibration-dismissed",
    "health-advisor-tracking",
    "health-advisor-custom-targets",
    "health-advisor-weekly-wins",
    "health-advisor-draft",
    "health-advisor-workouts",
    "health-advisor-tracked-metrics",
})


class DomainRegistry:
    """
    Immutable lookup table over DomainSpecs.

    Unknown names raise UnknownDomainError: asking for a domain that
    does not exist is a bug in the caller, not a sync failure.
    """

    def __init__(self, specs: tuple[DomainSpec, ...] | list[DomainSpec]):
        by_domain = {}
        by_local = {}
        by_remote = {}
        for spec in specs:
            if spec.domain in by_domain:
                raise ValueError(f"Duplicate domain: {spec.domain.value}")
            if spec.local_key in by_local:
                raise ValueError(f"Duplicate local key: {spec.local_key}")
            if spec.remote_field in by_remote:
                raise ValueError(f"Duplicate remote field: {spec.remote_field}")
            by_domain[spec.domain] = spec
            by_local[spec.local_key] = spec
            by_remote[spec.remote_field] = spec

        self._by_domain: Mapping[Domain, DomainSpec] = MappingProxyType(by_domain)
        self._by_local: Mapping[str, DomainSpec] = MappingProxyType(by_local)
        self._by_remote: Mapping[str, DomainSpec] = MappingProxyType(by_remote)

    def __iter__(self) -> Iterator[DomainSpec]:
        return iter(self._by_domain.values())

    def __len__(self) -> int:
        return len(self._by_domain)

    def __contains__(self, name: object) -> bool:
        try:
            self.resolve(name)  # type: ignore[arg-type]
        except UnknownDomainError:
            return False
        return True

    def resolve(self, name: Domain | str) -> Domain:
        """Normalize a domain name, local key or Domain member to a Domain."""
        if isinstance(name, Domain):
            return name
        if isinstance(name, str):
            try:
                return Domain(name)
            except ValueError:
                pass
            spec = self._by_local.get(name)
            if spec is not None:
                return spec.domain
        raise UnknownDomainError(name)

    def get(self, name: Domain | str) -> DomainSpec:
        return self._by_domain[self.resolve(name)]

    def by_local_key(self, local_key: str) -> DomainSpec:
        try:
            return self._by_local[local_key]
        except KeyError:
            raise UnknownDomainError(local_key) from None

    def by_remote_field(self, remote_field: str) -> DomainSpec:
        try:
            return self._by_remote[remote_field]
        except KeyError:
            raise UnknownDomainError(remote_field) from None

    def domains(self) -> list[Domain]:
        return list(self._by_domain)

    def local_keys(self) -> list[str]:
        return list(self._by_local)

    def remote_fields(self) -> list[str]:
        return list(self._by_remote)


REGISTRY = DomainRegistry(_SPECS)


__all__ = [
    "Domain",
    "ConflictRule",
    "DomainSpec",
    "DomainRegistry",
    "REGISTRY",
    "PROFILE_SCOPED_EXTRA_KEYS",
]
