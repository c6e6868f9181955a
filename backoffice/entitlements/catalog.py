"""
Feature catalog - read-only registry of feature definitions.

The requires_all relation forms a DAG over feature keys. It is kept as an
adjacency map; the transitive closure is computed once at construction and
never recomputed.

Validated at construction (CatalogConfigurationError on violation):
- keys are unique
- every dependency names a catalog key
- the dependency graph is acyclic
- always-on features depend only on always-on features
"""

import enum
import logging
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Iterable, List, Tuple

from backoffice.entitlements.errors import CatalogConfigurationError, UnknownFeatureError

logger = logging.getLogger(__name__)


class FeatureCategory(str, enum.Enum):
    CORE = "core"
    ORDERING = "ordering"
    OPERATIONS = "operations"
    INTELLIGENCE = "intelligence"
    NOTIFICATIONS = "notifications"


@dataclass(frozen=True)
class FeatureDefinition:
    """
    A single catalog feature.

    Immutable - safe to share across threads.
    """
    key: str
    category: FeatureCategory
    requires_all: FrozenSet[str] = field(default_factory=frozenset)
    always_on: bool = False
    label: str = ""
    description: str = ""

    def to_dict(self) -> dict:
        return {
            "key": self.key,
            "label": self.label or self.key.replace("_", " ").title(),
            "description": self.description,
            "category": self.category.value,
            "requires_all": sorted(self.requires_all),
            "always_on": self.always_on,
        }


class FeatureCatalog:
    """
    Immutable feature registry.

    Usage:
        catalog = FeatureCatalog(definitions)
        catalog.get("receipt_printing").requires_all
        catalog.dependencies_of("suggestions")  # transitive
    """

    def __init__(self, definitions: Iterable[FeatureDefinition]):
        self._ordered: Tuple[FeatureDefinition, ...] = tuple(definitions)
        self._by_key: Dict[str, FeatureDefinition] = {}

        for definition in self._ordered:
            if definition.key in self._by_key:
                raise CatalogConfigurationError(
                    f"Duplicate feature key '{definition.key}'"
                )
            self._by_key[definition.key] = definition

        self._validate_references()
        self._closure = self._compute_closure()
        self._validate_always_on()
        self._dependents = self._compute_dependents()

        logger.info("Feature catalog built", extra={
            "feature_count": len(self._ordered),
            "always_on": sorted(self.always_on_keys()),
        })

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def get(self, key: str) -> FeatureDefinition:
        try:
            return self._by_key[key]
        except KeyError:
            raise UnknownFeatureError(key) from None

    def __contains__(self, key: object) -> bool:
        return key in self._by_key

    def __len__(self) -> int:
        return len(self._ordered)

    def all(self) -> List[FeatureDefinition]:
        """All definitions in declaration order."""
        return list(self._ordered)

    def keys(self) -> List[str]:
        return [d.key for d in self._ordered]

    def dependencies_of(self, key: str) -> FrozenSet[str]:
        """Transitive requires_all closure of a feature (excluding itself)."""
        self.get(key)
        return self._closure[key]

    def dependents_of(self, key: str) -> FrozenSet[str]:
        """Features that list key directly in their requires_all."""
        self.get(key)
        return self._dependents[key]

    def always_on_keys(self) -> FrozenSet[str]:
        return frozenset(d.key for d in self._ordered if d.always_on)

    def is_dependency_closed(self, keys: Iterable[str]) -> bool:
        selected = set(keys)
        return all(self._closure[k] <= selected for k in selected)

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def _validate_references(self) -> None:
        for definition in self._ordered:
            unknown = definition.requires_all - self._by_key.keys()
            if unknown:
                raise CatalogConfigurationError(
                    f"Feature '{definition.key}' requires unknown feature(s): "
                    f"{', '.join(sorted(unknown))}"
                )
            if definition.key in definition.requires_all:
                raise CatalogConfigurationError(
                    f"Feature '{definition.key}' requires itself"
                )

    def _compute_closure(self) -> Dict[str, FrozenSet[str]]:
        """Depth-first closure with cycle detection (white/grey/black marking)."""
        closure: Dict[str, FrozenSet[str]] = {}
        visiting: List[str] = []

        def visit(key: str) -> FrozenSet[str]:
            if key in closure:
                return closure[key]
            if key in visiting:
                cycle = visiting[visiting.index(key):] + [key]
                raise CatalogConfigurationError(
                    f"Dependency cycle: {' -> '.join(cycle)}"
                )
            visiting.append(key)
            deps = set()
            for dep in sorted(self._by_key[key].requires_all):
                deps.add(dep)
                deps |= visit(dep)
            visiting.pop()
            closure[key] = frozenset(deps)
            return closure[key]

        for definition in self._ordered:
            visit(definition.key)
        return closure

    def _validate_always_on(self) -> None:
        for definition in self._ordered:
            if not definition.always_on:
                continue
            not_always_on = [
                dep for dep in self._closure[definition.key]
                if not self._by_key[dep].always_on
            ]
            if not_always_on:
                raise CatalogConfigurationError(
                    f"Always-on feature '{definition.key}' depends on "
                    f"non-always-on feature(s): {', '.join(sorted(not_always_on))}"
                )

    def _compute_dependents(self) -> Dict[str, FrozenSet[str]]:
        reverse: Dict[str, set] = {d.key: set() for d in self._ordered}
        for definition in self._ordered:
            for dep in definition.requires_all:
                reverse[dep].add(definition.key)
        return {k: frozenset(v) for k, v in reverse.items()}
