from __future__ import annotations

import logging
from typing import Any, Iterable, Iterator, List, Mapping, Optional, Sequence

from .schemas import ValueSet

logger = logging.getLogger(__name__)


def _flatten_concepts(concepts: Any) -> Iterator[str]:
    if not isinstance(concepts, list):
        return
    for concept in concepts:
        if not isinstance(concept, Mapping):
            continue
        code = concept.get("code")
        if isinstance(code, str) and code:
            yield code
        # CodeSystem hierarchies nest child concepts under their parent
        yield from _flatten_concepts(concept.get("concept"))


def concepts_from_resource(resource: Mapping[str, Any]) -> List[str]:
    """Codes declared by a terminology resource, in document order."""
    if "concept" in resource:
        return list(_flatten_concepts(resource.get("concept")))
    compose = resource.get("compose")
    includes = compose.get("include") if isinstance(compose, Mapping) else None
    codes: List[str] = []
    if isinstance(includes, list):
        for include in includes:
            if isinstance(include, Mapping):
                codes.extend(_flatten_concepts(include.get("concept")))
    return codes


def value_sets_from_bundle(bundle: Mapping[str, Any]) -> List[ValueSet]:
    entries = bundle.get("entry") if isinstance(bundle, Mapping) else None
    value_sets: List[ValueSet] = []
    if not isinstance(entries, list):
        return value_sets
    for entry in entries:
        resource = entry.get("resource") if isinstance(entry, Mapping) else None
        if not isinstance(resource, Mapping):
            continue
        url = resource.get("url")
        if not isinstance(url, str) or not url:
            continue
        value_sets.append(ValueSet(url=url, concepts=tuple(concepts_from_resource(resource))))
    return value_sets


class ValueSetStore:
    """Locally loaded value sets, searched in bundle-load order."""

    def __init__(self, value_sets: Optional[Iterable[ValueSet]] = None) -> None:
        self._value_sets: tuple[ValueSet, ...] = tuple(value_sets or ())

    @classmethod
    def from_bundles(cls, bundles: Sequence[Mapping[str, Any]]) -> "ValueSetStore":
        value_sets: List[ValueSet] = []
        for bundle in bundles:
            value_sets.extend(value_sets_from_bundle(bundle))
        logger.info("Terminology loaded", extra={"bundles": len(bundles), "value_sets": len(value_sets)})
        return cls(value_sets)

    def __len__(self) -> int:
        return len(self._value_sets)

    def lookup(self, url: str) -> Optional[ValueSet]:
        for value_set in self._value_sets:
            if value_set.url == url:
                return value_set
        return None
