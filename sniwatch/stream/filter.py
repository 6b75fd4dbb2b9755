"""
sniwatch/stream/filter.py

The operator's query language over ConnectionEvents.

SYNTAX:
    clause ( "+" clause )*
    clause := field ":" value     field clause, e.g. domain:youtube
            | needle              global clause, e.g. tcp

SEMANTICS:
    - Matching is case-insensitive substring matching.
    - Repeated field clauses OR together (domain:a+domain:b).
    - Distinct fields AND together, and every global needle must also match
      at least one of domain/source/protocol/destination.
    - A field clause needs its first ":" past index 0; ":x" is a global needle.
    - Unknown field names never match.
    - A blank query matches everything.

Every string is a valid query, so there is no parse error path.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Set

from sniwatch.stream.events import ConnectionEvent

FieldAccessor = Callable[[ConnectionEvent], str]

FIELD_ACCESSORS: Mapping[str, FieldAccessor] = MappingProxyType({
    "domain": lambda e: e.domain,
    "source": lambda e: e.source,
    "destination": lambda e: e.destination,
    "protocol": lambda e: e.protocol.value,
    "timestamp": lambda e: e.timestamp,
})

GLOBAL_FIELDS = ("domain", "source", "protocol", "destination")


def field_value(event: ConnectionEvent, name: str) -> Optional[str]:
    """Lowercased attribute for a field name, or None for unknown fields."""
    accessor = FIELD_ACCESSORS.get(name)
    if accessor is None:
        return None
    return accessor(event).lower()


@dataclass(frozen=True)
class FilterQuery:
    field_clauses: Mapping[str, frozenset] = field(default_factory=dict)
    global_needles: frozenset = frozenset()

    @property
    def is_empty(self) -> bool:
        return not self.field_clauses and not self.global_needles

    def matches(self, event: ConnectionEvent) -> bool:
        for name, needles in self.field_clauses.items():
            value = field_value(event, name)
            if value is None:
                return False
            if not any(needle in value for needle in needles):
                return False

        if self.global_needles:
            haystack = [field_value(event, name) for name in GLOBAL_FIELDS]
            for needle in self.global_needles:
                if not any(needle in value for value in haystack):
                    return False

        return True


def compile_query(text: Optional[str]) -> FilterQuery:
    clauses = [c.strip() for c in (text or "").strip().lower().split("+")]

    fields: Dict[str, Set[str]] = {}
    needles: Set[str] = set()
    for clause in clauses:
        if not clause:
            continue
        colon = clause.find(":")
        if colon > 0:
            fields.setdefault(clause[:colon], set()).add(clause[colon + 1:])
        else:
            needles.add(clause)

    return FilterQuery(
        field_clauses=MappingProxyType({name: frozenset(values) for name, values in fields.items()}),
        global_needles=frozenset(needles),
    )


def apply_filter(query, events: Iterable[ConnectionEvent]) -> List[ConnectionEvent]:
    """
    Evaluate a query (text or compiled) against a window.

    Returns a new list in window order; the input is never touched.
    """
    compiled = query if isinstance(query, FilterQuery) else compile_query(query)
    if compiled.is_empty:
        return list(events)
    return [event for event in events if compiled.matches(event)]
