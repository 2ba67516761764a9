from __future__ import annotations
"""Small finite state machine helper for ticket status tables.

Usage:
    from repairdesk.utils.fsm import TransitionValidator
    SERVICE_FSM = TransitionValidator({
        'Pending': {'Assigned', 'Cancelled'},
        'Assigned': {'In Progress', 'Cancelled'},
        'In Progress': {'Completed', 'Cancelled'},
        'Completed': set(),
        'Cancelled': set(),
    })
    SERVICE_FSM.assert_can_transition(current_status, target_status)

Raises InvalidTransition when the edge is not in the table; callers decide how
to surface it.
"""
from typing import Dict, FrozenSet, Iterable, Mapping
from repairdesk.errors import InvalidTransition


class TransitionValidator:
    def __init__(self, graph: Mapping[str, Iterable[str]], field_name: str = 'status'):
        self.graph: Dict[str, FrozenSet[str]] = {k: frozenset(v) for k, v in graph.items()}
        unknown = {t for targets in self.graph.values() for t in targets} - set(self.graph)
        if unknown:
            raise ValueError(f"Transition targets missing from table: {sorted(unknown)}")
        self.field_name = field_name

    @property
    def states(self) -> FrozenSet[str]:
        return frozenset(self.graph)

    def allowed(self, current: str) -> FrozenSet[str]:
        return self.graph.get(current, frozenset())

    def can_transition(self, current: str, target: str) -> bool:
        return target in self.allowed(current)

    def is_terminal(self, state: str) -> bool:
        return state in self.graph and not self.graph[state]

    def assert_can_transition(self, current: str, target: str):
        if not self.can_transition(current, target):
            raise InvalidTransition(current, target, self.field_name)
        return True

__all__ = ['TransitionValidator']
