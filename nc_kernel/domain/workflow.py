"""
State machine value types (``nc_kernel.domain.workflow``).

The six-stage lifecycle in ``stages.py`` is declared with these types: each
legal move is a Transition, and the condition that must hold before the
move is a named Guard.  The types only describe; StageWorkflowController
evaluates the guards against the stored stage records.

Construction fails with ValueError when a definition is inconsistent:
an unknown initial state, a transition naming an undeclared state, a
terminal state with a way out, or two transitions sharing (state, action).
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class Guard:
    """Named precondition of a transition, reported as ``requirement`` when it fails."""

    name: str
    description: str


@dataclass(frozen=True)
class Transition:
    from_state: str
    to_state: str
    action: str
    guard: Guard | None = None


@dataclass(frozen=True)
class Workflow:
    name: str
    description: str
    initial_state: str
    states: tuple[str, ...]
    transitions: tuple[Transition, ...]
    terminal_states: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        declared = set(self.states)
        if self.initial_state not in declared:
            self._reject(f"initial state {self.initial_state!r} is not declared")

        seen: set[tuple[str, str]] = set()
        for t in self.transitions:
            unknown = [s for s in (t.from_state, t.to_state) if s not in declared]
            if unknown:
                self._reject(f"transition {t.action!r} references unknown state {unknown[0]!r}")
            if t.from_state in self.terminal_states:
                self._reject(f"terminal state {t.from_state!r} has outgoing transition {t.action!r}")
            if (t.from_state, t.action) in seen:
                self._reject(f"action {t.action!r} is declared twice out of {t.from_state!r}")
            seen.add((t.from_state, t.action))

    def _reject(self, problem: str) -> None:
        raise ValueError(f"Workflow {self.name}: {problem}")

    def transitions_from(self, state: str) -> tuple[Transition, ...]:
        return tuple(t for t in self.transitions if t.from_state == state)

    def find_transition(self, state: str, action: str) -> Transition | None:
        return next(
            (t for t in self.transitions_from(state) if t.action == action),
            None,
        )
