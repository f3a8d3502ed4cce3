# gates.py
"""
Run/skip predicates for steps.

A gate is a small immutable expression over the RunContext::

    branch_equals("main") & event_is("push")
    flag("nightly") | ~event_is("pull_request")

The set of gate kinds is closed. Anything else handed to the registry is
rejected with InvalidGate before the run starts.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

from .context import EVENT_KINDS, RunContext
from .errors import InvalidGate


class Gate:
    """Base class: operator sugar shared by every gate kind."""

    def evaluate(self, context: RunContext) -> bool:  # pragma: no cover - overridden
        raise NotImplementedError

    def describe(self) -> str:  # pragma: no cover - overridden
        raise NotImplementedError

    def __and__(self, other: Gate) -> Gate:
        return AllOf((self, other))

    def __or__(self, other: Gate) -> Gate:
        return AnyOf((self, other))

    def __invert__(self) -> Gate:
        return Not(self)

    def __str__(self) -> str:
        return self.describe()


@dataclass(frozen=True)
class BranchEquals(Gate):
    name: str

    def evaluate(self, context: RunContext) -> bool:
        return context.branch == self.name

    def describe(self) -> str:
        return f"branch-equals({self.name})"


@dataclass(frozen=True)
class EventIs(Gate):
    kind: str

    def evaluate(self, context: RunContext) -> bool:
        return context.event == self.kind

    def describe(self) -> str:
        return f"event-is({self.kind})"


@dataclass(frozen=True)
class FlagSet(Gate):
    name: str

    def evaluate(self, context: RunContext) -> bool:
        return context.has_flag(self.name)

    def describe(self) -> str:
        return f"flag({self.name})"


@dataclass(frozen=True)
class AllOf(Gate):
    gates: Tuple[Gate, ...]

    def evaluate(self, context: RunContext) -> bool:
        return all(g.evaluate(context) for g in self.gates)

    def describe(self) -> str:
        return "(" + " and ".join(g.describe() for g in self.gates) + ")"


@dataclass(frozen=True)
class AnyOf(Gate):
    gates: Tuple[Gate, ...]

    def evaluate(self, context: RunContext) -> bool:
        return any(g.evaluate(context) for g in self.gates)

    def describe(self) -> str:
        return "(" + " or ".join(g.describe() for g in self.gates) + ")"


@dataclass(frozen=True)
class Not(Gate):
    gate: Gate

    def evaluate(self, context: RunContext) -> bool:
        return not self.gate.evaluate(context)

    def describe(self) -> str:
        return f"not {self.gate.describe()}"


# ---------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------

def branch_equals(name: str) -> Gate:
    return BranchEquals(name)


def event_is(kind: str) -> Gate:
    return EventIs(kind)


def flag(name: str) -> Gate:
    return FlagSet(name)


def all_of(*gates: Gate) -> Gate:
    return AllOf(tuple(gates))


def any_of(*gates: Gate) -> Gate:
    return AnyOf(tuple(gates))


def not_(gate: Gate) -> Gate:
    return Not(gate)


def evaluate(gate: Optional[Gate], context: RunContext) -> bool:
    """Pure: a step without a gate always runs."""
    if gate is None:
        return True
    return gate.evaluate(context)


# ---------------------------------------------------------------------
# Validation / parsing
# ---------------------------------------------------------------------

def validate_gate(gate: Any) -> None:
    """Raise InvalidGate unless `gate` is a well-formed member of the closed gate set."""
    if isinstance(gate, (BranchEquals, FlagSet)):
        if not isinstance(gate.name, str) or not gate.name:
            raise InvalidGate(gate, "expected a non-empty name")
        return
    if isinstance(gate, EventIs):
        if gate.kind not in EVENT_KINDS:
            raise InvalidGate(gate, f"unknown event kind, expected one of {EVENT_KINDS}")
        return
    if isinstance(gate, (AllOf, AnyOf)):
        if not gate.gates:
            raise InvalidGate(gate, "needs at least one operand")
        for g in gate.gates:
            validate_gate(g)
        return
    if isinstance(gate, Not):
        validate_gate(gate.gate)
        return
    raise InvalidGate(gate, "not a known gate kind")


_LEAF_KINDS = {
    "branch-equals": BranchEquals,
    "event-is": EventIs,
    "flag": FlagSet,
}
_COMPOSITE_KINDS = {
    "and": AllOf,
    "or": AnyOf,
}
GATE_KINDS = (*_LEAF_KINDS, *_COMPOSITE_KINDS, "not")


def parse_gate(raw: Any) -> Gate:
    """
    Build a gate from its mapping form, as written in YAML workflows:

        {"branch-equals": "main"}
        {"and": [{"branch-equals": "main"}, {"event-is": "push"}]}
        {"not": {"flag": "skip-docs"}}

    The result is validated; unknown kinds raise InvalidGate.
    """
    if not isinstance(raw, dict) or len(raw) != 1:
        raise InvalidGate(raw, f"expected a mapping with exactly one of {list(GATE_KINDS)}")

    (kind, value), = raw.items()
    gate: Gate
    if kind in _LEAF_KINDS:
        if not isinstance(value, str):
            raise InvalidGate(raw, f"'{kind}' takes a string")
        gate = _LEAF_KINDS[kind](value)
    elif kind in _COMPOSITE_KINDS:
        if not isinstance(value, list):
            raise InvalidGate(raw, f"'{kind}' takes a list of gates")
        gate = _COMPOSITE_KINDS[kind](tuple(parse_gate(v) for v in value))
    elif kind == "not":
        gate = Not(parse_gate(value))
    else:
        raise InvalidGate(raw, f"unknown gate kind '{kind}'")

    validate_gate(gate)
    return gate


DEFAULT_PUBLISH_GATE: Gate = all_of(branch_equals("main"), event_is("push"))
