"""
The State Machine Engine
========================
Same idea as the coffee machine: a lookup table of legal moves.
Generalised so any device can bring its own states, triggers and effects.

    (current_state, trigger) → TransitionRule(target, effect, on_failure)
"""

import logging
from collections import deque
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Any, Callable, Deque, Dict, Hashable, Iterable, List, Mapping, Optional, Tuple

from .errors import ConfigurationError, InvalidTransitionError, UnknownTriggerError


logger = logging.getLogger(__name__)


class AutoTrigger(str, Enum):
    """Pseudo-trigger for completion rules: fires as soon as the state is entered"""
    AUTO = "AUTO"


AUTO = AutoTrigger.AUTO


class MissingRulePolicy(str, Enum):
    """What happens when the table has no rule for (state, trigger)"""
    REJECT = "reject"          # Report an invalid transition
    SELF_LOOP = "self_loop"    # Accept, stay put, run nothing


@dataclass(frozen=True)
class TransitionRule:
    target: Hashable
    effect: Optional[str] = None
    on_failure: Optional[Hashable] = None   # Used when the effect returns False


@dataclass(frozen=True)
class TransitionResult:
    """Outcome of applying one trigger (or one step of it)"""
    accepted: bool
    previous_state: Hashable
    trigger: Any
    new_state: Hashable
    message: str = ""
    effects: Tuple[str, ...] = ()
    path: Tuple[Hashable, ...] = ()
    inventory: int = 0

    @property
    def changed(self) -> bool:
        return self.accepted and self.previous_state != self.new_state

    def as_dict(self) -> dict:
        return {
            "accepted": self.accepted,
            "previous_state": label(self.previous_state),
            "trigger": label(self.trigger) if self.trigger is not None else None,
            "new_state": label(self.new_state),
            "message": self.message,
            "effects": list(self.effects),
            "path": [label(state) for state in self.path],
            "inventory": self.inventory,
        }


Effect = Callable[["StateMachine"], Optional[bool]]
Listener = Callable[[TransitionResult], None]


def label(value: Any) -> str:
    """Printable name for a state or trigger"""
    return value.value if isinstance(value, Enum) else str(value)


def _as_rule(value) -> TransitionRule:
    # A bare state is shorthand for a rule with no effect
    return value if isinstance(value, TransitionRule) else TransitionRule(target=value)


class StateMachine:
    """
    Table-driven finite state machine with an inventory counter.

    The machine is always in exactly one declared state. It only changes
    through `apply` / `try_apply` and the forced move in `dispense_if_available`.
    No locking: callers sharing one instance must serialise access themselves.
    """

    def __init__(
        self,
        initial_state: Hashable,
        transitions: Mapping[Tuple[Hashable, Any], Any],
        initial_inventory: int = 0,
        *,
        states: Optional[Iterable[Hashable]] = None,
        triggers: Optional[Iterable[Any]] = None,
        effects: Optional[Mapping[str, Effect]] = None,
        terminal_states: Iterable[Hashable] = (),
        exhausted_state: Optional[Hashable] = None,
        policy: MissingRulePolicy = MissingRulePolicy.REJECT,
        current_state: Optional[Hashable] = None,
        history_size: int = 64,
    ):
        table: Dict[Tuple[Hashable, Any], TransitionRule] = {}
        for key, value in transitions.items():
            if not isinstance(key, tuple) or len(key) != 2:
                raise ConfigurationError(f"Transition key {key!r} is not a (state, trigger) pair")
            table[key] = _as_rule(value)

        if states is None:
            states = [initial_state]
            for (source, _), rule in table.items():
                states.extend(s for s in (source, rule.target, rule.on_failure) if s is not None)
            if exhausted_state is not None:
                states.append(exhausted_state)
        if triggers is None:
            triggers = [trigger for (_, trigger) in table if trigger is not AUTO]

        try:
            policy = MissingRulePolicy(policy)
        except ValueError:
            raise ConfigurationError(f"Unknown missing-rule policy {policy!r}") from None

        self._states = tuple(dict.fromkeys(states))
        self._triggers = tuple(dict.fromkeys(triggers))
        self._effects: Dict[str, Effect] = dict(effects or {})
        self._terminal_states = frozenset(terminal_states) | (
            {exhausted_state} if exhausted_state is not None else frozenset()
        )
        self._exhausted_state = exhausted_state
        self._policy = policy
        self._transitions = table

        self._validate(initial_state, initial_inventory, current_state, history_size)

        self._initial_state = initial_state
        self._inventory = initial_inventory
        if current_state is not None:
            self._current_state = current_state
        elif exhausted_state is not None and initial_inventory == 0:
            self._current_state = exhausted_state
        else:
            self._current_state = initial_state

        self._listeners: List[Listener] = []
        self._history: Deque[TransitionResult] = deque(maxlen=history_size)
        self._firing = False
        self._preempted = False

    # ── Construction checks ─────────────────────────────────────────────────

    def _validate(self, initial_state, initial_inventory, current_state, history_size):
        states = set(self._states)

        if isinstance(initial_inventory, bool) or not isinstance(initial_inventory, int):
            raise ConfigurationError(f"Inventory must be an integer, got {initial_inventory!r}")
        if initial_inventory < 0:
            raise ConfigurationError(f"Inventory cannot be negative, got {initial_inventory}")

        if AUTO in self._triggers:
            raise ConfigurationError(f"{AUTO.value} is reserved and cannot be declared as a trigger")

        for terminal in self._terminal_states:
            if terminal not in states:
                raise ConfigurationError(f"Terminal state {label(terminal)} is not a declared state")

        if initial_state not in {source for (source, _) in self._transitions}:
            raise ConfigurationError(
                f"Initial state {label(initial_state)} has no rules in the transition table"
            )

        for (source, trigger), rule in self._transitions.items():
            where = f"{label(source)} + {label(trigger)}"
            if source not in states:
                raise ConfigurationError(f"Rule {where}: unknown source state")
            if trigger is not AUTO and trigger not in self._triggers:
                raise ConfigurationError(f"Rule {where}: unknown trigger")
            if rule.target not in states:
                raise ConfigurationError(f"Rule {where}: unknown target {label(rule.target)}")
            if rule.on_failure is not None and rule.on_failure not in states:
                raise ConfigurationError(f"Rule {where}: unknown failure target {label(rule.on_failure)}")
            if rule.effect is not None and rule.effect not in self._effects:
                raise ConfigurationError(f"Rule {where}: no effect registered as {rule.effect!r}")
            if source in self._terminal_states:
                raise ConfigurationError(f"Rule {where}: terminal state {label(source)} must be absorbing")

        self._check_auto_cycles()

        unreachable = states - self._reachable_from(initial_state)
        if unreachable:
            names = ", ".join(sorted(label(s) for s in unreachable))
            raise ConfigurationError(f"Unreachable states: {names}")

        if current_state is not None and current_state not in states:
            raise ConfigurationError(f"Cannot resume in undeclared state {label(current_state)}")
        if current_state is not None and (current_state, AUTO) in self._transitions:
            raise ConfigurationError(
                f"Cannot resume in {label(current_state)}: it only passes through on a completion rule"
            )

        if isinstance(history_size, bool) or not isinstance(history_size, int) or history_size < 0:
            raise ConfigurationError(f"History size must be a non-negative integer, got {history_size!r}")

    def _check_auto_cycles(self):
        auto_rules = {source: rule for (source, trigger), rule in self._transitions.items() if trigger is AUTO}

        def visit(state, trail):
            if state in trail:
                raise ConfigurationError(f"Completion rules loop through {label(state)}")
            rule = auto_rules.get(state)
            if rule is None:
                return
            for nxt in (rule.target, rule.on_failure):
                if nxt is not None:
                    visit(nxt, trail | {state})

        for start in auto_rules:
            visit(start, frozenset())

    def _reachable_from(self, start) -> set:
        seen = {start}
        if self._exhausted_state is not None:
            seen.add(self._exhausted_state)  # Forced exhaustion can happen from anywhere
        frontier = [start]
        while frontier:
            state = frontier.pop()
            for (source, _), rule in self._transitions.items():
                if source != state:
                    continue
                for nxt in (rule.target, rule.on_failure):
                    if nxt is not None and nxt not in seen:
                        seen.add(nxt)
                        frontier.append(nxt)
        return seen

    # ── Read-only views ─────────────────────────────────────────────────────

    @property
    def current_state(self) -> Hashable:
        return self._current_state

    @property
    def initial_state(self) -> Hashable:
        return self._initial_state

    @property
    def inventory(self) -> int:
        return self._inventory

    @property
    def is_terminal(self) -> bool:
        return self._current_state in self._terminal_states

    @property
    def states(self) -> Tuple[Hashable, ...]:
        return self._states

    @property
    def triggers(self) -> Tuple[Any, ...]:
        return self._triggers

    @property
    def terminal_states(self) -> frozenset:
        return self._terminal_states

    @property
    def policy(self) -> MissingRulePolicy:
        return self._policy

    @property
    def transitions(self) -> Mapping[Tuple[Hashable, Any], TransitionRule]:
        return MappingProxyType(self._transitions)

    def history(self) -> Tuple[TransitionResult, ...]:
        """Accepted steps, oldest first (bounded)"""
        return tuple(self._history)

    def available_triggers(self) -> Tuple[Any, ...]:
        """Triggers with a rule from the current state"""
        if self.is_terminal:
            return ()
        return tuple(t for t in self._triggers if (self._current_state, t) in self._transitions)

    def add_listener(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    # ── Trigger application ─────────────────────────────────────────────────

    def apply(self, trigger) -> TransitionResult:
        """Apply a trigger. Raises InvalidTransitionError if the move is illegal."""
        result = self.try_apply(trigger)
        if not result.accepted:
            raise InvalidTransitionError(result.previous_state, trigger, result.message, result)
        return result

    def try_apply(self, trigger) -> TransitionResult:
        """
        Apply a trigger and report rejection as a result instead of raising.
        Unknown triggers still raise UnknownTriggerError.
        """
        source = self._current_state

        if trigger is AUTO or trigger not in self._triggers:
            raise UnknownTriggerError(source, trigger, f"Unknown trigger {label(trigger)!r}")

        if source in self._terminal_states:
            return self._reject(
                source, trigger, f"Device is in terminal state {label(source)}. Cannot apply {label(trigger)}."
            )

        rule = self._transitions.get((source, trigger))
        if rule is None:
            if self._policy is MissingRulePolicy.SELF_LOOP:
                step = TransitionResult(
                    accepted=True,
                    previous_state=source,
                    trigger=trigger,
                    new_state=source,
                    message=f"{label(source)} + {label(trigger)} → {label(source)} (no rule, stayed)",
                    path=(source, source),
                    inventory=self._inventory,
                )
                self._commit([step])
                return step
            return self._reject(source, trigger, f"Illegal transition: {label(source)} + {label(trigger)}")

        # All-or-nothing: an effect blowing up leaves the machine as it was
        snapshot = (self._current_state, self._inventory)
        self._firing = True
        try:
            steps = [self._fire(source, trigger, rule)]
            auto_rule = self._transitions.get((self._current_state, AUTO))
            while auto_rule is not None:
                steps.append(self._fire(self._current_state, AUTO, auto_rule))
                auto_rule = self._transitions.get((self._current_state, AUTO))
        except Exception:
            self._current_state, self._inventory = snapshot
            raise
        finally:
            self._firing = False

        self._commit(steps)

        effects = tuple(effect for step in steps for effect in step.effects)
        return TransitionResult(
            accepted=True,
            previous_state=source,
            trigger=trigger,
            new_state=self._current_state,
            message=f"{label(source)} + {label(trigger)} → {label(self._current_state)}",
            effects=effects,
            path=(source,) + tuple(step.new_state for step in steps),
            inventory=self._inventory,
        )

    def dispense_if_available(self) -> bool:
        """
        Take one unit out of inventory.

        Returns False when inventory is already zero; in that case the machine
        is forced into its exhausted state, overriding whatever the table says.
        Without a declared exhausted state there is nothing to force.
        """
        if self._inventory > 0:
            self._inventory -= 1
            return True

        if self._exhausted_state is None:
            return False

        previous = self._current_state
        self._current_state = self._exhausted_state
        logger.warning("Inventory empty in %s, forcing %s", label(previous), label(self._exhausted_state))

        if self._firing:
            self._preempted = True
        elif previous != self._exhausted_state:
            self._commit([
                TransitionResult(
                    accepted=True,
                    previous_state=previous,
                    trigger=None,
                    new_state=self._exhausted_state,
                    message="Inventory exhausted",
                    path=(previous, self._exhausted_state),
                    inventory=self._inventory,
                )
            ])
        return False

    def _fire(self, source, trigger, rule: TransitionRule) -> TransitionResult:
        self._preempted = False
        outcome = None
        if rule.effect is not None:
            outcome = self._effects[rule.effect](self)

        if self._preempted:
            target = self._current_state
        elif outcome is False and rule.on_failure is not None:
            target = rule.on_failure
        else:
            target = rule.target

        self._current_state = target
        return TransitionResult(
            accepted=True,
            previous_state=source,
            trigger=trigger,
            new_state=target,
            message=f"{label(source)} + {label(trigger)} → {label(target)}",
            effects=(rule.effect,) if rule.effect is not None else (),
            path=(source, target),
            inventory=self._inventory,
        )

    def _reject(self, state, trigger, message: str) -> TransitionResult:
        logger.warning("Rejected: %s", message)
        result = TransitionResult(
            accepted=False,
            previous_state=state,
            trigger=trigger,
            new_state=state,
            message=message,
            path=(state,),
            inventory=self._inventory,
        )
        self._emit(result)
        return result

    def _commit(self, steps: List[TransitionResult]) -> None:
        for step in steps:
            logger.info("✅ %s", step.message)
            self._history.append(step)
        for step in steps:
            self._emit(step)

    def _emit(self, result: TransitionResult) -> None:
        for listener in tuple(self._listeners):
            listener(result)
