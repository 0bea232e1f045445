"""The generic engine, driven by small hand-written tables."""

import pytest

from device_fsm.core.errors import ConfigurationError, InvalidTransitionError
from device_fsm.core.fsm_engine import AUTO, MissingRulePolicy, StateMachine, TransitionRule

TURNSTILE = {
    ("LOCKED", "coin"): "UNLOCKED",
    ("UNLOCKED", "push"): TransitionRule("LOCKED", effect="count"),
}


def turnstile(**kwargs):
    counted = []
    kwargs.setdefault("effects", {"count": lambda m: counted.append(m.current_state)})
    return StateMachine("LOCKED", TURNSTILE, **kwargs), counted


class TestConstruction:

    def test_bare_state_is_shorthand_for_rule(self):
        machine, _ = turnstile()
        assert machine.transitions[("LOCKED", "coin")] == TransitionRule("UNLOCKED")

    def test_states_and_triggers_derived_from_table(self):
        machine, _ = turnstile()
        assert set(machine.states) == {"LOCKED", "UNLOCKED"}
        assert machine.triggers == ("coin", "push")

    def test_initial_state_must_have_rules(self):
        with pytest.raises(ConfigurationError, match="Initial state"):
            StateMachine("BROKEN", TURNSTILE, effects={"count": lambda m: None})

    def test_target_outside_declared_states(self):
        with pytest.raises(ConfigurationError, match="unknown target"):
            StateMachine("A", {("A", "go"): "B"}, states=["A"])

    def test_source_outside_declared_states(self):
        with pytest.raises(ConfigurationError, match="unknown source"):
            StateMachine("A", {("A", "go"): "A", ("Z", "go"): "A"}, states=["A"])

    def test_trigger_outside_vocabulary(self):
        with pytest.raises(ConfigurationError, match="unknown trigger"):
            StateMachine("A", {("A", "go"): "A"}, triggers=["stop"])

    def test_unregistered_effect(self):
        with pytest.raises(ConfigurationError, match="no effect registered"):
            StateMachine("A", {("A", "go"): TransitionRule("A", effect="beep")})

    def test_terminal_state_must_be_absorbing(self):
        with pytest.raises(ConfigurationError, match="absorbing"):
            StateMachine("A", {("A", "go"): "B", ("B", "go"): "A"}, terminal_states=["B"])

    def test_unreachable_state(self):
        with pytest.raises(ConfigurationError, match="Unreachable states: ISLAND"):
            StateMachine("A", {("A", "go"): "A"}, states=["A", "ISLAND"])

    def test_exhausted_state_counts_as_reachable(self):
        machine = StateMachine("A", {("A", "go"): "A"}, 1, states=["A", "DONE"], exhausted_state="DONE")
        assert machine.current_state == "A"

    def test_undeclared_exhausted_state(self):
        with pytest.raises(ConfigurationError, match="not a declared state"):
            StateMachine("A", {("A", "go"): "A"}, states=["A"], exhausted_state="DONE")

    def test_auto_rules_cannot_loop(self):
        table = {("A", "go"): "B", ("B", AUTO): "C", ("C", AUTO): "B"}
        with pytest.raises(ConfigurationError, match="loop"):
            StateMachine("A", table)

    def test_auto_is_reserved(self):
        with pytest.raises(ConfigurationError, match="reserved"):
            StateMachine("A", {("A", "go"): "A"}, triggers=["go", AUTO])

    @pytest.mark.parametrize("inventory", [-1, 1.5, True])
    def test_bad_inventory(self, inventory):
        with pytest.raises(ConfigurationError):
            StateMachine("A", {("A", "go"): "A"}, inventory)

    def test_key_must_be_a_pair(self):
        with pytest.raises(ConfigurationError, match="pair"):
            StateMachine("A", {"A": "A"})

    def test_unknown_policy(self):
        with pytest.raises(ConfigurationError, match="policy"):
            StateMachine("A", {("A", "go"): "A"}, policy="shrug")

    def test_resume_in_undeclared_state(self):
        with pytest.raises(ConfigurationError, match="resume"):
            StateMachine("A", {("A", "go"): "A"}, current_state="Q")

    def test_resume_in_pass_through_state(self):
        table = {("A", "go"): "B", ("B", AUTO): "A"}
        with pytest.raises(ConfigurationError, match="completion rule"):
            StateMachine("A", table, current_state="B")

    @pytest.mark.parametrize("size", [-1, 2.5, None])
    def test_bad_history_size(self, size):
        with pytest.raises(ConfigurationError, match="History size"):
            StateMachine("A", {("A", "go"): "A"}, history_size=size)

    def test_errors_are_value_errors(self):
        with pytest.raises(ValueError):
            StateMachine("nope", {})


class TestApply:

    def test_returns_new_state(self):
        machine, counted = turnstile()

        result = machine.apply("coin")

        assert result.new_state == "UNLOCKED"
        assert result.changed
        assert counted == []

    def test_effect_runs_before_state_changes(self):
        machine, counted = turnstile()
        machine.apply("coin")

        machine.apply("push")

        assert counted == ["UNLOCKED"]
        assert machine.current_state == "LOCKED"

    def test_missing_rule_rejected_by_default(self):
        machine, _ = turnstile()

        with pytest.raises(InvalidTransitionError, match="Illegal transition: LOCKED \\+ push"):
            machine.apply("push")
        assert machine.current_state == "LOCKED"

    def test_self_loop_policy_stays_put(self):
        machine, counted = turnstile(policy=MissingRulePolicy.SELF_LOOP)

        result = machine.apply("push")

        assert result.accepted
        assert not result.changed
        assert machine.current_state == "LOCKED"
        assert counted == []
        assert len(machine.history()) == 1

    def test_self_loop_policy_still_respects_terminal(self):
        machine = StateMachine(
            "A", {("A", "go"): "END"}, terminal_states=["END"], policy="self_loop"
        )
        machine.apply("go")

        assert not machine.try_apply("go").accepted

    def test_failing_effect_uses_on_failure_target(self):
        table = {("A", "go"): TransitionRule("OK", effect="check", on_failure="FAILED")}
        machine = StateMachine("A", table, effects={"check": lambda m: False})

        assert machine.apply("go").new_state == "FAILED"

    def test_raising_effect_leaves_machine_untouched(self):
        def boom(machine):
            machine.dispense_if_available()
            raise RuntimeError("jammed")

        table = {("A", "go"): "B", ("B", AUTO): TransitionRule("A", effect="boom")}
        machine = StateMachine("A", table, 2, effects={"boom": boom})

        with pytest.raises(RuntimeError):
            machine.apply("go")

        assert machine.current_state == "A"
        assert machine.inventory == 2
        assert machine.history() == ()

    def test_completion_rules_chain(self):
        table = {("A", "go"): "B", ("B", AUTO): "C", ("C", AUTO): "D", ("D", "go"): "A"}
        machine = StateMachine("A", table)

        result = machine.apply("go")

        assert result.path == ("A", "B", "C", "D")
        assert [step.new_state for step in machine.history()] == ["B", "C", "D"]

    def test_dispense_without_exhausted_state_only_reports(self):
        machine = StateMachine("A", {("A", "go"): "A"}, 0)

        assert machine.dispense_if_available() is False
        assert machine.current_state == "A"


class TestObservation:

    def test_listeners_see_steps_and_rejections(self):
        machine, _ = turnstile()
        seen = []
        machine.add_listener(seen.append)

        machine.apply("coin")
        machine.try_apply("coin")

        assert [r.accepted for r in seen] == [True, False]

    def test_removed_listener_is_silent(self):
        machine, _ = turnstile()
        seen = []
        machine.add_listener(seen.append)
        machine.remove_listener(seen.append)

        machine.apply("coin")

        assert seen == []

    def test_history_is_bounded(self):
        machine = StateMachine("A", {("A", "go"): "A"}, history_size=3)
        for _ in range(5):
            machine.apply("go")
        assert len(machine.history()) == 3

    def test_available_triggers(self):
        machine, _ = turnstile()
        assert machine.available_triggers() == ("coin",)
        machine.apply("coin")
        assert machine.available_triggers() == ("push",)

    def test_result_as_dict(self):
        machine, _ = turnstile()
        assert machine.apply("coin").as_dict() == {
            "accepted": True,
            "previous_state": "LOCKED",
            "trigger": "coin",
            "new_state": "UNLOCKED",
            "message": "LOCKED + coin → UNLOCKED",
            "effects": [],
            "path": ["LOCKED", "UNLOCKED"],
            "inventory": 0,
        }
