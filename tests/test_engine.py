"""Tests for the hypothesis-backed property engine."""

from __future__ import annotations

from collections import Counter

import pytest
from hypothesis import assume
from hypothesis import strategies as st

from recheck.common import Failed, Passed, PropertyIdentity
from recheck.engine import HypothesisEngine, Property, collect
from recheck.errors import GenerationError, StaleWitnessError

PAIRS = st.tuples(st.integers(), st.integers())


class Account:
    pass


def prop_of(predicate, strategy=PAIRS, arity=2, name="positive_sum") -> Property:
    return Property(PropertyIdentity("MyMod", name), strategy, predicate, arity=arity)


class TestProperty:
    def test_shape_defaults_to_strategy_repr(self) -> None:
        prop = prop_of(lambda args: True)
        assert prop.shape == repr(PAIRS)

    def test_shape_is_stable_across_instances(self) -> None:
        def build() -> Property:
            return prop_of(lambda args: True, st.tuples(st.sampled_from([Account(), Account()])), arity=1)

        first, second = build(), build()
        assert first.shape == second.shape
        assert "0x" not in first.shape
        assert "Account object>" in first.shape

    def test_size_defaults_to_repr_length(self) -> None:
        prop = prop_of(lambda args: True)
        assert prop.size((0, -1)) < prop.size((-10, -10))

    def test_accepts(self) -> None:
        prop = prop_of(lambda args: True)
        assert prop.accepts((1, 2))
        assert not prop.accepts((1,))
        assert not prop.accepts([1, 2])
        assert prop_of(lambda value: True, st.integers(), arity=None).accepts("anything")


class TestRun:
    def test_pass(self) -> None:
        outcome = HypothesisEngine().run(prop_of(lambda args: args[0] + args[1] >= 0), (1, 2))
        assert outcome == Passed(1, Counter())

    def test_none_result_passes(self) -> None:
        outcome = HypothesisEngine().run(prop_of(lambda args: None), (1, 2))
        assert outcome.passed

    def test_false_result_fails(self) -> None:
        outcome = HypothesisEngine().run(prop_of(lambda args: args[0] + args[1] >= 0), (0, -1))
        assert isinstance(outcome, Failed)
        assert outcome.witness == (0, -1)
        assert outcome.failure.kind == "falsified"

    def test_exception_fails_with_report(self) -> None:
        def boom(args):
            raise ValueError("negative balance")

        outcome = HypothesisEngine().run(prop_of(boom), (0, -1))
        assert isinstance(outcome, Failed)
        assert outcome.failure.kind == "raised"
        assert outcome.failure.error_type == "ValueError"
        assert outcome.failure.message == "negative balance"
        assert outcome.failure.location is not None
        assert outcome.failure.location.function == "boom"

    def test_wrong_shape_is_stale(self) -> None:
        with pytest.raises(StaleWitnessError):
            HypothesisEngine().run(prop_of(lambda args: True), -1)

    def test_failed_assumption_on_replay_is_stale(self) -> None:
        def positive_only(args):
            assume(args[0] > 0)
            return True

        with pytest.raises(StaleWitnessError, match="assumptions"):
            HypothesisEngine().run(prop_of(positive_only), (0, 0))

    def test_collects_categories(self) -> None:
        def classify(args):
            collect("negative" if args[0] < 0 else "non-negative")
            return True

        outcome = HypothesisEngine().run(prop_of(classify), (-3, 0))
        assert outcome.categories == Counter({"negative": 1})

    def test_collect_outside_evaluation_is_noop(self) -> None:
        collect("ignored")


class TestSearch:
    def test_finds_minimal_counterexample(self) -> None:
        prop = prop_of(lambda args: args[0] + args[1] >= 0)
        outcome = HypothesisEngine().search(prop, numtests=200, seed=0)
        assert isinstance(outcome, Failed)
        assert outcome.witness == (0, -1)

    def test_passing_property(self) -> None:
        prop = prop_of(lambda args: isinstance(args[0] + args[1], int))
        outcome = HypothesisEngine().search(prop, numtests=30, seed=0)
        assert isinstance(outcome, Passed)
        assert outcome.num_tests > 0

    def test_categories_accumulate(self) -> None:
        def classify(args):
            collect("even" if args[0] % 2 == 0 else "odd")
            return True

        outcome = HypothesisEngine().search(prop_of(classify), numtests=50, seed=1)
        assert sum(outcome.categories.values()) == outcome.num_tests
        assert set(outcome.categories) <= {"even", "odd"}

    def test_exception_is_reported(self) -> None:
        def divide(args):
            return args[0] // args[1] is not None

        outcome = HypothesisEngine().search(prop_of(divide), numtests=100, seed=0)
        assert isinstance(outcome, Failed)
        assert outcome.witness[1] == 0
        assert outcome.failure.error_type == "ZeroDivisionError"

    def test_unsatisfiable_property_gives_up(self) -> None:
        def never(args):
            assume(False)

        with pytest.raises(GenerationError):
            HypothesisEngine().search(prop_of(never), numtests=20, seed=0)


class TestShrinkAndGenerate:
    def test_shrink_returns_minimal_failure(self) -> None:
        prop = prop_of(lambda args: args[0] + args[1] >= 0)
        assert HypothesisEngine().shrink(prop, (-50, -50), seed=0) == (0, -1)

    def test_shrink_keeps_value_when_nothing_fails(self) -> None:
        prop = prop_of(lambda args: True)
        assert HypothesisEngine(shrink_examples=10).shrink(prop, (-50, -50), seed=0) == (-50, -50)

    def test_generate_is_deterministic(self) -> None:
        engine = HypothesisEngine()
        first = engine.generate(st.integers(), 1234)
        assert engine.generate(st.integers(), 1234) == first
        assert isinstance(first, int)

    def test_generate_tiny_domain(self) -> None:
        assert HypothesisEngine().generate(st.just(7), 0) == 7
