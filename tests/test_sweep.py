"""Tests for request-driven cleanup scheduling."""

import random
from unittest.mock import Mock

import pytest

from abouttown.app.core.config import Settings
from abouttown.app.core.sweep import (
    EveryRequestSweeper,
    IntervalSweeper,
    ProbabilisticSweeper,
    create_sweeper,
)


def test_every_request_sweeper_always_runs():
    sweep = Mock(return_value=2)
    sweeper = EveryRequestSweeper()

    assert sweeper.maybe_sweep(sweep) == 2
    assert sweeper.maybe_sweep(sweep) == 2
    assert sweep.call_count == 2


def test_maybe_sweep_sums_all_sweeps():
    sweeper = EveryRequestSweeper()
    assert sweeper.maybe_sweep(lambda: 1, lambda: 3) == 4


def test_interval_sweeper_runs_once_per_interval(clock):
    sweep = Mock(return_value=0)
    sweeper = IntervalSweeper(interval_seconds=60, clock=clock)

    assert sweeper.maybe_sweep(sweep) == 0
    clock.advance(30)
    assert sweeper.maybe_sweep(sweep) is None
    clock.advance(30)
    assert sweeper.maybe_sweep(sweep) == 0
    assert sweep.call_count == 2


def test_probabilistic_sweeper_bounds():
    never = ProbabilisticSweeper(probability=0.0, rng=random.Random(1))
    always = ProbabilisticSweeper(probability=1.0, rng=random.Random(1))

    assert all(not never.due() for _ in range(100))
    assert all(always.due() for _ in range(100))


@pytest.mark.parametrize("probability", [-0.1, 1.5])
def test_probabilistic_sweeper_rejects_bad_probability(probability):
    with pytest.raises(ValueError):
        ProbabilisticSweeper(probability=probability)


def test_interval_sweeper_rejects_non_positive_interval(clock):
    with pytest.raises(ValueError):
        IntervalSweeper(interval_seconds=0, clock=clock)


@pytest.mark.parametrize(
    ("strategy", "expected"),
    [
        ("every_request", EveryRequestSweeper),
        ("probabilistic", ProbabilisticSweeper),
        ("interval", IntervalSweeper),
    ],
)
def test_create_sweeper_follows_settings(strategy, expected):
    settings = Settings(_env_file=None, cleanup_strategy=strategy)
    assert isinstance(create_sweeper(settings), expected)
