"""Pytest configuration and shared fixtures for the detfield test suite."""

import pytest

from detfield.engine import Engine


@pytest.fixture
def engine() -> Engine:
    """Engine initialized with the dim=8, seed=7, alpha=0.05 reference run."""
    eng = Engine()
    eng.initialize(dim=8, seed=7, alpha=0.05)
    return eng


@pytest.fixture
def fresh_engine() -> Engine:
    """Engine that has never been initialized."""
    return Engine()
