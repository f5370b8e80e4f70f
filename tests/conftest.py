"""Shared fixtures for the ACCESS model tests."""

from dataclasses import replace

import pytest

from simulation import ModelInputs, Track, run_model


@pytest.fixture
def default_inputs() -> ModelInputs:
    return ModelInputs()


@pytest.fixture
def default_result(default_inputs):
    return run_model(default_inputs, [])


@pytest.fixture
def no_churn_inputs(default_inputs) -> ModelInputs:
    return replace(default_inputs, churn_rate=0.0)


@pytest.fixture
def eckm_only(no_churn_inputs):
    """Single eCKM track, no churn: every headcount is an exact sum of increments."""
    return run_model(no_churn_inputs, [Track.eCKM])
