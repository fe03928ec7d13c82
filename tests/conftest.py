"""Shared fixtures for the test suite"""

import numpy as np
import pytest

from labsynth.config import get_default_config
from labsynth.generators import Period


@pytest.fixture
def short_period():
    """Two calendar months: enough for monthly and weekly groupings"""
    return Period.from_bounds("2024-01-01", "2024-02-29")


@pytest.fixture
def rng():
    return np.random.default_rng(42)


@pytest.fixture
def config(tmp_path):
    config = get_default_config()
    config.generation.seed = 42
    config.generation.start_date = "2024-01-01"
    config.generation.end_date = "2024-02-29"
    config.generation.enable_parallel = False
    config.output.root = str(tmp_path / "output")
    return config
