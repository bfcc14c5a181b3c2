import numpy as np
import pytest

from npisim.config import build_config
from npisim.sir_npi import NPIWindow, SIRNPIParams


@pytest.fixture
def params():
    return SIRNPIParams(beta_0=0.25, gamma=1 / 7, epsilon=0.5)


@pytest.fixture
def window():
    return NPIWindow(t_start=10, t_end=51)


@pytest.fixture
def reference_config():
    """One year, R0 = 1.75, 50 % effective NPI on days 10..51"""
    return build_config()


@pytest.fixture
def short_config():
    return build_config(time_grid=np.arange(0, 61, dtype=float), npi_start=10, npi_end=30)
