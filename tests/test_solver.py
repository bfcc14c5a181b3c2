import numpy as np
import pytest
from numpy.testing import assert_allclose, assert_array_equal

from npisim.config import build_config
from npisim.exceptions import InvalidParameterError, SimulationFailedError
from npisim.sir_npi import SIRNPIModel, SIRNPIParams, State
from npisim.solver import SolverType, Trajectory, integrate, solve_ode

SOLVER_TYPES = (SolverType.SOLVE_IVP, SolverType.ODE_INT)


@pytest.mark.parametrize("solver_type", SOLVER_TYPES)
def test_solve_ode_linear_func(solver_type):
    """
    y_0 = 2 * t, y_1 = t
    """

    def ode_func(time, vals):
        return np.array([2.0, 1.0])

    times = np.array([0.0, 1.0, 2.0])
    expected = np.array([[0, 0], [2, 1], [4, 2]])
    outputs = solve_ode(solver_type, ode_func, np.array([0.0, 0.0]), times, solver_args={})
    assert_allclose(outputs, expected, rtol=0, atol=1e-7)


@pytest.mark.parametrize("solver_type", SOLVER_TYPES)
def test_solve_ode_exponential_decay(solver_type):
    def ode_func(time, vals):
        return -0.5 * vals

    times = np.linspace(0, 10, 11)
    outputs = solve_ode(solver_type, ode_func, np.array([1.0]), times, solver_args={})
    assert_allclose(outputs[:, 0], np.exp(-0.5 * times), rtol=1e-6)


def test_solve_ode_unknown_solver():
    with pytest.raises(ValueError):
        solve_ode("euler", lambda t, y: y, np.array([1.0]), np.array([0.0, 1.0]), {})


def test_trajectory_shape_and_times(reference_config):
    traj = integrate(reference_config)
    assert isinstance(traj, Trajectory)
    assert len(traj) == 365
    assert traj.states.shape == (365, 3)
    assert_array_equal(traj.times, reference_config.time_grid)
    # first output is exactly the initial condition, not an interpolated value
    assert_array_equal(traj.states[0], [0.99, 0.01, 0.0])


def test_trajectory_is_read_only(reference_config):
    traj = integrate(reference_config)
    with pytest.raises(ValueError):
        traj.states[0, 0] = 0.0
    with pytest.raises(AttributeError):
        traj.states = None


def test_trajectory_iteration(short_config):
    traj = integrate(short_config)
    pairs = list(traj)
    assert len(pairs) == len(short_config.time_grid)
    t0, s0 = pairs[0]
    assert t0 == 0.0
    assert isinstance(s0, State)
    assert [t for t, _ in pairs] == list(short_config.time_grid)


def test_integrate_is_deterministic(reference_config):
    first = integrate(reference_config)
    second = integrate(reference_config)
    assert_array_equal(first.times, second.times)
    assert_array_equal(first.states, second.states)


@pytest.mark.parametrize("solver_type", SOLVER_TYPES)
def test_population_is_conserved(reference_config, solver_type):
    traj = integrate(reference_config, solver_type=solver_type)
    assert_allclose(traj.totals, 1.0, rtol=0, atol=1e-6)


def test_reference_scenario_burns_out(reference_config):
    traj = integrate(reference_config)
    I = traj.I
    assert np.all(I >= -1e-8)
    peak_idx = int(np.argmax(I))
    # outbreak resurges after the NPI is lifted on day 51
    assert traj.times[peak_idx] > 51
    assert I[peak_idx] > I[0]
    # and has died out by the end of the year
    assert I[-1] < 1e-3
    assert I[-1] < 0.01 * I[peak_idx]


def test_npi_suppresses_growth_inside_window(reference_config):
    """R_eff < 1 while the NPI is active, so I decreases across the window"""
    traj = integrate(reference_config)
    i_start = traj.I[traj.times == 11][0]
    i_end = traj.I[traj.times == 51][0]
    assert i_end < i_start


def test_zero_epsilon_matches_no_window():
    with_window = integrate(build_config(epsilon=0.0))
    without_window = integrate(build_config(epsilon=0.0, npi_start=None))
    assert_allclose(with_window.states, without_window.states, rtol=0, atol=1e-9)


def test_npi_reduces_final_size():
    no_npi = integrate(build_config(npi_start=None))
    npi = integrate(build_config(epsilon=0.9, npi_start=1, npi_end=365))
    assert npi.R[-1] < no_npi.R[-1]


def test_solver_back_ends_agree(reference_config):
    ivp = integrate(reference_config, solver_type=SolverType.SOLVE_IVP)
    ode = integrate(reference_config, solver_type=SolverType.ODE_INT)
    assert_allclose(ivp.states, ode.states, rtol=0, atol=1e-5)


def test_solver_args_are_passed(reference_config):
    stepped = integrate(reference_config, solver_args={"max_step": 0.5})
    tight = integrate(reference_config)
    assert_allclose(stepped.states, tight.states, rtol=0, atol=1e-5)


def test_single_time_point():
    config = build_config(time_grid=[5.0])
    traj = integrate(config)
    assert len(traj) == 1
    assert_allclose(traj.states[0], [0.99, 0.01, 0.0])


def test_counts_scale():
    """Frequency in counts: beta scaled by 1/N gives the same dynamics as fractions"""
    N = 10_000
    fractions = integrate(build_config())
    counts = integrate(build_config(beta_0=0.25 / N, S0=0.99 * N, I0=0.01 * N, total_population=N))
    assert_allclose(counts.states / N, fractions.states, rtol=0, atol=1e-5)


def _nan_model(t, y, params, window):
    return np.full(3, np.nan)


def _blow_up_model(t, y, params, window):
    # dS/dt = S^2 has a singularity at t = t0 + 1/S0
    return np.array([y[0] ** 2, 0.0, 0.0])


@pytest.mark.parametrize("solver_type", SOLVER_TYPES)
@pytest.mark.parametrize("model", [_nan_model, _blow_up_model])
def test_solver_failure_raises(reference_config, model, solver_type):
    with pytest.raises(SimulationFailedError):
        integrate(reference_config, model=model, solver_type=solver_type)


def test_custom_model_receives_params_and_window(short_config):
    seen = []

    def model(t, y, params, window):
        seen.append((params, window))
        return np.zeros(3)

    traj = integrate(short_config, model=model)
    assert seen
    assert all(p is short_config.parameters and w is short_config.npi_window for p, w in seen)
    assert_allclose(traj.states, np.tile(short_config.initial_state, (len(traj), 1)))


def test_trajectory_wide_dataframe(short_config):
    df = integrate(short_config).to_dataframe()
    assert list(df.columns) == ["time", "S", "I", "R"]
    assert len(df) == len(short_config.time_grid)


def test_trajectory_rejects_bad_shape():
    with pytest.raises(ValueError):
        Trajectory(times=[0.0, 1.0], states=np.zeros((3, 3)))


@pytest.mark.parametrize("solver_type", SOLVER_TYPES)
def test_first_row_is_initial_state(solver_type):
    traj = integrate(build_config(time_grid=np.arange(0, 31, dtype=float)), solver_type=solver_type)
    assert_array_equal(traj.states[0], [0.99, 0.01, 0.0])
    assert np.all(traj.R >= 0)


def test_work_limit_stops_solve_ivp(reference_config):
    with pytest.raises(SimulationFailedError) as excinfo:
        integrate(reference_config, solver_args={"max_nfev": 10})
    assert excinfo.value.solver_message == "max_nfev exceeded"


@pytest.fixture
def short_window_config():
    """Half-day full lockdown, shorter than the steps the solver would take"""
    return build_config(epsilon=1.0, npi_start=30.0, npi_end=30.5, time_grid=np.arange(0, 101, dtype=float))


@pytest.mark.parametrize("solver_type", SOLVER_TYPES)
def test_short_window_matches_small_step_reference(short_window_config, solver_type):
    reference = integrate(short_window_config, solver_args={"max_step": 0.01})
    traj = integrate(short_window_config, solver_type=solver_type)
    assert_allclose(traj.states, reference.states, rtol=0, atol=1e-6)

    # the window has a visible effect
    no_npi = integrate(short_window_config.replace(npi_window=None))
    assert np.max(np.abs(traj.I - no_npi.I)) > 1e-3


def test_window_edges_off_grid(short_window_config):
    """30.5 is not a grid point: the solver restarts there but no row is added"""
    traj = integrate(short_window_config)
    assert len(traj) == 101
    assert_array_equal(traj.times, short_window_config.time_grid)


def test_window_beyond_grid_is_ignored_for_restarts():
    config = build_config(npi_start=-10, npi_end=500, time_grid=np.arange(0, 50, dtype=float))
    traj = integrate(config)
    assert len(traj) == 50
    assert_allclose(traj.totals, 1.0, rtol=0, atol=1e-6)


def test_integrate_with_bound_model(reference_config):
    model = SIRNPIModel(reference_config.parameters, reference_config.npi_window)
    bound = integrate(reference_config, model=model)
    default = integrate(reference_config)
    assert_array_equal(bound.states, default.states)


def test_bound_model_must_match_config(reference_config):
    model = SIRNPIModel(SIRNPIParams(0.3, 0.1, 0.5), reference_config.npi_window)
    with pytest.raises(InvalidParameterError):
        integrate(reference_config, model=model)
