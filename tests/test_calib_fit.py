import logging

import numpy as np
import pytest

from matdecomp import calib_fit
from matdecomp.calib_fit import (
    CurveFitSolver,
    LeastSquaresSolver,
    SolveResult,
    fit_calibration,
    fit_frame,
    fit_model,
    get_solver,
)
from matdecomp.errors import DimensionMismatchError, FitConvergenceError
from matdecomp.model import evaluate
from matdecomp.quantify import quantify
from scripts.gen_data import make_calibration, make_sum_calibration

# Positive, mildly curved response; denominator stays in ~[0.95, 1.23] on [0.2, 1]^2
P_TRUE = np.array([0.02, 0.8, 0.3, 0.05, 0.03, -0.02, 0.25, -0.1])


def _grid(n=9, lo=0.2, hi=1.0):
    L, H = np.meshgrid(np.linspace(lo, hi, n), np.linspace(lo, hi, n))
    return L.ravel(), H.ravel()


def _pairs(df):
    return df[["low", "high"]].to_numpy(), df["density"].to_numpy()


def test_round_trip_recovers_true_params():
    df = make_calibration(P_TRUE, n=40, seed=3)
    X, y = _pairs(df)
    p = fit_calibration(X, y, config=dict(tolerance=1e-12))
    assert p.shape == (8,)
    L, H = _grid()
    np.testing.assert_allclose(evaluate(p, L, H), evaluate(P_TRUE, L, H), atol=1e-7)
    np.testing.assert_allclose(p, P_TRUE, atol=1e-4)


def test_fit_report_fields():
    df = make_calibration(P_TRUE, n=30, seed=4)
    fit = fit_frame(df)
    assert fit.n_samples == 30
    assert fit.solver == "least_squares"
    assert fit.rmse < 1e-6 and fit.max_abs_residual < 1e-5
    assert fit.nfev > 0 and fit.status > 0
    np.testing.assert_allclose(fit.predict(df["low"], df["high"]), df["density"], atol=1e-5)
    d = fit.to_dict()
    assert len(d["params"]) == 8 and d["names"][0] == "p1"


def test_concrete_sum_scenario():
    # F = low + high, i.e. p* = [0, 1, 1, 0, 0, 0, 0, 0]
    df = make_sum_calibration([0.025, 0.050, 0.100])
    X, y = _pairs(df)
    p = fit_calibration(X, y)
    # constant and linear terms are pinned; curvature terms may trade against p7/p8
    np.testing.assert_allclose(p[:3], [0.0, 1.0, 1.0], atol=1e-4)
    assert quantify(0.3, 0.4, p) == pytest.approx(0.7, abs=1e-4)
    L, H = _grid(5, 0.0, 0.1)
    np.testing.assert_allclose(evaluate(p, L, H), L + H, atol=1e-5)


def test_noisy_calibration_tracks_truth():
    df = make_calibration(P_TRUE, n=60, noise_rel=0.01, seed=11)
    fit = fit_frame(df)
    L, H = _grid(7, 0.3, 0.9)
    err = np.abs(fit.predict(L, H) - evaluate(P_TRUE, L, H))
    assert err.mean() < 0.01
    assert 0.0 < fit.rmse < 0.05


def test_initial_guess_override():
    df = make_calibration(P_TRUE, n=30, seed=5)
    X, y = _pairs(df)
    near = P_TRUE + 0.01
    fit_a = fit_model(X, y, initial_guess=near)
    fit_b = fit_model(X, y, config=dict(initial_guess=near))
    np.testing.assert_allclose(fit_a.params, fit_b.params, atol=1e-10)
    np.testing.assert_allclose(fit_a.params, P_TRUE, atol=1e-4)


def test_dimension_mismatch_rejected_before_solve(monkeypatch):
    def _boom(*a, **k):
        raise AssertionError("solver must not run")

    monkeypatch.setattr(calib_fit, "least_squares", _boom)
    X = np.array([[0.1, 0.2], [0.2, 0.3], [0.3, 0.4]])
    with pytest.raises(DimensionMismatchError):
        fit_calibration(X, [0.3, 0.5])
    with pytest.raises(DimensionMismatchError):
        fit_calibration(X[:, 0], [0.3, 0.5, 0.7])        # not N x 2
    with pytest.raises(DimensionMismatchError):
        fit_calibration(np.ones((3, 3)), [0.3, 0.5, 0.7])
    with pytest.raises(DimensionMismatchError):
        fit_calibration(X, [0.3, 0.5, 0.7], initial_guess=np.zeros(6))


def test_empty_and_non_finite_inputs_rejected():
    with pytest.raises(ValueError):
        fit_calibration(np.empty((0, 2)), [])
    with pytest.raises(ValueError):
        fit_calibration([[0.1, np.nan], [0.2, 0.3]], [0.1, 0.2])


def test_iteration_budget_exhausted_raises():
    df = make_calibration(P_TRUE, n=30, seed=6)
    X, y = _pairs(df)
    with pytest.raises(FitConvergenceError) as ei:
        fit_calibration(X, y, config=dict(max_iterations=1))
    assert ei.value.reason == "max_iterations"
    assert ei.value.last_params is not None and ei.value.last_params.shape == (8,)


def test_curve_fit_budget_exhausted_raises():
    df = make_calibration(P_TRUE, n=30, seed=6)
    X, y = _pairs(df)
    with pytest.raises(FitConvergenceError) as ei:
        fit_calibration(X, y, config=dict(max_iterations=3, solver="curve_fit"))
    err = ei.value
    assert err.reason == "max_iterations"
    assert err.nfev >= 3
    # the iterate the solver stopped at, not the starting guess
    assert err.last_params.shape == (8,) and np.any(err.last_params != 0.0)
    assert np.isfinite(err.cost)


def test_degenerate_initial_guess_reported_as_non_finite():
    X = np.array([[0.5, 0.2], [0.6, 0.3], [0.7, 0.4], [0.8, 0.5],
                  [0.5, 0.6], [0.6, 0.7], [0.7, 0.8], [0.8, 0.9]])
    y = X.sum(axis=1)
    guess = np.zeros(8)
    guess[6] = -2.0  # 1 - 2 * 0.5 == 0 at the first sample
    with pytest.raises(FitConvergenceError) as ei:
        fit_calibration(X, y, initial_guess=guess)
    assert ei.value.reason == "non_finite"
    assert ei.value.nfev == 0


def test_underdetermined_fit_warns_and_interpolates(caplog):
    X = np.array([[0.1, 0.2], [0.2, 0.1], [0.3, 0.3], [0.4, 0.1]])
    y = X.sum(axis=1)
    with caplog.at_level(logging.WARNING, logger="matdecomp"):
        fit = fit_model(X, y)
    assert "Underdetermined" in caplog.text
    assert fit.rmse < 1e-5


def test_solvers_agree_on_noisy_data():
    df = make_calibration(P_TRUE, n=50, noise_rel=0.005, seed=21)
    X, y = _pairs(df)
    a = fit_model(X, y, solver=LeastSquaresSolver())
    b = fit_model(X, y, config=dict(solver="curve_fit"))
    assert b.solver == "curve_fit"
    L, H = _grid(5, 0.3, 0.9)
    np.testing.assert_allclose(a.predict(L, H), b.predict(L, H), atol=1e-4)


def test_custom_solver_plugs_in():
    calls = []

    class Recording:
        name = "recording"

        def solve(self, residuals, jacobian, x0, config):
            calls.append(x0.copy())
            return LeastSquaresSolver().solve(residuals, jacobian, x0, config)

    df = make_calibration(P_TRUE, n=20, seed=8)
    fit = fit_model(*_pairs(df), solver=Recording())
    assert fit.solver == "recording"
    assert len(calls) == 1 and np.all(calls[0] == 0.0)


def test_get_solver():
    assert isinstance(get_solver("least_squares"), LeastSquaresSolver)
    assert isinstance(get_solver("curve_fit"), CurveFitSolver)
    with pytest.raises(ValueError):
        get_solver("simplex")


class _StubSolver:
    name = "stub"

    def __init__(self, x, status=1, success=True, message="stub"):
        self.x = np.asarray(x, float)
        self.status = status
        self.success = success
        self.message = message

    def solve(self, residuals, jacobian, x0, config):
        return SolveResult(x=self.x, cost=0.0, nfev=3, status=self.status,
                           message=self.message, success=self.success)


def _linear_pairs():
    X = np.array([[0.5, 0.2], [0.6, 0.3], [0.7, 0.4], [0.8, 0.5],
                  [0.5, 0.6], [0.6, 0.7], [0.7, 0.8], [0.8, 0.9]])
    return X, X.sum(axis=1)


def test_solver_failure_reported_with_solver_reason():
    X, y = _linear_pairs()
    stub = _StubSolver(np.zeros(8), status=-1, success=False, message="improper input")
    with pytest.raises(FitConvergenceError) as ei:
        fit_model(X, y, solver=stub)
    assert ei.value.reason == "solver"
    assert ei.value.nfev == 3
    assert "improper input" in str(ei.value)


def test_nan_iterate_reported_as_non_finite():
    X, y = _linear_pairs()
    x = np.zeros(8)
    x[2] = np.nan
    with pytest.raises(FitConvergenceError) as ei:
        fit_model(X, y, solver=_StubSolver(x))
    assert ei.value.reason == "non_finite"
    assert np.isnan(ei.value.last_params[2])


def test_fitted_zero_denominator_at_sample_reported_as_non_finite():
    X, y = _linear_pairs()
    x = np.array([0, 1, 1, 0, 0, 0, -2.0, 0])  # 1 - 2 * 0.5 == 0 at the first sample
    with pytest.raises(FitConvergenceError) as ei:
        fit_model(X, y, solver=_StubSolver(x))
    assert ei.value.reason == "non_finite"


def test_explicit_lm_with_too_few_samples_rejected_before_solve():
    X = np.array([[0.1, 0.2], [0.2, 0.1], [0.3, 0.3]])
    stub = _StubSolver(np.zeros(8))
    stub.solve = lambda *a, **k: pytest.fail("solver must not run")
    with pytest.raises(DimensionMismatchError, match="lm"):
        fit_model(X, X.sum(axis=1), config=dict(method="lm"), solver=stub)
