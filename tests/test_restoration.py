import numpy as np
import pytest

from ipfilter import (
    IPConfig,
    InteriorPointSolver,
    Iterate,
    IterateQuantities,
    Model,
    RestorationFailedError,
)
from ipfilter.blocks.linesearch import FilterLineSearch
from ipfilter.restoration import RestorationModel, RestorationPhase, _closed_form_pn


def _mixed_model():
    # min ‖x‖²  s.t.  x0 + x1 = 2,  x0 <= 0.5
    return Model(
        2, lambda x: x @ x, lambda x: 2 * x,
        c_eq=lambda x: np.array([x[0] + x[1] - 2.0]),
        jac_eq=lambda x: np.array([[1.0, 1.0]]),
        c_ineq=lambda x: np.array([x[0] - 0.5]),
        jac_ineq=lambda x: np.array([[1.0, 0.0]]),
        hess=lambda x, a, ye, yi: 2 * a * np.eye(2),
        m_eq=1, m_ineq=1,
    )


def _equality_model():
    return Model(
        2, lambda x: x @ x, lambda x: 2 * x,
        c_eq=lambda x: np.array([x[0] + x[1] - 2.0]),
        jac_eq=lambda x: np.array([[1.0, 1.0]]),
        hess=lambda x, a, ye, yi: 2 * a * np.eye(2),
        m_eq=1,
    )


def _quantities(model, x, cfg):
    x = np.asarray(x, float)
    it = Iterate(x=x, s=np.full(model.m_ineq, 1.0), y_c=np.zeros(model.m_eq),
                 y_d=np.ones(model.m_ineq), z_L=np.zeros(model.n), z_U=np.zeros(model.n))
    return IterateQuantities(model, it, cfg)


def _phase(model, q, cfg):
    ls = FilterLineSearch(cfg)
    ls.initialize(q.theta())
    return RestorationPhase(cfg, model, ls, InteriorPointSolver), ls


def test_restoration_model_layout():
    rm = RestorationModel(_mixed_model(), x_R=np.array([0.0, 4.0]), zeta=0.5, rho=1000.0)
    assert (rm.n, rm.m_eq, rm.m_ineq) == (5, 1, 1)
    assert np.allclose(rm.D_R, [1.0, 0.25])
    assert np.all(rm.lb[2:] == 0.0) and np.all(np.isinf(rm.ub[2:]))
    assert np.all(np.isinf(rm.lb[:2]))

    bar_x = np.array([1.0, 4.0, 1.0, 2.0, 3.0])
    assert rm.f(bar_x) == pytest.approx(0.25 + 6000.0)
    assert np.allclose(rm.grad(bar_x), [0.5, 0.0, 1000.0, 1000.0, 1000.0])
    assert np.allclose(rm.c_eq(bar_x), [1.0 + 4.0 - 2.0 - 1.0 + 2.0])
    assert np.allclose(rm.c_ineq(bar_x), [1.0 - 0.5 - 3.0])
    assert np.allclose(rm.jac_eq(bar_x), [[1.0, 1.0, -1.0, 1.0, 0.0]])
    assert np.allclose(rm.jac_ineq(bar_x), [[1.0, 0.0, 0.0, 0.0, -1.0]])

    H = rm.lagrangian_hessian(bar_x, 1.0, np.array([3.0]), np.array([1.0]))
    expected = np.zeros((5, 5))
    expected[0, 0], expected[1, 1] = 0.5, 0.5 / 16.0
    assert np.allclose(H, expected)
    assert rm.constraint_violation(bar_x) == pytest.approx(3.0)


@pytest.mark.parametrize("c", [-3.0, 0.0, 2.0, 1e-6])
def test_closed_form_slacks_solve_their_subproblem(c):
    mu, rho = 0.1, 1000.0
    p, n = _closed_form_pn(np.array([c]), mu, rho)
    assert p[0] > 0.0 and n[0] > 0.0
    assert p[0] - n[0] == pytest.approx(c, abs=1e-12)
    assert 2.0 * rho - mu / p[0] - mu / n[0] == pytest.approx(0.0, abs=1e-5)


def test_fails_without_constraints():
    cfg = IPConfig()
    model = Model(1, lambda x: x[0] ** 2, lambda x: 2 * x)
    q = _quantities(model, [1.0], cfg)
    phase, _ = _phase(model, q, cfg)
    with pytest.raises(RestorationFailedError):
        phase.restore(q, 0.1)


def test_fails_at_almost_feasible_point():
    cfg = IPConfig()
    model = _equality_model()
    q = _quantities(model, [1.0, 1.0], cfg)
    phase, ls = _phase(model, q, cfg)
    with pytest.raises(RestorationFailedError):
        phase.restore(q, 0.1)
    assert len(ls.filter) == 1


def test_restores_linear_equality():
    cfg = IPConfig()
    model = _equality_model()
    q = _quantities(model, [0.0, 0.0], cfg)
    phase, ls = _phase(model, q, cfg)
    phi_trigger = q.barrier_objective(0.1)

    q_new = phase.restore(q, 0.1)

    assert q_new.theta() <= cfg.kappa_resto * q.theta()
    assert phase.last_inner.success
    assert len(ls.filter) == 2
    assert not ls.filter.is_acceptable(q.theta(), phi_trigger)
    assert ls.filter.is_acceptable(q_new.theta(), q_new.barrier_objective(0.1))


def test_infeasible_constraints_fail():
    cfg = IPConfig(resto_max_iter=5)
    model = Model(
        1, lambda x: x[0] ** 2, lambda x: 2 * x,
        c_eq=lambda x: np.array([x[0] ** 2 + 1.0]),
        jac_eq=lambda x: np.array([[2 * x[0]]]),
        hess=lambda x, a, ye, yi: np.array([[2.0 * a + 2.0 * ye[0]]]),
        m_eq=1,
    )
    q = _quantities(model, [0.0], cfg)
    phase, _ = _phase(model, q, cfg)
    with pytest.raises(RestorationFailedError):
        phase.restore(q, 0.1)
