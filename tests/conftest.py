"""Shared problems and helpers for the ipfilter tests.

Provides:
- Small NLP models with known solutions (HS071, Rosenbrock, a bound-constrained
  quadratic, a square nonlinear system, the Wächter-Biegler example)
- A stand-in for iterate quantities so convergence tests can dial in errors
"""

import numpy as np
import pytest

from ipfilter import Model


# ---------- HS071 ----------
def _hs071_model() -> Model:
    def f(x):
        return x[0] * x[3] * (x[0] + x[1] + x[2]) + x[2]

    def grad(x):
        return np.array([
            x[3] * (2 * x[0] + x[1] + x[2]),
            x[0] * x[3],
            x[0] * x[3] + 1.0,
            x[0] * (x[0] + x[1] + x[2]),
        ])

    def c_eq(x):
        return np.array([x @ x - 40.0])

    def jac_eq(x):
        return 2.0 * x.reshape(1, -1)

    def c_ineq(x):
        return np.array([25.0 - np.prod(x)])

    def jac_ineq(x):
        p = np.prod(x)
        return -(p / x).reshape(1, -1)

    def hess(x, obj_factor, y_eq, y_ineq):
        Hf = np.array([
            [2 * x[3], x[3], x[3], 2 * x[0] + x[1] + x[2]],
            [x[3], 0.0, 0.0, x[0]],
            [x[3], 0.0, 0.0, x[0]],
            [2 * x[0] + x[1] + x[2], x[0], x[0], 0.0],
        ])
        Hp = np.zeros((4, 4))
        for i in range(4):
            for j in range(4):
                if i != j:
                    Hp[i, j] = np.prod([x[k] for k in range(4) if k not in (i, j)])
        H = obj_factor * Hf
        if len(y_eq):
            H = H + 2.0 * y_eq[0] * np.eye(4)
        if len(y_ineq):
            H = H - y_ineq[0] * Hp
        return H

    return Model(4, f, grad, c_eq, jac_eq, c_ineq, jac_ineq, hess=hess,
                 lb=np.ones(4), ub=5.0 * np.ones(4))


@pytest.fixture
def hs071():
    return _hs071_model(), np.array([1.0, 5.0, 5.0, 1.0])


# ---------- Rosenbrock ----------
@pytest.fixture
def rosenbrock():
    def f(x):
        return 100.0 * (x[1] - x[0] ** 2) ** 2 + (1.0 - x[0]) ** 2

    def grad(x):
        return np.array([
            -400.0 * x[0] * (x[1] - x[0] ** 2) - 2.0 * (1.0 - x[0]),
            200.0 * (x[1] - x[0] ** 2),
        ])

    def hess(x, obj_factor, y_eq, y_ineq):
        return obj_factor * np.array([
            [1200.0 * x[0] ** 2 - 400.0 * x[1] + 2.0, -400.0 * x[0]],
            [-400.0 * x[0], 200.0],
        ])

    return Model(2, f, grad, hess=hess), np.array([-1.2, 1.0])


# ---------- bound-constrained quadratic ----------
@pytest.fixture
def bounded_quadratic():
    target = np.array([2.0, -1.0])

    def f(x):
        return float((x - target) @ (x - target))

    def grad(x):
        return 2.0 * (x - target)

    def hess(x, obj_factor, y_eq, y_ineq):
        return 2.0 * obj_factor * np.eye(2)

    model = Model(2, f, grad, hess=hess, lb=np.zeros(2), ub=np.ones(2))
    return model, np.array([0.5, 0.5])


# ---------- square system ----------
@pytest.fixture
def square_system():
    def f(x):
        return 0.0

    def grad(x):
        return np.zeros(2)

    def c_eq(x):
        return np.array([x[0] ** 2 + x[1] ** 2 - 4.0, x[0] - x[1]])

    def jac_eq(x):
        return np.array([[2 * x[0], 2 * x[1]], [1.0, -1.0]])

    def hess(x, obj_factor, y_eq, y_ineq):
        return 2.0 * y_eq[0] * np.eye(2)

    return Model(2, f, grad, c_eq, jac_eq, hess=hess), np.array([1.0, 0.5])


# ---------- Wächter-Biegler ----------
@pytest.fixture
def wachter_biegler():
    """min x0  s.t.  x0^2 - x1 - 1 = 0,  x0 - x2 - 0.5 = 0,  x1, x2 >= 0.

    From (-2, 3, 1) a plain Newton-type method stalls at an infeasible point;
    the solution is (1, 0, 0.5).
    """
    def c_eq(x):
        return np.array([x[0] ** 2 - x[1] - 1.0, x[0] - x[2] - 0.5])

    def jac_eq(x):
        return np.array([[2.0 * x[0], -1.0, 0.0], [1.0, 0.0, -1.0]])

    def hess(x, obj_factor, y_eq, y_ineq):
        return np.diag([2.0 * y_eq[0], 0.0, 0.0])

    model = Model(3, lambda x: x[0], lambda x: np.array([1.0, 0.0, 0.0]), c_eq, jac_eq,
                  hess=hess, lb=np.array([-np.inf, 0.0, 0.0]))
    return model, np.array([-2.0, 3.0, 1.0])


# ---------- quantities stand-in ----------
class FakeQuantities:
    """Duck-typed iterate quantities with fixed values."""

    def __init__(self, overall=1.0, dual=1.0, constr=1.0, compl=1.0, obj=0.0, max_x=1.0, primal=1.0):
        self.overall = overall
        self.primal = primal
        self.dual = dual
        self.constr = constr
        self.compl = compl
        self.obj = obj
        self.max_x = max_x

    def objective(self):
        return self.obj

    def overall_error(self):
        return self.overall

    def dual_infeasibility(self, norm=None):
        return self.dual

    def infeasibility(self, norm=None):
        return self.primal

    def nlp_constraint_violation(self, norm=None):
        return self.constr

    def complementarity(self, mu_target=0.0, norm=None):
        return self.compl

    def max_abs_x(self):
        return self.max_x


@pytest.fixture
def fake_q():
    return FakeQuantities
