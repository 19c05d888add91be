# aux.py
# Configuration, problem model, enums and errors shared by the IP blocks.

from __future__ import annotations

# =========================
# Standard library
# =========================
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

# =========================
# Third-party
# =========================
import numpy as np
import scipy.sparse as sp


# ======================================
# Enums
# ======================================
class ConvergenceStatus(Enum):
    """Outcome of one convergence check. Everything except CONTINUE ends a solve."""

    CONTINUE = "continue"
    CONVERGED = "converged"
    CONVERGED_TO_ACCEPTABLE_POINT = "converged_to_acceptable_point"
    MAXITER_EXCEEDED = "maxiter_exceeded"
    CPUTIME_EXCEEDED = "cputime_exceeded"
    DIVERGING = "diverging"
    RESTORATION_FAILURE = "restoration_failure"
    USER_STOP = "user_stop"

    @property
    def is_terminal(self) -> bool:
        return self is not ConvergenceStatus.CONTINUE

    @property
    def is_success(self) -> bool:
        return self in (
            ConvergenceStatus.CONVERGED,
            ConvergenceStatus.CONVERGED_TO_ACCEPTABLE_POINT,
        )


class MuStrategy(Enum):
    """Barrier parameter update policies."""

    MONOTONE = "monotone"
    ADAPTIVE = "adaptive"


class NormType(Enum):
    ONE = "one"
    TWO = "two"
    MAX = "max"


class LineSearchState(Enum):
    SEARCHING = "searching"
    ACCEPTED = "accepted"
    EXHAUSTED = "exhausted"


# ======================================
# Errors
# ======================================
class IPFilterError(Exception):
    """Base class for solver-internal failures."""


class InertiaCorrectionError(IPFilterError):
    """Regularization could not produce the required KKT inertia."""


class EvaluationError(IPFilterError):
    """A problem callback raised or returned non-finite values."""


class RestorationFailedError(IPFilterError):
    """The feasibility restoration subproblem did not find an admissible point."""


# ======================================
# Global configuration
# ======================================
@dataclass
class IPConfig:
    """
    Configuration for the filter line-search interior-point solver.

    Notes
    -----
    • One instance per solve; nothing here is mutated by the solver.
    • Inner restoration solves receive a modified copy (dataclasses.replace).
    • Values are validated on construction; bad values raise ValueError.
    """

    # ---------------- Termination ----------------
    max_iter: int = 3000
    max_cpu_time: float = 1e6
    tol: float = 1e-8
    dual_inf_tol: float = 1.0
    constr_viol_tol: float = 1e-4
    compl_inf_tol: float = 1e-4
    diverging_iterates_tol: float = 1e20
    s_max: float = 100.0

    # ---------------- Acceptable point heuristic ----------------
    acceptable_tol: float = 1e-6
    acceptable_iter: int = 15
    acceptable_dual_inf_tol: float = 1e10
    acceptable_constr_viol_tol: float = 1e-2
    acceptable_compl_inf_tol: float = 1e-2
    acceptable_obj_change_tol: float = 1e20

    # ---------------- Barrier parameter ----------------
    mu_strategy: str = "monotone"  # {"monotone","adaptive"}
    mu_init: float = 0.1
    mu_target: float = 0.0
    mu_min: float = 1e-11
    mu_max: float = 1e5
    barrier_tol_factor: float = 10.0  # κ_ε
    mu_linear_decrease_factor: float = 0.2  # κ_μ
    mu_superlinear_decrease_power: float = 1.5  # θ_μ
    adaptive_mu_factor: float = 0.1
    adaptive_mu_exponent: float = 3.0
    adaptive_mu_safeguard_lo: float = 0.01
    adaptive_mu_safeguard_hi: float = 10.0
    tau_min: float = 0.99
    kappa_sigma: float = 1e10

    # ---------------- Initial point ----------------
    bound_push: float = 1e-2
    bound_frac: float = 1e-2
    slack_bound_push: float = 1e-2
    bound_mult_init_val: float = 1.0

    # ---------------- Filter line search ----------------
    max_ls_trials: int = 40
    alpha_red_factor: float = 0.5
    gamma_theta: float = 1e-5
    gamma_phi: float = 1e-8
    delta: float = 1.0
    s_theta: float = 1.1
    s_phi: float = 2.3
    eta_phi: float = 1e-4
    alpha_min_frac: float = 0.05
    theta_max_fact: float = 1e4
    theta_min_fact: float = 1e-4
    tiny_step_tol: float = 10.0 * np.finfo(float).eps

    # ---------------- Second-order correction ----------------
    max_soc: int = 4
    kappa_soc: float = 0.99

    # ---------------- Inertia correction ----------------
    linear_solver: str = "ldl"  # {"ldl","eigh"}
    first_hessian_perturbation: float = 1e-4
    min_hessian_perturbation: float = 1e-20
    max_hessian_perturbation: float = 1e40
    perturb_inc_fact_first: float = 100.0
    perturb_inc_fact: float = 8.0
    perturb_dec_fact: float = 1.0 / 3.0
    jacobian_regularization_value: float = 1e-8
    jacobian_regularization_exponent: float = 0.25
    max_refactorizations: int = 100
    inertia_zero_tol: float = 1e-12

    # ---------------- Restoration ----------------
    resto_max_iter: int = 200
    kappa_resto: float = 0.9
    resto_penalty: float = 1000.0
    resto_feasibility_threshold: Optional[float] = None  # None → 1e2·tol

    # ---------------- Output ----------------
    verbose: bool = False
    intermediate_callback: Optional[Callable[..., Optional[bool]]] = None

    def __post_init__(self):
        if isinstance(self.max_iter, bool) or not isinstance(self.max_iter, (int, np.integer)):
            raise ValueError(f"max_iter must be an integer, got {self.max_iter!r}")
        if self.max_iter < 0:
            raise ValueError(f"max_iter must be non-negative, got {self.max_iter}")
        if not self.max_cpu_time > 0:
            raise ValueError(f"max_cpu_time must be positive, got {self.max_cpu_time}")
        if not 0.0 < self.dual_inf_tol <= 1.0:
            raise ValueError(f"dual_inf_tol must lie in (0, 1], got {self.dual_inf_tol}")
        for name in (
            "tol", "constr_viol_tol", "compl_inf_tol", "acceptable_tol",
            "acceptable_dual_inf_tol", "acceptable_constr_viol_tol",
            "acceptable_compl_inf_tol", "diverging_iterates_tol", "s_max",
            "mu_init", "mu_min", "mu_max", "kappa_sigma", "bound_push",
            "slack_bound_push", "bound_mult_init_val", "resto_penalty",
            "first_hessian_perturbation", "min_hessian_perturbation",
            "max_hessian_perturbation", "jacobian_regularization_value",
        ):
            val = getattr(self, name)
            if not (isinstance(val, (int, float, np.floating)) and val > 0):
                raise ValueError(f"{name} must be positive, got {val!r}")
        if self.acceptable_obj_change_tol < 0:
            raise ValueError(
                f"acceptable_obj_change_tol must be non-negative, got {self.acceptable_obj_change_tol}"
            )
        if self.acceptable_iter < 0:
            raise ValueError(f"acceptable_iter must be non-negative, got {self.acceptable_iter}")
        if self.mu_target < 0:
            raise ValueError(f"mu_target must be non-negative, got {self.mu_target}")
        if self.mu_min > self.mu_max:
            raise ValueError("mu_min must not exceed mu_max")
        if self.mu_strategy not in [m.value for m in MuStrategy]:
            raise ValueError(f"Unknown mu_strategy '{self.mu_strategy}'")
        if not 0.0 < self.mu_linear_decrease_factor < 1.0:
            raise ValueError("mu_linear_decrease_factor must lie in (0, 1)")
        if not 1.0 < self.mu_superlinear_decrease_power < 2.0:
            raise ValueError("mu_superlinear_decrease_power must lie in (1, 2)")
        if not 0.0 < self.tau_min < 1.0:
            raise ValueError(f"tau_min must lie in (0, 1), got {self.tau_min}")
        if not 0.0 < self.bound_frac <= 0.5:
            raise ValueError(f"bound_frac must lie in (0, 0.5], got {self.bound_frac}")
        if not 0.0 < self.adaptive_mu_safeguard_lo <= 1.0 <= self.adaptive_mu_safeguard_hi:
            raise ValueError("adaptive mu safeguards must satisfy 0 < lo <= 1 <= hi")
        if not 0.0 < self.alpha_red_factor < 1.0:
            raise ValueError("alpha_red_factor must lie in (0, 1)")
        if self.max_ls_trials < 1:
            raise ValueError(f"max_ls_trials must be positive, got {self.max_ls_trials}")
        if not 0.0 < self.gamma_theta < 1.0 or not 0.0 < self.gamma_phi < 1.0:
            raise ValueError("gamma_theta and gamma_phi must lie in (0, 1)")
        if not 0.0 < self.eta_phi < 0.5:
            raise ValueError(f"eta_phi must lie in (0, 0.5), got {self.eta_phi}")
        if self.s_phi <= 1.0 or self.s_theta <= 1.0:
            raise ValueError("s_phi and s_theta must exceed 1")
        if self.max_soc < 0:
            raise ValueError(f"max_soc must be non-negative, got {self.max_soc}")
        if self.perturb_inc_fact <= 1.0 or self.perturb_inc_fact_first <= 1.0:
            raise ValueError("perturbation increase factors must exceed 1")
        if not 0.0 < self.perturb_dec_fact < 1.0:
            raise ValueError("perturb_dec_fact must lie in (0, 1)")
        if self.max_refactorizations < 1:
            raise ValueError("max_refactorizations must be positive")
        if self.resto_max_iter < 0:
            raise ValueError("resto_max_iter must be non-negative")
        if not 0.0 < self.kappa_resto < 1.0:
            raise ValueError(f"kappa_resto must lie in (0, 1), got {self.kappa_resto}")
        if self.intermediate_callback is not None and not callable(self.intermediate_callback):
            raise ValueError("intermediate_callback must be callable")

    @property
    def mu_floor(self) -> float:
        return max(self.mu_target, self.mu_min)


# ======================================
# Helpers
# ======================================
def _as_float_array(v) -> np.ndarray:
    return np.atleast_1d(np.asarray(v, dtype=float)).ravel()


def _dense(A, shape) -> np.ndarray:
    if A is None:
        return np.zeros(shape)
    if sp.issparse(A):
        A = A.toarray()
    A = np.asarray(A, dtype=float)
    if A.size == 0:
        return np.zeros(shape)
    return A.reshape(shape)


# ======================================
# Problem model
# ======================================
class Model:
    """
    Callback wrapper describing  min f(x)  s.t.  c_eq(x) = 0,  c_ineq(x) <= 0,  lb <= x <= ub.

    Derivatives are user supplied. The Hessian of the Lagrangian comes from
    `hess(x, obj_factor, y_eq, y_ineq)` when given, otherwise it is assembled
    from `hessp(x, v, obj_factor, y_eq, y_ineq)` with n products, otherwise it
    is approximated by finite differences of the Lagrangian gradient.
    Jacobians may be dense arrays or scipy.sparse matrices.

    Constraint counts are inferred from one evaluation when not given.
    """

    __slots__ = (
        "n",
        "m_eq",
        "m_ineq",
        "lb",
        "ub",
        "_f",
        "_grad",
        "_c_eq",
        "_jac_eq",
        "_c_ineq",
        "_jac_ineq",
        "_hess",
        "_hessp",
        "fd_step",
    )

    def __init__(
        self,
        n: int,
        f: Callable,
        grad: Callable,
        c_eq: Optional[Callable] = None,
        jac_eq: Optional[Callable] = None,
        c_ineq: Optional[Callable] = None,
        jac_ineq: Optional[Callable] = None,
        *,
        hess: Optional[Callable] = None,
        hessp: Optional[Callable] = None,
        lb=None,
        ub=None,
        m_eq: Optional[int] = None,
        m_ineq: Optional[int] = None,
        fd_step: float = 1.5e-8,
    ):
        if n is None or int(n) <= 0:
            raise ValueError(f"Number of variables n must be positive, got {n}")
        if not callable(f) or not callable(grad):
            raise ValueError("Objective f and its gradient must be callable")
        if (c_eq is None) != (jac_eq is None):
            raise ValueError("c_eq and jac_eq must be given together")
        if (c_ineq is None) != (jac_ineq is None):
            raise ValueError("c_ineq and jac_ineq must be given together")
        for name, fn in (("c_eq", c_eq), ("jac_eq", jac_eq), ("c_ineq", c_ineq),
                         ("jac_ineq", jac_ineq), ("hess", hess), ("hessp", hessp)):
            if fn is not None and not callable(fn):
                raise ValueError(f"{name} must be callable")

        self.n = int(n)
        self._f, self._grad = f, grad
        self._c_eq, self._jac_eq = c_eq, jac_eq
        self._c_ineq, self._jac_ineq = c_ineq, jac_ineq
        self._hess, self._hessp = hess, hessp
        self.fd_step = float(fd_step)

        self.m_eq = 0 if c_eq is None else m_eq
        self.m_ineq = 0 if c_ineq is None else m_ineq

        self.lb = np.full(self.n, -np.inf) if lb is None else _as_float_array(lb)
        self.ub = np.full(self.n, np.inf) if ub is None else _as_float_array(ub)
        if self.lb.size != self.n or self.ub.size != self.n:
            raise ValueError(f"Bounds must have length n={self.n}")
        if np.any(np.isnan(self.lb)) or np.any(np.isnan(self.ub)):
            raise ValueError("Bounds must not contain NaN")
        if np.any(self.lb > self.ub):
            raise ValueError("Lower bounds must not exceed upper bounds")
        if np.any(self.lb == self.ub):
            raise ValueError("Fixed variables (lb == ub) are not supported")

    # ---------- sizes ----------
    def infer_sizes(self, x: np.ndarray) -> None:
        if self.m_eq is None:
            self.m_eq = int(self._call("c_eq", self._c_eq, x).size)
        if self.m_ineq is None:
            self.m_ineq = int(self._call("c_ineq", self._c_ineq, x).size)

    # ---------- guarded evaluation ----------
    def _call(self, name: str, fn: Callable, *args) -> np.ndarray:
        try:
            out = fn(*args)
        except (ArithmeticError, ValueError, OverflowError) as exc:
            raise EvaluationError(f"{name} evaluation failed: {exc}") from exc
        if sp.issparse(out):
            out = out.toarray()
        out = np.asarray(out, dtype=float)
        if not np.all(np.isfinite(out)):
            raise EvaluationError(f"{name} returned non-finite values")
        return out

    # ---------- objective ----------
    def f(self, x: np.ndarray) -> float:
        return float(self._call("f", self._f, x).item())

    def grad(self, x: np.ndarray) -> np.ndarray:
        return self._call("grad", self._grad, x).reshape(self.n)

    # ---------- constraints ----------
    def c_eq(self, x: np.ndarray) -> np.ndarray:
        if self.m_eq == 0:
            return np.zeros(0)
        return self._call("c_eq", self._c_eq, x).reshape(self.m_eq)

    def c_ineq(self, x: np.ndarray) -> np.ndarray:
        if self.m_ineq == 0:
            return np.zeros(0)
        return self._call("c_ineq", self._c_ineq, x).reshape(self.m_ineq)

    def jac_eq(self, x: np.ndarray) -> np.ndarray:
        if self.m_eq == 0:
            return np.zeros((0, self.n))
        return _dense(self._call("jac_eq", self._jac_eq, x), (self.m_eq, self.n))

    def jac_ineq(self, x: np.ndarray) -> np.ndarray:
        if self.m_ineq == 0:
            return np.zeros((0, self.n))
        return _dense(self._call("jac_ineq", self._jac_ineq, x), (self.m_ineq, self.n))

    # ---------- second order ----------
    def lagrangian_gradient(self, x, obj_factor: float, y_eq, y_ineq) -> np.ndarray:
        g = obj_factor * self.grad(x)
        if self.m_eq:
            g = g + self.jac_eq(x).T @ y_eq
        if self.m_ineq:
            g = g + self.jac_ineq(x).T @ y_ineq
        return g

    def lagrangian_hessian(self, x, obj_factor: float, y_eq, y_ineq) -> np.ndarray:
        """Dense symmetric Hessian of obj_factor·f + y_eqᵀc_eq + y_ineqᵀc_ineq."""
        n = self.n
        if self._hess is not None:
            H = _dense(self._call("hess", self._hess, x, obj_factor, y_eq, y_ineq), (n, n))
        elif self._hessp is not None:
            H = np.empty((n, n))
            E = np.eye(n)
            for j in range(n):
                H[:, j] = self._call("hessp", self._hessp, x, E[j], obj_factor, y_eq, y_ineq).reshape(n)
        else:
            H = self._fd_hessian(x, obj_factor, y_eq, y_ineq)
        return 0.5 * (H + H.T)

    def _fd_hessian(self, x, obj_factor, y_eq, y_ineq) -> np.ndarray:
        n = self.n
        g0 = self.lagrangian_gradient(x, obj_factor, y_eq, y_ineq)
        H = np.empty((n, n))
        for j in range(n):
            h = self.fd_step * max(1.0, abs(x[j]))
            xp = x.copy()
            xp[j] += h
            H[:, j] = (self.lagrangian_gradient(xp, obj_factor, y_eq, y_ineq) - g0) / h
        logging.debug("[Model] finite-difference Hessian built with %d gradient calls", n)
        return H

    # ---------- diagnostics ----------
    def constraint_violation(self, x: np.ndarray) -> float:
        """∞-norm violation of equalities, inequalities and bounds."""
        parts = [np.abs(self.c_eq(x)), np.maximum(self.c_ineq(x), 0.0),
                 np.maximum(self.lb - x, 0.0), np.maximum(x - self.ub, 0.0)]
        v = np.concatenate([p for p in parts if p.size])
        return float(np.max(v)) if v.size else 0.0

    def __repr__(self) -> str:
        return f"Model(n={self.n}, m_eq={self.m_eq}, m_ineq={self.m_ineq})"
