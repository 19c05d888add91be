from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Callable, Dict, Optional, Tuple

import numpy as np

from .blocks.aux import IPConfig, Model, NormType
from .ip_kernels import k_complementarity_products


def safe_norm(v: np.ndarray, norm: NormType = NormType.MAX) -> float:
    if v is None or v.size == 0:
        return 0.0
    if norm is NormType.MAX:
        return float(np.max(np.abs(v)))
    if norm is NormType.ONE:
        return float(np.sum(np.abs(v)))
    return float(np.linalg.norm(v))


def get_bounds(model: Model) -> Tuple[np.ndarray, np.ndarray, np.ndarray, np.ndarray]:
    lb = np.asarray(model.lb, float).ravel()
    ub = np.asarray(model.ub, float).ravel()
    return lb, ub, np.isfinite(lb), np.isfinite(ub)


# ------------------ IP state ------------------
@dataclass(frozen=True)
class Iterate:
    """
    Primal-dual point (x, s, y_c, y_d, z_L, z_U).

    y_d multiplies d(x) + s = 0 and doubles as the bound multiplier of s,
    so s > 0 and y_d > 0; z_L, z_U are zero where the bound is infinite.
    """

    x: np.ndarray
    s: np.ndarray
    y_c: np.ndarray
    y_d: np.ndarray
    z_L: np.ndarray
    z_U: np.ndarray

    def with_primal(self, x: np.ndarray, s: np.ndarray) -> "Iterate":
        return replace(self, x=x, s=s)

    @staticmethod
    def initial(model: Model, x0: np.ndarray, cfg: IPConfig) -> "Iterate":
        """Push x0 into the bounds, set slacks from d(x0) and unit bound multipliers."""
        lb, ub, hasL, hasU = get_bounds(model)
        x = push_into_bounds(np.asarray(x0, float).ravel(), lb, ub, cfg.bound_push, cfg.bound_frac)

        d = model.c_ineq(x)
        s = np.maximum(-d, cfg.slack_bound_push * np.maximum(1.0, np.abs(d)))
        mult = float(cfg.bound_mult_init_val)
        return Iterate(
            x=x,
            s=s,
            y_c=np.zeros(model.m_eq),
            y_d=np.full(model.m_ineq, mult),
            z_L=np.where(hasL, mult, 0.0),
            z_U=np.where(hasU, mult, 0.0),
        )


def push_into_bounds(x, lb, ub, kappa1: float, kappa2: float) -> np.ndarray:
    x = np.asarray(x, float).copy()
    hasL, hasU = np.isfinite(lb), np.isfinite(ub)
    both = hasL & hasU
    width = np.where(both, ub - lb, np.inf)
    pL = np.where(hasL, np.minimum(kappa1 * np.maximum(1.0, np.abs(np.where(hasL, lb, 0.0))), kappa2 * width), 0.0)
    pU = np.where(hasU, np.minimum(kappa1 * np.maximum(1.0, np.abs(np.where(hasU, ub, 0.0))), kappa2 * width), 0.0)
    x = np.where(hasL, np.maximum(x, np.where(hasL, lb, 0.0) + pL), x)
    x = np.where(hasU, np.minimum(x, np.where(hasU, ub, 0.0) - pU), x)
    return x


# ------------------ derived quantities ------------------
_PRIMAL_KEYS = frozenset({"f", "g", "c", "d", "Jc", "Jd", "r_p", "theta", "viol", "phi", "gphi_x"})


class IterateQuantities:
    """
    Lazily computed, memoized quantities of one iterate.

    Bound to a fixed (model, iterate) pair: every quantity is computed at most
    once. A new iterate always gets a new instance, which is what invalidates
    the cache.
    """

    def __init__(self, model: Model, it: Iterate, cfg: IPConfig):
        self.model = model
        self.it = it
        self.cfg = cfg
        self._memo: Dict[tuple, object] = {}
        lb, ub, self.hasL, self.hasU = get_bounds(model)
        x = it.x
        self.sL = np.where(self.hasL, x - np.where(self.hasL, lb, 0.0), 1.0)
        self.sU = np.where(self.hasU, np.where(self.hasU, ub, 0.0) - x, 1.0)

    def _cached(self, key: tuple, fn: Callable[[], object]):
        if key not in self._memo:
            self._memo[key] = fn()
        return self._memo[key]

    def with_duals(self, it: Iterate) -> "IterateQuantities":
        """Same primal point, new multipliers: keeps every primal-only entry."""
        out = IterateQuantities(self.model, it, self.cfg)
        out._memo = {k: v for k, v in self._memo.items() if k[0] in _PRIMAL_KEYS}
        return out

    @property
    def x(self) -> np.ndarray:
        return self.it.x

    # ---------- model values ----------
    def objective(self) -> float:
        return self._cached(("f",), lambda: self.model.f(self.it.x))

    def grad_f(self) -> np.ndarray:
        return self._cached(("g",), lambda: self.model.grad(self.it.x))

    def c(self) -> np.ndarray:
        return self._cached(("c",), lambda: self.model.c_eq(self.it.x))

    def d(self) -> np.ndarray:
        return self._cached(("d",), lambda: self.model.c_ineq(self.it.x))

    def jac_c(self) -> np.ndarray:
        return self._cached(("Jc",), lambda: self.model.jac_eq(self.it.x))

    def jac_d(self) -> np.ndarray:
        return self._cached(("Jd",), lambda: self.model.jac_ineq(self.it.x))

    def hessian(self) -> np.ndarray:
        it = self.it
        return self._cached(("W",), lambda: self.model.lagrangian_hessian(it.x, 1.0, it.y_c, it.y_d))

    # ---------- primal ----------
    def primal_residual(self) -> np.ndarray:
        return self._cached(("r_p",), lambda: np.concatenate([self.c(), self.d() + self.it.s]))

    def infeasibility(self, norm: NormType = NormType.ONE) -> float:
        return self._cached(("theta", norm), lambda: safe_norm(self.primal_residual(), norm))

    def theta(self) -> float:
        return self.infeasibility(NormType.ONE)

    def nlp_constraint_violation(self, norm: NormType = NormType.MAX) -> float:
        def _viol():
            lb, ub, hasL, hasU = get_bounds(self.model)
            x = self.it.x
            v = np.concatenate([
                self.c(),
                np.maximum(self.d(), 0.0),
                np.where(hasL, np.maximum(np.where(hasL, lb, 0.0) - x, 0.0), 0.0),
                np.where(hasU, np.maximum(x - np.where(hasU, ub, 0.0), 0.0), 0.0),
            ])
            return safe_norm(v, norm)

        return self._cached(("viol", norm), _viol)

    def max_abs_x(self) -> float:
        return safe_norm(self.it.x, NormType.MAX)

    # ---------- dual ----------
    def grad_lag_x(self) -> np.ndarray:
        def _g():
            it = self.it
            g = self.grad_f().copy()
            if it.y_c.size:
                g += self.jac_c().T @ it.y_c
            if it.y_d.size:
                g += self.jac_d().T @ it.y_d
            return g - it.z_L + it.z_U

        return self._cached(("grad_lag",), _g)

    def dual_infeasibility(self, norm: NormType = NormType.MAX) -> float:
        return self._cached(("dual_inf", norm), lambda: safe_norm(self.grad_lag_x(), norm))

    # ---------- complementarity ----------
    def complementarity_products(self) -> np.ndarray:
        it = self.it
        return self._cached(
            ("compl_prod",),
            lambda: k_complementarity_products(
                it.s, it.y_d, self.sL, it.z_L, self.sU, it.z_U, self.hasL, self.hasU
            ),
        )

    def complementarity(self, mu_target: float = 0.0, norm: NormType = NormType.MAX) -> float:
        return self._cached(
            ("compl", float(mu_target), norm),
            lambda: safe_norm(self.complementarity_products() - mu_target, norm),
        )

    def average_complementarity(self) -> float:
        p = self.complementarity_products()
        return float(np.mean(p)) if p.size else 0.0

    # ---------- scaled errors ----------
    def _scalings(self) -> Tuple[float, float]:
        def _sc():
            it = self.it
            s_max = self.cfg.s_max
            zsum = float(np.sum(np.abs(it.z_L)) + np.sum(np.abs(it.z_U)) + np.sum(np.abs(it.y_d)))
            n_z = int(np.count_nonzero(self.hasL) + np.count_nonzero(self.hasU) + it.y_d.size)
            n_all = n_z + it.y_c.size
            s_d = max(s_max, (zsum + float(np.sum(np.abs(it.y_c)))) / max(1, n_all)) / s_max
            s_c = max(s_max, zsum / max(1, n_z)) / s_max
            return s_d, s_c

        return self._cached(("scal",), _sc)

    def barrier_error(self, mu: float) -> float:
        def _err():
            s_d, s_c = self._scalings()
            return max(
                self.dual_infeasibility(NormType.MAX) / s_d,
                self.infeasibility(NormType.MAX),
                self.complementarity(mu, NormType.MAX) / s_c,
            )

        return self._cached(("E_mu", float(mu)), _err)

    def overall_error(self) -> float:
        return self.barrier_error(0.0)

    # ---------- barrier function ----------
    def barrier_objective(self, mu: float) -> float:
        def _phi():
            it = self.it
            val = self.objective() - mu * float(np.sum(np.log(it.s)))
            val -= mu * float(np.sum(np.log(self.sL[self.hasL])))
            val -= mu * float(np.sum(np.log(self.sU[self.hasU])))
            return val

        return self._cached(("phi", float(mu)), _phi)

    def grad_barrier_x(self, mu: float) -> np.ndarray:
        return self._cached(
            ("gphi_x", float(mu)),
            lambda: self.grad_f() - np.where(self.hasL, mu / self.sL, 0.0) + np.where(self.hasU, mu / self.sU, 0.0),
        )

    def grad_barrier_s(self, mu: float) -> np.ndarray:
        return -mu / self.it.s

    def step_norm(self, direction: Optional["SearchDirection"]) -> float:
        if direction is None:
            return 0.0
        return max(safe_norm(direction.dx), safe_norm(direction.ds))

    # ---------- diagnostics ----------
    def summary(self, mu: float) -> Dict[str, float]:
        return {
            "f": self.objective(),
            "theta": self.theta(),
            "inf_pr": self.infeasibility(NormType.MAX),
            "constr_viol": self.nlp_constraint_violation(NormType.MAX),
            "inf_du": self.dual_infeasibility(NormType.MAX),
            "compl": self.complementarity(0.0, NormType.MAX),
            "error": self.overall_error(),
            "mu": mu,
        }
