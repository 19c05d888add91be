# --- KKT assembly, linear solver backends and inertia-correcting solve ---
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Protocol, Tuple

import numpy as np
import scipy.linalg as la

from .blocks.aux import IPConfig, InertiaCorrectionError
from .blocks.reg import InertiaRegularizer, RegInfo
from .ip_aux import IterateQuantities

EPS_DIV = 1e-16


def _div(a: np.ndarray, b: np.ndarray, eps: float = EPS_DIV) -> np.ndarray:
    return a / np.maximum(b, eps)


# ---------------------- Inertia report ----------------------
@dataclass
class InertiaReport:
    n_pos: int
    n_neg: int
    n_zero: int
    singular: bool = False

    def matches(self, n_pos: int, n_neg: int) -> bool:
        return (not self.singular) and self.n_zero == 0 and self.n_pos == n_pos and self.n_neg == n_neg

    def as_tuple(self) -> Tuple[int, int, int]:
        return (self.n_pos, self.n_neg, self.n_zero)


def _inertia_from_eigs(w: np.ndarray, zero_tol: float) -> InertiaReport:
    # absolute threshold, not scaled by the spread of the spectrum
    if not np.all(np.isfinite(w)):
        return InertiaReport(0, 0, int(w.size), singular=True)
    n_pos = int(np.sum(w > zero_tol))
    n_neg = int(np.sum(w < -zero_tol))
    return InertiaReport(n_pos, n_neg, int(w.size) - n_pos - n_neg)


# ---------------------- Linear solver interface ----------------------
class LinearSolver(Protocol):
    name: str

    def factorize(self, K: np.ndarray) -> InertiaReport: ...

    def solve(self, rhs: np.ndarray) -> np.ndarray: ...


class LDLSolver:
    """Bunch–Kaufman LDLᵀ (scipy.linalg.ldl); inertia read off the block-diagonal D."""

    name = "ldl"

    def __init__(self, zero_tol: float = 1e-12):
        self.zero_tol = zero_tol
        self._fac = None

    def factorize(self, K: np.ndarray) -> InertiaReport:
        self._fac = None
        if not np.all(np.isfinite(K)):
            return InertiaReport(0, 0, K.shape[0], singular=True)
        lu, D, perm = la.ldl(K, lower=True, hermitian=True)
        # D is block diagonal (1x1 / 2x2) so its eigenvalues carry K's inertia
        rep = _inertia_from_eigs(la.eigvalsh(D), self.zero_tol)
        if rep.n_zero == 0:
            self._fac = (lu[perm], D, perm)
        return rep

    def solve(self, rhs: np.ndarray) -> np.ndarray:
        if self._fac is None:
            raise RuntimeError("LDLSolver.solve called without a valid factorization")
        L, D, perm = self._fac
        y = la.solve_triangular(L, rhs[perm], lower=True, unit_diagonal=True)
        w = la.solve(D, y, assume_a="sym")
        z = la.solve_triangular(L.T, w, lower=False, unit_diagonal=True)
        out = np.empty_like(z)
        out[perm] = z
        return out


class EighSolver:
    """Dense symmetric eigendecomposition; exact inertia, slower."""

    name = "eigh"

    def __init__(self, zero_tol: float = 1e-12):
        self.zero_tol = zero_tol
        self._fac = None

    def factorize(self, K: np.ndarray) -> InertiaReport:
        self._fac = None
        if not np.all(np.isfinite(K)):
            return InertiaReport(0, 0, K.shape[0], singular=True)
        w, V = la.eigh(K)
        rep = _inertia_from_eigs(w, self.zero_tol)
        if rep.n_zero == 0:
            self._fac = (w, V)
        return rep

    def solve(self, rhs: np.ndarray) -> np.ndarray:
        if self._fac is None:
            raise RuntimeError("EighSolver.solve called without a valid factorization")
        w, V = self._fac
        return V @ ((V.T @ rhs) / w)


# ---------------------- Registry and dispatcher ----------------------
class KKTSolverRegistry:
    def __init__(self):
        self._map: Dict[str, Callable[..., LinearSolver]] = {}

    def register(self, name: str, factory: Callable[..., LinearSolver]):
        self._map[name] = factory

    def create(self, name: str, **kw) -> LinearSolver:
        if name not in self._map:
            raise KeyError(f"Unknown linear solver '{name}'")
        return self._map[name](**kw)

    def names(self):
        return sorted(self._map)


DEFAULT_KKT_REGISTRY = KKTSolverRegistry()
DEFAULT_KKT_REGISTRY.register("ldl", LDLSolver)
DEFAULT_KKT_REGISTRY.register("eigh", EighSolver)


# ---------------------- Search direction ----------------------
@dataclass
class SearchDirection:
    dx: np.ndarray
    ds: np.ndarray
    dy_c: np.ndarray
    dy_d: np.ndarray
    dz_L: np.ndarray
    dz_U: np.ndarray
    delta_w: float = 0.0
    delta_c: float = 0.0


class SearchDirectionSolver:
    """
    Builds and solves the reduced primal-dual system

        [ W + Σ_x + δ_w I   0              J_cᵀ     J_dᵀ  ] [dx  ]     [ ∇_xφ + J_cᵀy_c + J_dᵀy_d ]
        [ 0                 Σ_s + δ_w I    0        I     ] [ds  ] = - [ y_d - μ/s                ]
        [ J_c               0             -δ_c I    0     ] [dy_c]     [ c(x)                     ]
        [ J_d               I              0       -δ_c I ] [dy_d]     [ d(x) + s                 ]

    with Σ_x = z_L/(x - x_L) + z_U/(x_U - x) and Σ_s = y_d/s, then recovers
    the bound-multiplier steps from the complementarity rows. The last
    factorization is kept so second-order corrections only re-solve.
    """

    def __init__(
        self,
        cfg: IPConfig,
        linear_solver: Optional[LinearSolver] = None,
        regularizer: Optional[InertiaRegularizer] = None,
    ):
        self.cfg = cfg
        self.linsol = linear_solver or DEFAULT_KKT_REGISTRY.create(
            cfg.linear_solver, zero_tol=cfg.inertia_zero_tol
        )
        self.reg = regularizer or InertiaRegularizer(cfg)
        self.last_info: Optional[RegInfo] = None
        self._last: Optional[Tuple[IterateQuantities, float, np.ndarray]] = None

    # ---------- assembly ----------
    def _assemble(self, q: IterateQuantities, delta_w: float, delta_c: float) -> np.ndarray:
        it = q.it
        n, mI, mE = it.x.size, it.s.size, it.y_c.size
        N = n + mI + mE + mI
        K = np.zeros((N, N))
        sig_x = np.where(q.hasL, _div(it.z_L, q.sL), 0.0) + np.where(q.hasU, _div(it.z_U, q.sU), 0.0)
        K[:n, :n] = q.hessian() + np.diag(sig_x + delta_w)
        i_s, i_c, i_d = n, n + mI, n + mI + mE
        if mI:
            K[i_s:i_c, i_s:i_c] = np.diag(_div(it.y_d, it.s) + delta_w)
            Jd = q.jac_d()
            K[i_d:, :n] = Jd
            K[:n, i_d:] = Jd.T
            K[i_d:, i_s:i_c] = np.eye(mI)
            K[i_s:i_c, i_d:] = np.eye(mI)
            K[i_d:, i_d:] = -delta_c * np.eye(mI)
        if mE:
            Jc = q.jac_c()
            K[i_c:i_d, :n] = Jc
            K[:n, i_c:i_d] = Jc.T
            K[i_c:i_d, i_c:i_d] = -delta_c * np.eye(mE)
        return K

    def _rhs(self, q: IterateQuantities, mu: float) -> np.ndarray:
        it = q.it
        r_x = q.grad_barrier_x(mu)
        if it.y_c.size:
            r_x = r_x + q.jac_c().T @ it.y_c
        if it.y_d.size:
            r_x = r_x + q.jac_d().T @ it.y_d
        r_s = it.y_d - mu / it.s
        return -np.concatenate([r_x, r_s, q.c(), q.d() + it.s])

    # ---------- solve ----------
    def compute(self, q: IterateQuantities, mu: float) -> SearchDirection:
        """Regularize until the inertia is right, then solve. Raises InertiaCorrectionError."""
        it = q.it
        n, mI, mE = it.x.size, it.s.size, it.y_c.size
        want_pos, want_neg = n + mI, mE + mI
        delta_w, delta_c = 0.0, 0.0

        for attempt in range(1, self.cfg.max_refactorizations + 1):
            rep = self.linsol.factorize(self._assemble(q, delta_w, delta_c))
            if rep.matches(want_pos, want_neg):
                break
            logging.debug(
                f"[KKT] attempt {attempt}: inertia {rep.as_tuple()} (want {want_pos},{want_neg},0), "
                f"δ_w={delta_w:.2e}, δ_c={delta_c:.2e}"
            )
            if (rep.n_zero > 0 or rep.singular) and delta_c == 0.0 and (mE + mI) > 0:
                delta_c = self.reg.delta_c(mu)
                if delta_w == 0.0:
                    continue
            delta_w = self.reg.next_delta_w(delta_w)
        else:
            raise InertiaCorrectionError(
                f"Inertia correction failed after {self.cfg.max_refactorizations} factorizations"
            )

        self.last_info = self.reg.record_success(delta_w, delta_c, attempt, rep.as_tuple())
        rhs = self._rhs(q, mu)
        self._last = (q, mu, rhs)
        return self._unpack(q, mu, self.linsol.solve(rhs), delta_w, delta_c)

    def resolve_constraints(self, r_c: np.ndarray, r_d: np.ndarray) -> SearchDirection:
        """Re-solve with the last factorization, replacing the constraint residuals."""
        if self._last is None:
            raise RuntimeError("resolve_constraints called before compute")
        q, mu, rhs = self._last
        n, mI = q.it.x.size, q.it.s.size
        new_rhs = rhs.copy()
        new_rhs[n + mI:] = -np.concatenate([r_c, r_d])
        info = self.last_info
        return self._unpack(q, mu, self.linsol.solve(new_rhs), info.delta_w, info.delta_c)

    def _unpack(self, q, mu, sol, delta_w, delta_c) -> SearchDirection:
        it = q.it
        n, mI, mE = it.x.size, it.s.size, it.y_c.size
        dx = sol[:n]
        ds = sol[n:n + mI]
        dy_c = sol[n + mI:n + mI + mE]
        dy_d = sol[n + mI + mE:]
        dz_L, dz_U = self._dz_bounds_from_dx(q, dx, mu)
        return SearchDirection(dx, ds, dy_c, dy_d, dz_L, dz_U, delta_w, delta_c)

    @staticmethod
    def _dz_bounds_from_dx(q: IterateQuantities, dx: np.ndarray, mu: float):
        it = q.it
        dzL = np.where(q.hasL, _div(mu - q.sL * it.z_L - it.z_L * dx, q.sL), 0.0)
        dzU = np.where(q.hasU, _div(mu - q.sU * it.z_U + it.z_U * dx, q.sU), 0.0)
        return dzL, dzU
