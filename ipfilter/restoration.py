from __future__ import annotations

import logging
from dataclasses import replace
from typing import Callable, Tuple

import numpy as np

from .blocks.aux import ConvergenceStatus, EvaluationError, IPConfig, Model, NormType, RestorationFailedError
from .conv import ConvergenceChecker, RestorationConvergenceChecker
from .ip_aux import Iterate, IterateQuantities, get_bounds


# --- the restoration model ---
class RestorationModel:
    """
    Feasibility problem solved when the filter line search gets stuck.

    Variables:   bar_x = [ x (n) ; p_c (m_eq) ; n_c (m_eq) ; p_d (m_ineq) ]
    Equalities:  c(x) - p_c + n_c = 0
    Inequality:  d(x) - p_d <= 0
    Bounds:      original bounds on x, p_c, n_c, p_d >= 0
    Objective:   ρ·1ᵀ(p_c + n_c + p_d) + (ζ/2)·‖D_R (x - x_R)‖²

    with D_R = diag(min(1, 1/|x_R|)). Exposes the same evaluation interface
    as `Model`, so the ordinary solver can run on it.
    """

    def __init__(self, base: Model, x_R: np.ndarray, zeta: float, rho: float):
        self.base = base
        self.x_R = np.asarray(x_R, dtype=float).copy()
        absx = np.abs(self.x_R)
        self.D_R = np.where(absx > 1.0, 1.0 / np.maximum(absx, 1.0), 1.0)
        self.zeta = float(zeta)
        self.rho = float(rho)

        self.n_orig = int(base.n)
        self.m_eq = int(base.m_eq)
        self.m_ineq = int(base.m_ineq)
        self.n = self.n_orig + 2 * self.m_eq + self.m_ineq

        n_aux = self.n - self.n_orig
        self.lb = np.concatenate([np.asarray(base.lb, float), np.zeros(n_aux)])
        self.ub = np.concatenate([np.asarray(base.ub, float), np.full(n_aux, np.inf)])

    def infer_sizes(self, bar_x) -> None:
        pass

    # ------------ helpers ------------
    def split(self, bar_x) -> Tuple[np.ndarray, np.ndarray, np.ndarray, np.ndarray]:
        n, mE = self.n_orig, self.m_eq
        x = bar_x[:n]
        p_c = bar_x[n:n + mE]
        n_c = bar_x[n + mE:n + 2 * mE]
        p_d = bar_x[n + 2 * mE:]
        return x, p_c, n_c, p_d

    # ------------ objective ------------
    def f(self, bar_x) -> float:
        x, p_c, n_c, p_d = self.split(bar_x)
        r = self.D_R * (x - self.x_R)
        return 0.5 * self.zeta * float(r @ r) + self.rho * float(p_c.sum() + n_c.sum() + p_d.sum())

    def grad(self, bar_x) -> np.ndarray:
        x = bar_x[:self.n_orig]
        gx = self.zeta * self.D_R ** 2 * (x - self.x_R)
        return np.concatenate([gx, np.full(self.n - self.n_orig, self.rho)])

    # ------------ constraints ------------
    def c_eq(self, bar_x) -> np.ndarray:
        x, p_c, n_c, _ = self.split(bar_x)
        return self.base.c_eq(x) - p_c + n_c

    def c_ineq(self, bar_x) -> np.ndarray:
        x, _, _, p_d = self.split(bar_x)
        return self.base.c_ineq(x) - p_d

    def jac_eq(self, bar_x) -> np.ndarray:
        mE, mI = self.m_eq, self.m_ineq
        I = np.eye(mE)
        return np.hstack([self.base.jac_eq(bar_x[:self.n_orig]), -I, I, np.zeros((mE, mI))])

    def jac_ineq(self, bar_x) -> np.ndarray:
        mE, mI = self.m_eq, self.m_ineq
        return np.hstack([self.base.jac_ineq(bar_x[:self.n_orig]), np.zeros((mI, 2 * mE)), -np.eye(mI)])

    # ------------ second order ------------
    def lagrangian_hessian(self, bar_x, obj_factor: float, y_c, y_d) -> np.ndarray:
        """Constraint curvature from the base model plus ζ·D_R² on the x block."""
        n = self.n_orig
        H = np.zeros((self.n, self.n))
        H[:n, :n] = self.base.lagrangian_hessian(bar_x[:n], 0.0, y_c, y_d)
        H[:n, :n] += obj_factor * self.zeta * np.diag(self.D_R ** 2)
        return H

    def constraint_violation(self, bar_x) -> float:
        """∞-norm violation of the original problem at the x part of bar_x."""
        return self.base.constraint_violation(bar_x[:self.n_orig])


def _closed_form_pn(c: np.ndarray, mu: float, rho: float) -> Tuple[np.ndarray, np.ndarray]:
    # minimizer of ρ(p + n) - μ log p - μ log n  subject to  p - n = c
    a = (mu - rho * c) / (2.0 * rho)
    n = a + np.sqrt(a * a + mu * c / (2.0 * rho))
    return c + n, n


class RestorationPhase:
    """
    Runs an inner interior-point solve on `RestorationModel` and hands the
    outer solver a fresh interior iterate.

    The inner solve is an ordinary solver instance (created by
    `solver_factory`) with its own configuration, filter and a
    `RestorationConvergenceChecker`; restoration inside restoration is
    disabled. Success means the original infeasibility dropped below
    κ_resto·θ_trigger at a point the outer filter accepts.
    """

    def __init__(self, cfg: IPConfig, model: Model, line_search, solver_factory: Callable):
        self.cfg = cfg
        self.model = model
        self.ls = line_search
        self.solver_factory = solver_factory
        self.calls = 0
        self.last_inner = None

    # ---------- helpers ----------
    def _outer_iterate(self, x: np.ndarray, mu: float, theta_trigger: float) -> Iterate:
        model = self.model
        lb, ub, hasL, hasU = get_bounds(model)
        d = model.c_ineq(x)
        floor = max(1e-12, min(mu, self.cfg.kappa_resto * theta_trigger / (10.0 * max(1, model.m_ineq))))
        s = np.maximum(-d, floor)
        sL = np.where(hasL, x - np.where(hasL, lb, 0.0), 1.0)
        sU = np.where(hasU, np.where(hasU, ub, 0.0) - x, 1.0)
        return Iterate(
            x=x.copy(),
            s=s,
            y_c=np.zeros(model.m_eq),
            y_d=mu / s,
            z_L=np.where(hasL, mu / sL, 0.0),
            z_U=np.where(hasU, mu / sU, 0.0),
        )

    def _initial_inner(self, rmodel: RestorationModel, q: IterateQuantities, mu_R: float) -> Iterate:
        rho = rmodel.rho
        p_c, n_c = _closed_form_pn(q.c(), mu_R, rho)
        p_d, s_in = _closed_form_pn(q.d(), mu_R, rho)
        bar_x = np.concatenate([q.x, p_c, n_c, p_d])

        lb, ub, hasL, hasU = get_bounds(rmodel)
        sL = np.where(hasL, bar_x - np.where(hasL, lb, 0.0), 1.0)
        sU = np.where(hasU, np.where(hasU, ub, 0.0) - bar_x, 1.0)
        return Iterate(
            x=bar_x,
            s=s_in,
            y_c=np.zeros(rmodel.m_eq),
            y_d=mu_R / s_in,
            z_L=np.where(hasL, mu_R / sL, 0.0),
            z_U=np.where(hasU, mu_R / sU, 0.0),
        )

    # ---------- main ----------
    def restore(self, q: IterateQuantities, mu: float) -> IterateQuantities:
        """Returns the quantities of the restored outer iterate or raises RestorationFailedError."""
        cfg, model = self.cfg, self.model
        self.calls += 1
        theta_trigger = q.theta()
        phi_trigger = q.barrier_objective(mu)
        threshold = cfg.resto_feasibility_threshold
        if threshold is None:
            threshold = 1e2 * cfg.tol

        if model.m_eq + model.m_ineq == 0:
            raise RestorationFailedError("restoration needed but the problem has no constraints")
        if q.infeasibility(NormType.MAX) <= threshold:
            raise RestorationFailedError(
                f"restoration called at an almost feasible point (θ_∞={q.infeasibility(NormType.MAX):.3e})"
            )

        # the triggering point must not be revisited
        self.ls.filter.add(theta_trigger, phi_trigger)

        mu_R = max(mu, q.infeasibility(NormType.MAX))
        rmodel = RestorationModel(model, q.x, zeta=np.sqrt(mu_R), rho=cfg.resto_penalty)
        it0 = self._initial_inner(rmodel, q, mu_R)

        restored: dict = {}

        def _restored(q_in: IterateQuantities) -> bool:
            try:
                it = self._outer_iterate(q_in.x[:model.n], mu, theta_trigger)
                q_out = IterateQuantities(model, it, cfg)
                theta, phi = q_out.theta(), q_out.barrier_objective(mu)
            except EvaluationError:
                return False
            if theta <= cfg.kappa_resto * theta_trigger and self.ls.filter.is_acceptable(theta, phi):
                restored["q"] = q_out
                return True
            return False

        cfg_in = replace(
            cfg,
            max_iter=cfg.resto_max_iter,
            mu_init=mu_R,
            acceptable_iter=0,
            intermediate_callback=None,
            verbose=False,
        )
        checker = RestorationConvergenceChecker(
            ConvergenceChecker(cfg_in, rmodel.n, rmodel.m_eq), restored=_restored
        )
        logging.debug(
            f"[Resto] start: θ={theta_trigger:.3e}, μ_R={mu_R:.3e}, ζ={rmodel.zeta:.3e}, ρ={rmodel.rho:.1e}"
        )
        inner = self.solver_factory(
            rmodel, it0.x, cfg_in, checker=checker, initial_iterate=it0, allow_restoration=False
        )
        res = inner.solve()
        self.last_inner = res

        if res.status is not ConvergenceStatus.CONVERGED or "q" not in restored:
            logging.debug(f"[Resto] failed: inner status {res.status.value} after {res.iterations} iterations")
            raise RestorationFailedError(
                f"restoration phase failed ({res.status.value} after {res.iterations} iterations)"
            )

        q_new = restored["q"]
        self.ls.reset_filter()
        self.ls.filter.add(theta_trigger, phi_trigger)
        logging.debug(
            f"[Resto] success after {res.iterations} iterations: θ {theta_trigger:.3e} -> {q_new.theta():.3e}"
        )
        return q_new
