"""
Termination tests for the interior-point driver.

`ConvergenceChecker.check_convergence` is called exactly once per outer
iteration (and once for the starting point) and returns a single
`ConvergenceStatus`, testing in this order:

    1. user callback asked to stop              → USER_STOP
    2. primary tolerances met                   → CONVERGED
    3. acceptable tolerances met N times in row → CONVERGED_TO_ACCEPTABLE_POINT
    4. max |x_i| above diverging_iterates_tol   → DIVERGING
    5. iteration budget used up                 → MAXITER_EXCEEDED
    6. CPU time budget used up                  → CPUTIME_EXCEEDED
    7. otherwise                                → CONTINUE

For square problems (n == m_eq) the dual infeasibility and complementarity
tolerances are replaced by 1e300 in both the primary and acceptable tests.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional, Tuple

from .blocks.aux import ConvergenceStatus, IPConfig, NormType

_UNLIMITED = 1e300
_CPU_TIME_UNLIMITED = 999999.0
# objective before any acceptable test; the first test always sees a large change
_OBJ_UNSET = -1e50


@dataclass
class IterationStats:
    """Per-iteration scalars handed to the user callback."""

    mu: float = 0.0
    d_norm: float = 0.0
    regularization_size: float = 0.0
    alpha_du: float = 0.0
    alpha_pr: float = 0.0
    ls_trials: int = 0


class ConvergenceChecker:
    """
    Parameters
    ----------
    cfg : IPConfig
        Tolerances, budgets and the optional `intermediate_callback`.
    n, m_eq : int
        Problem dimensions (used to detect square systems).
    clock : callable, optional
        CPU-time source, `time.process_time` by default.

    `quantities` passed to `check_convergence` must provide `objective()`,
    `overall_error()`, `dual_infeasibility(norm)`,
    `infeasibility(norm)`, `nlp_constraint_violation(norm)`,
    `complementarity(mu_target, norm)` and `max_abs_x()`. The callback receives
    `infeasibility`, the primal residual of the slack reformulation.
    """

    def __init__(self, cfg: IPConfig, n: int, m_eq: int, clock: Optional[Callable[[], float]] = None):
        self.cfg = cfg
        self.n = int(n)
        self.m_eq = int(m_eq)
        self.clock = clock or time.process_time
        self.acceptable_counter = 0
        self.last_obj = _OBJ_UNSET
        self.curr_obj = _OBJ_UNSET
        self.last_obj_iter: Optional[int] = None
        self.start_time = 0.0
        self.reset()

    def reset(self) -> None:
        self.acceptable_counter = 0
        self.last_obj = _OBJ_UNSET
        self.curr_obj = _OBJ_UNSET
        self.last_obj_iter = None
        self.start_time = self.clock()

    @property
    def is_square(self) -> bool:
        return self.n == self.m_eq

    def _dual_compl_tols(self, acceptable: bool) -> Tuple[float, float]:
        if self.is_square:
            return _UNLIMITED, _UNLIMITED
        if acceptable:
            return self.cfg.acceptable_dual_inf_tol, self.cfg.acceptable_compl_inf_tol
        return self.cfg.dual_inf_tol, self.cfg.compl_inf_tol

    # ---------- user callback ----------
    def _user_continues(self, iter_count: int, q, stats: IterationStats) -> bool:
        ret = self.cfg.intermediate_callback(
            iter_count,
            q.objective(),
            q.infeasibility(NormType.MAX),
            q.dual_infeasibility(NormType.MAX),
            stats.mu,
            stats.d_norm,
            stats.regularization_size,
            stats.alpha_du,
            stats.alpha_pr,
            stats.ls_trials,
        )
        return ret is None or bool(ret)

    # ---------- main test ----------
    def check_convergence(self, iter_count: int, q, stats: Optional[IterationStats] = None) -> ConvergenceStatus:
        cfg = self.cfg
        stats = stats or IterationStats()

        if cfg.intermediate_callback is not None and not self._user_continues(iter_count, q, stats):
            logging.debug(f"[Conv] iter {iter_count}: user callback requested stop")
            return ConvergenceStatus.USER_STOP

        overall = q.overall_error()
        dual_inf = q.dual_infeasibility(NormType.MAX)
        constr_viol = q.nlp_constraint_violation(NormType.MAX)
        compl_inf = q.complementarity(cfg.mu_target, NormType.MAX)
        dual_tol, compl_tol = self._dual_compl_tols(acceptable=False)

        if (
            overall <= cfg.tol
            and dual_inf <= dual_tol
            and constr_viol <= cfg.constr_viol_tol
            and compl_inf <= compl_tol
        ):
            return ConvergenceStatus.CONVERGED

        if cfg.acceptable_iter > 0 and self.current_is_acceptable(iter_count, q):
            self.acceptable_counter += 1
            if self.acceptable_counter >= cfg.acceptable_iter:
                return ConvergenceStatus.CONVERGED_TO_ACCEPTABLE_POINT
        else:
            self.acceptable_counter = 0

        if q.max_abs_x() > cfg.diverging_iterates_tol:
            return ConvergenceStatus.DIVERGING

        if iter_count >= cfg.max_iter:
            return ConvergenceStatus.MAXITER_EXCEEDED

        if cfg.max_cpu_time < _CPU_TIME_UNLIMITED and self.clock() - self.start_time > cfg.max_cpu_time:
            return ConvergenceStatus.CPUTIME_EXCEEDED

        return ConvergenceStatus.CONTINUE

    def current_is_acceptable(self, iter_count: int, q) -> bool:
        """Looser tolerances plus a relative objective-change test."""
        cfg = self.cfg
        if iter_count != self.last_obj_iter:
            self.last_obj = self.curr_obj
            self.curr_obj = q.objective()
            self.last_obj_iter = iter_count

        dual_tol, compl_tol = self._dual_compl_tols(acceptable=True)
        ok = (
            q.overall_error() <= cfg.acceptable_tol
            and q.dual_infeasibility(NormType.MAX) <= dual_tol
            and q.nlp_constraint_violation(NormType.MAX) <= cfg.acceptable_constr_viol_tol
            and q.complementarity(cfg.mu_target, NormType.MAX) <= compl_tol
        )
        if ok:
            change = abs(self.curr_obj - self.last_obj) / max(1.0, abs(self.curr_obj))
            ok = change <= cfg.acceptable_obj_change_tol
        logging.debug(f"[Conv] iter {iter_count}: acceptable={ok} (counter={self.acceptable_counter})")
        return ok


class RestorationConvergenceChecker:
    """
    Convergence test of the inner restoration solve.

    Wraps an ordinary `ConvergenceChecker` for the restoration problem and
    reports CONVERGED as soon as `restored(q)` says the point is good enough
    for the outer problem (never at the starting point). Converging on the
    restoration problem without meeting that test means a locally infeasible
    point and is reported as RESTORATION_FAILURE.
    """

    def __init__(self, base: ConvergenceChecker, restored: Callable[..., bool]):
        self.base = base
        self.restored = restored

    def reset(self) -> None:
        self.base.reset()

    def check_convergence(self, iter_count: int, q, stats: Optional[IterationStats] = None) -> ConvergenceStatus:
        if iter_count > 0 and self.restored(q):
            return ConvergenceStatus.CONVERGED
        status = self.base.check_convergence(iter_count, q, stats)
        if status.is_success:
            logging.debug("[Resto] restoration problem converged without restoring feasibility")
            return ConvergenceStatus.RESTORATION_FAILURE
        return status
