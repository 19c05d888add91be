# ip.py
# Filter line-search interior-point driver.
from __future__ import annotations

import logging
import math
import sys
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import numpy as np

from .blocks.aux import (
    ConvergenceStatus,
    EvaluationError,
    IPConfig,
    InertiaCorrectionError,
    LineSearchState,
    Model,
    NormType,
    RestorationFailedError,
)
from .blocks.filter import Filter
from .blocks.linesearch import FilterLineSearch
from .blocks.soc import SOCCorrector
from .conv import ConvergenceChecker, IterationStats
from .ip_aux import Iterate, IterateQuantities
from .ip_kkt import LinearSolver, SearchDirectionSolver
from .mu import BarrierUpdater
from .restoration import RestorationPhase

_MESSAGES: Dict[ConvergenceStatus, str] = {
    ConvergenceStatus.CONVERGED: "Optimal solution found.",
    ConvergenceStatus.CONVERGED_TO_ACCEPTABLE_POINT: "Solved to acceptable level.",
    ConvergenceStatus.MAXITER_EXCEEDED: "Maximum number of iterations exceeded.",
    ConvergenceStatus.CPUTIME_EXCEEDED: "Maximum CPU time exceeded.",
    ConvergenceStatus.DIVERGING: "Iterates diverging; problem might be unbounded.",
    ConvergenceStatus.RESTORATION_FAILURE: "Restoration phase failed; problem might be infeasible.",
    ConvergenceStatus.USER_STOP: "Stopping optimization at user request.",
}


@dataclass
class SolveResult:
    status: ConvergenceStatus
    iterate: Iterate
    best_iterate: Iterate
    objective: float
    mu: float
    iterations: int
    history: List[Dict] = field(default_factory=list)
    message: str = ""

    @property
    def x(self) -> np.ndarray:
        return self.iterate.x

    @property
    def success(self) -> bool:
        return self.status.is_success


class InteriorPointSolver:
    """
    Primal-dual interior-point method with a filter line search.

    Per iteration: search direction (inertia-corrected KKT solve) → filter
    line search, or feasibility restoration when the KKT system cannot be
    regularized or no step is acceptable → accept → barrier update →
    convergence check. The convergence check runs exactly once per
    iteration, plus once at the starting point.

    Parameters
    ----------
    model : Model
        Problem callbacks (or a RestorationModel for inner solves).
    x0 : array_like
        Starting point; pushed strictly inside the bounds.
    cfg : IPConfig, optional
    linear_solver : LinearSolver, optional
        Overrides `cfg.linear_solver`.
    checker : optional
        Object with `reset()` and `check_convergence(iter, quantities, stats)`;
        defaults to a `ConvergenceChecker` built from `cfg`. Reset at the start
        of every `solve()`.
    initial_iterate : Iterate, optional
        Complete primal-dual starting point, used as is.
    allow_restoration : bool
        When False, a failed line search ends the solve with RESTORATION_FAILURE.
    """

    def __init__(
        self,
        model: Model,
        x0,
        cfg: Optional[IPConfig] = None,
        *,
        linear_solver: Optional[LinearSolver] = None,
        checker=None,
        initial_iterate: Optional[Iterate] = None,
        allow_restoration: bool = True,
        clock=None,
    ):
        self.cfg = cfg if cfg is not None else IPConfig()
        self.model = model
        self.x0 = np.asarray(x0, dtype=float).ravel()
        if self.x0.size != model.n:
            raise ValueError(f"x0 has size {self.x0.size}, expected n={model.n}")
        model.infer_sizes(self.x0)

        self.kkt = SearchDirectionSolver(self.cfg, linear_solver=linear_solver)
        self.filter = Filter(self.cfg)
        self.ls = FilterLineSearch(self.cfg, self.filter, SOCCorrector(self.cfg))
        self.mu_updater = BarrierUpdater(self.cfg)
        self.checker = checker if checker is not None else ConvergenceChecker(
            self.cfg, model.n, model.m_eq, clock=clock
        )
        self.allow_restoration = allow_restoration
        self.resto = RestorationPhase(self.cfg, model, self.ls, type(self)) if allow_restoration else None
        self.initial_iterate = initial_iterate

        self.iter = 0
        self.mu = self.mu_updater.initial_mu()
        self._printer: Optional[Dict] = None

    # ---------- one step ----------
    def _restore(self, q: IterateQuantities) -> Optional[IterateQuantities]:
        if self.resto is None:
            return None
        try:
            return self.resto.restore(q, self.mu)
        except RestorationFailedError as exc:
            logging.info(f"[IP] {exc}")
            return None

    def _iteration(self, q: IterateQuantities, stats: IterationStats, info: Dict):
        """Advance one iteration; returns the new quantities or None on restoration failure."""
        direction = None
        try:
            direction = self.kkt.compute(q, self.mu)
        except InertiaCorrectionError as exc:
            logging.debug(f"[IP] iter {self.iter}: {exc}; entering restoration")

        if direction is not None:
            stats.d_norm = q.step_norm(direction)
            stats.regularization_size = direction.delta_w
            res = self.ls.search(q, direction, self.mu, self.kkt)
            stats.ls_trials = res.trials
            if res.state is LineSearchState.ACCEPTED:
                stats.alpha_pr, stats.alpha_du = res.alpha_pr, res.alpha_du
                info["step"] = res.step_type
                return res.quantities

        info["step"] = "r"
        q_new = self._restore(q)
        if q_new is not None:
            stats.alpha_pr = stats.alpha_du = 1.0
            stats.d_norm = float(np.max(np.abs(q_new.x - q.x))) if q.x.size else 0.0
        return q_new

    # ---------- main loop ----------
    def solve(self) -> SolveResult:
        cfg = self.cfg
        it = self.initial_iterate or Iterate.initial(self.model, self.x0, cfg)
        q = IterateQuantities(self.model, it, cfg)
        # per-solve state; a solver instance may be solved more than once
        self.iter = 0
        self.mu = self.mu_updater.initial_mu()
        self.mu_updater.n_updates = 0
        self.checker.reset()
        self.kkt.reg.reset()
        if self.resto is not None:
            self.resto.calls = 0
        self._printer = None
        try:
            q.objective()
            self.ls.initialize(q.theta())
        except EvaluationError as exc:
            raise ValueError(f"Problem functions cannot be evaluated at the starting point: {exc}") from exc

        hist: List[Dict] = []
        stats = IterationStats(mu=self.mu)
        best_q, best_err = q, q.overall_error()

        status = self.checker.check_convergence(self.iter, q, stats)
        hist.append(self._record(q, stats, {"step": ""}, status))

        while status is ConvergenceStatus.CONTINUE:
            stats = IterationStats(mu=self.mu)
            info: Dict = {}
            q_new = self._iteration(q, stats, info)
            if q_new is None:
                status = ConvergenceStatus.RESTORATION_FAILURE
                hist.append(self._record(q, stats, info, status))
                break
            q = q_new
            self.iter += 1

            mu_new, changed = self.mu_updater.update(self.mu, q)
            if changed:
                self.mu = mu_new
                self.ls.reset_filter()
            stats.mu = self.mu

            err = q.overall_error()
            if err < best_err:
                best_q, best_err = q, err

            status = self.checker.check_convergence(self.iter, q, stats)
            hist.append(self._record(q, stats, info, status))

        message = _MESSAGES.get(status, status.value)
        if cfg.verbose:
            print(f"{'✓' if status.is_success else '✗'} {message} ({self.iter} iterations)")
        logging.info(f"[IP] {status.value} after {self.iter} iterations")
        return SolveResult(
            status=status,
            iterate=q.it,
            best_iterate=best_q.it,
            objective=q.objective(),
            mu=self.mu,
            iterations=self.iter,
            history=hist,
            message=message,
        )

    # ---------- reporting ----------
    def _record(self, q: IterateQuantities, stats: IterationStats, info: Dict, status) -> Dict:
        row = {
            "iter": self.iter,
            "f": q.objective(),
            "theta": q.theta(),
            "inf_pr": q.infeasibility(NormType.MAX),
            "inf_du": q.dual_infeasibility(NormType.MAX),
            "error": q.overall_error(),
            "mu": self.mu,
            "d_norm": stats.d_norm,
            "delta_w": stats.regularization_size,
            "alpha_pr": stats.alpha_pr,
            "alpha_du": stats.alpha_du,
            "ls_trials": stats.ls_trials,
            "step": info.get("step", ""),
            "filter_size": len(self.filter),
            "status": status.value,
        }
        if self.cfg.verbose:
            self._print_iteration(row)
        return row

    def _print_iteration(self, row: Dict):
        if self._printer is None:
            self._printer = {"t0": time.perf_counter(), "lines": 0, "use_color": sys.stdout.isatty()}
        S = self._printer
        if S["use_color"]:
            C = dict(bold="\033[1m", dim="\033[2m", red="\033[31m", reset="\033[0m")
        else:
            C = {k: "" for k in ["bold", "dim", "red", "reset"]}

        if S["lines"] % 20 == 0:
            print(
                f"{C['bold']}{'iter':>5} {'objective':>14} {'inf_pr':>9} {'inf_du':>9} "
                f"{'lg(mu)':>6} {'||d||':>9} {'lg(rg)':>6} {'alpha_du':>9} {'alpha_pr':>9} {'ls':>3} {'time':>7}{C['reset']}"
            )
        S["lines"] += 1

        lg_mu = f"{math.log10(row['mu']):6.1f}" if row["mu"] > 0 else f"{'-':>6}"
        lg_rg = f"{math.log10(row['delta_w']):6.1f}" if row["delta_w"] > 0 else f"{'-':>6}"
        step = row["step"][:1] if row["step"] else " "
        t = time.perf_counter() - S["t0"]
        line = (
            f"{row['iter']:>5d} {row['f']:>14.7e} {row['inf_pr']:>9.2e} {row['inf_du']:>9.2e} "
            f"{lg_mu} {row['d_norm']:>9.2e} {lg_rg} {row['alpha_du']:>9.2e} "
            f"{row['alpha_pr']:>8.2e}{step} {row['ls_trials']:>3d} {t:>6.2f}s"
        )
        if row["step"] == "r":
            line = f"{C['red']}{line}{C['reset']}"
        print(line)


def solve(model: Model, x0, cfg: Optional[IPConfig] = None, **kw) -> SolveResult:
    """Convenience wrapper: `InteriorPointSolver(model, x0, cfg, **kw).solve()`."""
    return InteriorPointSolver(model, x0, cfg, **kw).solve()
