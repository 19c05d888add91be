import logging
from typing import Callable, Optional, Tuple

import numpy as np

from .aux import EvaluationError


class SOCCorrector:
    """
    Second-order correction for a rejected first trial step.

    Accumulates the constraint residual  c_soc ← α_soc c_soc + c(x_trial)
    and re-solves the KKT system with the previous factorization, replacing
    only the constraint right-hand side. Repeats at most `max_soc` times and
    gives up as soon as the infeasibility does not shrink by `kappa_soc`.
    """

    def __init__(self, cfg: "IPConfig"):
        self.cfg = cfg
        self.last_count = 0

    def reset(self) -> None:
        self.last_count = 0

    def try_correction(
        self,
        kkt: "SearchDirectionSolver",
        q: "IterateQuantities",
        q_trial: "IterateQuantities",
        alpha: float,
        tau: float,
        make_trial: Callable,
        accept: Callable,
    ) -> Optional[Tuple["IterateQuantities", float, bool]]:
        """
        Returns (accepted trial quantities, primal step, f-type flag) or None.

        make_trial(dx, ds, tau) → (quantities, step) for the corrected step taken
        with its own fraction-to-the-boundary length;
        accept(alpha, q_trial) → (accepted, f_type).
        """
        self.last_count = 0
        if self.cfg.max_soc <= 0 or q.primal_residual().size == 0:
            return None

        it = q.it
        mE = it.y_c.size
        theta_old = q_trial.theta()
        r = q_trial.primal_residual()
        c_soc = alpha * np.concatenate([q.c(), q.d() + it.s]) + r
        alpha_soc = alpha

        for k in range(self.cfg.max_soc):
            self.last_count = k + 1
            d_soc = kkt.resolve_constraints(c_soc[:mE], c_soc[mE:])
            try:
                q_soc, alpha_soc = make_trial(d_soc.dx, d_soc.ds, tau)
            except EvaluationError as exc:
                logging.debug(f"[SOC] trial evaluation failed: {exc}")
                return None
            ok, f_type = accept(alpha, q_soc)
            if ok:
                logging.debug(f"[SOC] accepted after {k + 1} correction(s), α_soc={alpha_soc:.3e}")
                return q_soc, alpha_soc, f_type
            theta_soc = q_soc.theta()
            if theta_soc > self.cfg.kappa_soc * theta_old:
                logging.debug(f"[SOC] θ_soc={theta_soc:.3e} not below κ_soc·θ_old; stop")
                return None
            theta_old = theta_soc
            c_soc = alpha_soc * c_soc + q_soc.primal_residual()
        return None
