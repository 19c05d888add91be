import logging
from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np

from ..ip_aux import Iterate, IterateQuantities
from ..ip_kernels import k_alpha_primal, k_max_step_ftb, k_sigma_box
from .aux import EvaluationError, IPConfig, LineSearchState
from .filter import Filter
from .soc import SOCCorrector


@dataclass
class LineSearchResult:
    state: LineSearchState
    alpha_pr: float = 0.0
    alpha_du: float = 0.0
    trials: int = 0
    quantities: Optional[IterateQuantities] = None
    step_type: str = ""  # "f" | "h" | "tiny", prefixed with "soc-" when corrected
    soc_count: int = 0


class FilterLineSearch:
    """Backtracking filter line search for the barrier subproblem.

    - θ(x, s) = ‖[c(x); d(x) + s]‖₁ and φ(x, s) = f - μ Σ log(slacks).
    - Trials start at the fraction-to-the-boundary step and are cut by
      `alpha_red_factor` until accepted or below α_min.
    - f-type steps (switching condition + Armijo on φ) leave the filter
      unchanged; every other accepted step adds the current (θ, φ).
    """

    def __init__(
        self,
        cfg: IPConfig,
        flt: Optional[Filter] = None,
        soc: Optional[SOCCorrector] = None,
    ):
        self.cfg = cfg
        self.filter = flt if flt is not None else Filter(cfg)
        self.soc = soc if soc is not None else SOCCorrector(cfg)
        self.theta_max = np.inf
        self.theta_min = 0.0
        self.state = LineSearchState.SEARCHING

    # ----------------------------- setup ------------------------------
    def initialize(self, theta0: float) -> None:
        """Fix θ_max/θ_min from the starting infeasibility and reset the filter."""
        scale = max(1.0, float(theta0))
        self.theta_max = self.cfg.theta_max_fact * scale
        self.theta_min = self.cfg.theta_min_fact * scale
        self.filter.reset(self.theta_max)

    def reset_filter(self) -> None:
        self.filter.reset(self.theta_max)

    # ----------------------------- step bounds ------------------------------
    @staticmethod
    def tau(mu: float, tau_min: float) -> float:
        return max(tau_min, 1.0 - mu)

    @staticmethod
    def alpha_primal_max(q: IterateQuantities, dx: np.ndarray, ds: np.ndarray, tau: float) -> float:
        return float(k_alpha_primal(q.sL, q.sU, dx, q.hasL, q.hasU, q.it.s, ds, tau))

    @staticmethod
    def alpha_dual_max(q: IterateQuantities, d, tau: float) -> float:
        it = q.it
        z = np.concatenate([it.y_d, it.z_L[q.hasL], it.z_U[q.hasU]])
        dz = np.concatenate([d.dy_d, d.dz_L[q.hasL], d.dz_U[q.hasU]])
        return float(k_max_step_ftb(z, dz, tau))

    def _alpha_min(self, theta: float, gphi_d: float) -> float:
        cfg = self.cfg
        if gphi_d < 0.0:
            a = min(cfg.gamma_theta, cfg.gamma_phi * theta / (-gphi_d))
            if theta <= self.theta_min:
                a = min(a, cfg.delta * theta ** cfg.s_theta / (-gphi_d) ** cfg.s_phi)
        else:
            a = cfg.gamma_theta
        return cfg.alpha_min_frac * a

    # ----------------------------- acceptance ------------------------------
    def _switching(self, theta: float, gphi_d: float, alpha: float) -> bool:
        cfg = self.cfg
        return gphi_d < 0.0 and alpha * (-gphi_d) ** cfg.s_phi > cfg.delta * theta ** cfg.s_theta

    def _armijo(self, phi: float, phi_t: float, gphi_d: float, alpha: float) -> bool:
        slack = 10.0 * np.finfo(float).eps * max(1.0, abs(phi))
        return phi_t - phi <= self.cfg.eta_phi * alpha * gphi_d + slack

    def check_acceptable(
        self, theta: float, phi: float, gphi_d: float, alpha: float, theta_t: float, phi_t: float
    ) -> Tuple[bool, bool]:
        """Returns (accepted, f_type) for one trial pair."""
        if not (np.isfinite(theta_t) and np.isfinite(phi_t)) or theta_t >= self.theta_max:
            return False, False
        f_type = theta <= self.theta_min and self._switching(theta, gphi_d, alpha)
        if f_type:
            ok = self._armijo(phi, phi_t, gphi_d, alpha)
        else:
            ok = self.filter.acceptable_to_pair(theta_t, phi_t, theta, phi)
        if ok:
            ok = self.filter.is_acceptable(theta_t, phi_t)
        return ok, f_type

    # ----------------------------- trials ------------------------------
    def _trial(self, q: IterateQuantities, dx, ds, alpha: float, mu: float) -> IterateQuantities:
        it = q.it
        q_t = IterateQuantities(q.model, it.with_primal(it.x + alpha * dx, it.s + alpha * ds), self.cfg)
        q_t.theta()
        q_t.barrier_objective(mu)
        return q_t

    def _is_tiny(self, q: IterateQuantities, d) -> bool:
        it = q.it
        rel = np.max(np.abs(d.dx) / (1.0 + np.abs(it.x))) if d.dx.size else 0.0
        if d.ds.size:
            rel = max(rel, float(np.max(np.abs(d.ds) / (1.0 + np.abs(it.s)))))
        return rel < self.cfg.tiny_step_tol

    # ----------------------------- main ------------------------------
    def search(self, q: IterateQuantities, d, mu: float, kkt) -> LineSearchResult:
        """
        Filter line search along direction `d` from the point of `q`.

        ACCEPTED results carry the quantities of the new primal-dual iterate.
        EXHAUSTED means no α ≥ α_min was acceptable and restoration is due.
        """
        cfg = self.cfg
        self.state = LineSearchState.SEARCHING
        tau = self.tau(mu, cfg.tau_min)
        theta = q.theta()
        phi = q.barrier_objective(mu)
        gphi_d = float(q.grad_barrier_x(mu) @ d.dx + q.grad_barrier_s(mu) @ d.ds)

        alpha_max = self.alpha_primal_max(q, d.dx, d.ds, tau)
        alpha_du = self.alpha_dual_max(q, d, tau)

        if self._is_tiny(q, d):
            try:
                q_t = self._trial(q, d.dx, d.ds, alpha_max, mu)
            except EvaluationError:
                q_t = None
            if q_t is not None:
                logging.debug(f"[LS] tiny step accepted, α={alpha_max:.3e}")
                return self._finish(q, d, q_t, alpha_max, alpha_du, 1, "tiny", mu, augment=False)

        alpha_min = self._alpha_min(theta, gphi_d)
        alpha = alpha_max
        trials = 0

        def make_trial(dx, ds, tau_):
            a = self.alpha_primal_max(q, dx, ds, tau_)
            return self._trial(q, dx, ds, a, mu), a

        def accept(a, q_trial):
            return self.check_acceptable(theta, phi, gphi_d, a, q_trial.theta(), q_trial.barrier_objective(mu))

        while trials < cfg.max_ls_trials and alpha >= alpha_min:
            trials += 1
            try:
                q_t = self._trial(q, d.dx, d.ds, alpha, mu)
            except EvaluationError as exc:
                logging.debug(f"[LS] trial {trials}: evaluation failed ({exc}); backtrack")
                alpha *= cfg.alpha_red_factor
                continue

            ok, f_type = accept(alpha, q_t)
            if ok:
                return self._finish(q, d, q_t, alpha, alpha_du, trials, "f" if f_type else "h",
                                    mu, augment=not f_type, phi=phi, theta=theta)

            if trials == 1 and q_t.theta() >= theta:
                res = self.soc.try_correction(kkt, q, q_t, alpha, tau, make_trial, accept)
                if res is not None:
                    q_soc, a_soc, f_type = res
                    return self._finish(q, d, q_soc, a_soc, alpha_du, trials,
                                        "soc-f" if f_type else "soc-h", mu,
                                        augment=not f_type, phi=phi, theta=theta,
                                        soc_count=self.soc.last_count)

            logging.debug(
                f"[LS] trial {trials}: α={alpha:.3e} rejected (θ_t={q_t.theta():.3e}, "
                f"φ_t={q_t.barrier_objective(mu):.6e}; θ={theta:.3e}, φ={phi:.6e})"
            )
            alpha *= cfg.alpha_red_factor

        self.state = LineSearchState.EXHAUSTED
        logging.debug(f"[LS] exhausted after {trials} trials (α={alpha:.3e}, α_min={alpha_min:.3e})")
        return LineSearchResult(self.state, alpha_pr=0.0, alpha_du=0.0, trials=trials)

    # ----------------------------- accept ------------------------------
    def _finish(
        self, q, d, q_t, alpha_pr, alpha_du, trials, step_type, mu, *,
        augment: bool, phi: float = 0.0, theta: float = 0.0, soc_count: int = 0,
    ) -> LineSearchResult:
        if augment:
            self.filter.add(theta, phi)
        it, it_t = q.it, q_t.it
        kappa = self.cfg.kappa_sigma
        y_d = it.y_d + alpha_du * d.dy_d
        z_L = it.z_L + alpha_du * d.dz_L
        z_U = it.z_U + alpha_du * d.dz_U
        new = Iterate(
            x=it_t.x,
            s=it_t.s,
            y_c=it.y_c + alpha_pr * d.dy_c,
            y_d=k_sigma_box(y_d, it_t.s, np.ones(y_d.size, dtype=np.bool_), mu, kappa),
            z_L=np.where(q_t.hasL, k_sigma_box(z_L, q_t.sL, q_t.hasL, mu, kappa), 0.0),
            z_U=np.where(q_t.hasU, k_sigma_box(z_U, q_t.sU, q_t.hasU, mu, kappa), 0.0),
        )
        self.state = LineSearchState.ACCEPTED
        logging.debug(
            f"[LS] accepted {step_type}-step α_pr={alpha_pr:.3e} α_du={alpha_du:.3e} after {trials} trial(s)"
        )
        return LineSearchResult(
            self.state, alpha_pr=alpha_pr, alpha_du=alpha_du, trials=trials,
            quantities=q_t.with_duals(new), step_type=step_type, soc_count=soc_count,
        )
