"""
Inertia-correcting regularization for the interior-point KKT system.

Perturbs the augmented matrix as

    [ W + Σ + δ_w I     Jᵀ   ]
    [ J              -δ_c I  ]

until the factorization reports the inertia (n + m_ineq, m_eq + m_ineq, 0).

Rules:
- first try δ_w = δ_c = 0;
- zero eigenvalues switch on δ_c = δ̄_c μ^κ_c (once per factorization);
- the first δ_w trial is δ_w⁰ when no perturbation was needed before,
  otherwise max(δ_w^min, κ_w⁻ δ_w^last), so δ_w shrinks over successful iterations;
- further failures grow δ_w by κ̄_w⁺ (no history) or κ_w⁺;
- δ_w > δ_w^max raises InertiaCorrectionError.

The state lives in `InertiaRegularizer`; the factorization loop itself is
owned by the search-direction solver and is bounded by `max_refactorizations`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Tuple

import numpy as np

from .aux import InertiaCorrectionError


# ---------- telemetry ----------
@dataclass
class RegInfo:
    delta_w: float
    delta_c: float
    attempts: int
    inertia: Tuple[int, int, int]


class InertiaRegularizer:
    def __init__(self, cfg: "IPConfig"):
        self.cfg = cfg
        self.delta_w_last = 0.0
        self._reset_counters()

    # ---------- proposals ----------
    def delta_c(self, mu: float) -> float:
        return self.cfg.jacobian_regularization_value * mu ** self.cfg.jacobian_regularization_exponent

    def next_delta_w(self, delta_w: float) -> float:
        """Next Hessian perturbation after a factorization with wrong inertia."""
        cfg = self.cfg
        if delta_w == 0.0:
            if self.delta_w_last == 0.0:
                new = cfg.first_hessian_perturbation
            else:
                new = max(cfg.min_hessian_perturbation, cfg.perturb_dec_fact * self.delta_w_last)
        elif self.delta_w_last == 0.0:
            new = cfg.perturb_inc_fact_first * delta_w
        else:
            new = cfg.perturb_inc_fact * delta_w
        if new > cfg.max_hessian_perturbation:
            logging.debug(f"[Reg] δ_w={new:.3e} exceeds ceiling {cfg.max_hessian_perturbation:.1e}")
            raise InertiaCorrectionError(
                f"Inertia correction failed: δ_w would exceed {cfg.max_hessian_perturbation:.1e}"
            )
        return new

    # ---------- bookkeeping ----------
    def record_success(self, delta_w: float, delta_c: float, attempts: int, inertia: Tuple[int, int, int]) -> RegInfo:
        if delta_w > 0.0:
            self.delta_w_last = delta_w
        self.n_factorizations += attempts
        if delta_w > 0.0:
            self.n_perturbed += 1
            self.delta_w_min = min(self.delta_w_min, delta_w)
            self.delta_w_max = max(self.delta_w_max, delta_w)
        return RegInfo(delta_w=delta_w, delta_c=delta_c, attempts=attempts, inertia=inertia)

    def get_statistics(self) -> Dict:
        return {
            "delta_w_last": self.delta_w_last,
            "factorizations": self.n_factorizations,
            "perturbed_solves": self.n_perturbed,
            "delta_w_range": (self.delta_w_min, self.delta_w_max) if self.n_perturbed else (np.nan, np.nan),
        }

    def reset(self) -> None:
        self.delta_w_last = 0.0
        self._reset_counters()

    def _reset_counters(self) -> None:
        # running totals only; nothing per factorization is kept
        self.n_factorizations = 0
        self.n_perturbed = 0
        self.delta_w_min = np.inf
        self.delta_w_max = 0.0
