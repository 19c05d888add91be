"""
Two-dimensional filter for the interior-point line search.

The filter stores pairs (θ, φ): θ is the 1-norm of the primal residual and φ
the barrier objective of the current barrier subproblem. A trial pair is
acceptable when no stored pair dominates it, i.e. there is no entry with

    θ_trial >= θ_j   and   φ_trial >= φ_j.

Entries are stored with margins already applied,

    ((1 - γ_θ) θ,  φ - γ_φ θ),

so the acceptance test itself is a plain dominance check.

Required IPConfig fields:
    gamma_theta : float   # θ-margin factor in (0, 1)
    gamma_phi   : float   # φ-margin factor in (0, 1)

Notes
-----
- The filter starts from the single pair (θ_max, -∞), which rejects every
  trial with θ >= θ_max regardless of φ.
- An inserted pair removes stored pairs whose forbidden region it covers, so
  the stored set stays Pareto-undominated and a region that was forbidden
  never becomes acceptable again until `reset`.
- φ depends on μ, so the owner resets the filter whenever μ changes.
"""

from __future__ import annotations

import logging
from typing import List, Tuple

import numpy as np


class Filter:
    """
    Fletcher–Leyffer filter on (θ, φ) pairs with sloped margins.

    Parameters
    ----------
    cfg : IPConfig
        Provides `gamma_theta` and `gamma_phi`.

    Attributes
    ----------
    entries : List[Tuple[float, float]]
        Stored (θ_j, φ_j) pairs with margins applied.
    theta_max : float
        Infeasibility ceiling installed by the last `reset`.
    """

    def __init__(self, cfg: "IPConfig"):
        self.cfg = cfg
        for attr in ("gamma_theta", "gamma_phi"):
            if not hasattr(cfg, attr):
                raise ValueError(f"Missing required config attribute: {attr}")
        if not 0.0 < cfg.gamma_theta < 1.0:
            raise ValueError(f"gamma_theta must lie in (0, 1), got {cfg.gamma_theta}")
        if not 0.0 < cfg.gamma_phi < 1.0:
            raise ValueError(f"gamma_phi must lie in (0, 1), got {cfg.gamma_phi}")
        self.theta_max = np.inf
        self.entries: List[Tuple[float, float]] = []
        self.reset(np.inf)

    def __len__(self) -> int:
        return len(self.entries)

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #

    def reset(self, theta_max: float) -> None:
        """Clear all entries and install the (θ_max, -∞) ceiling."""
        if not theta_max > 0:
            raise ValueError(f"theta_max must be positive, got {theta_max}")
        self.theta_max = float(theta_max)
        self.entries = [(self.theta_max, -np.inf)]
        logging.debug(f"[Filter] reset (θ_max={self.theta_max:.3e})")

    def is_acceptable(self, theta: float, phi: float) -> bool:
        """True iff no stored pair dominates (θ, φ)."""
        if not (np.isfinite(theta) and np.isfinite(phi)):
            return False
        for t_j, p_j in self.entries:
            if theta >= t_j and phi >= p_j:
                logging.debug(
                    f"[Filter] reject (θ={theta:.3e}, φ={phi:.3e}) dominated by ({t_j:.3e}, {p_j:.3e})"
                )
                return False
        return True

    def add(self, theta: float, phi: float) -> None:
        """Insert the margin-adjusted pair of an accepted iterate."""
        t_new = (1.0 - self.cfg.gamma_theta) * float(theta)
        p_new = float(phi) - self.cfg.gamma_phi * float(theta)
        before = len(self.entries)
        # drop pairs whose forbidden region the new pair covers
        self.entries = [(t, p) for (t, p) in self.entries if not (t >= t_new and p >= p_new)]
        self.entries.append((t_new, p_new))
        logging.debug(
            f"[Filter] add ({t_new:.3e}, {p_new:.3e}); removed {before + 1 - len(self.entries)} dominated"
        )

    def acceptable_to_pair(self, theta: float, phi: float, theta_ref: float, phi_ref: float) -> bool:
        """Sufficient decrease of either measure relative to a reference point."""
        return (
            theta <= (1.0 - self.cfg.gamma_theta) * theta_ref
            or phi <= phi_ref - self.cfg.gamma_phi * theta_ref
        )
