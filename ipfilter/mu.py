"""Barrier parameter updates (monotone Fiacco–McCormick and adaptive LOQO rule)."""

from __future__ import annotations

import logging
from typing import Tuple

import numpy as np

from .blocks.aux import IPConfig, MuStrategy
from .ip_aux import IterateQuantities


class BarrierUpdater:
    """
    Chooses the next μ after every accepted iteration.

    monotone : while E_μ(x) ≤ κ_ε μ, set μ ← max(μ_floor, min(κ_μ μ, μ^θ_μ)).
    adaptive : μ ← σ · avg(complementarity) with the LOQO centrality rule
               σ = factor · min(0.05 (1 - ξ)/ξ, 2)^exponent, ξ = min/avg,
               clipped to [lo·μ_prev, hi·μ_prev] and [μ_floor, μ_max].

    The policy is fixed at construction.
    """

    # bounded inner loop for consecutive monotone decreases
    _MAX_MONOTONE_STEPS = 50

    def __init__(self, cfg: IPConfig):
        self.cfg = cfg
        self.strategy = MuStrategy(cfg.mu_strategy)
        self.n_updates = 0

    @property
    def floor(self) -> float:
        cfg = self.cfg
        # never below min(tol, compl_inf_tol)/(κ_ε + 1)
        return max(cfg.mu_floor, min(cfg.tol, cfg.compl_inf_tol) / (cfg.barrier_tol_factor + 1.0))

    def initial_mu(self) -> float:
        return float(np.clip(self.cfg.mu_init, self.floor, self.cfg.mu_max))

    def update(self, mu: float, q: IterateQuantities) -> Tuple[float, bool]:
        """Returns (new μ, changed)."""
        if self.strategy is MuStrategy.MONOTONE:
            mu_new = self._monotone(mu, q)
        else:
            mu_new = self._adaptive(mu, q)
        changed = mu_new != mu
        if changed:
            self.n_updates += 1
            logging.debug(f"[mu] {mu:.3e} -> {mu_new:.3e} ({self.strategy.value})")
        return mu_new, changed

    def _monotone(self, mu: float, q: IterateQuantities) -> float:
        cfg = self.cfg
        floor = self.floor
        for _ in range(self._MAX_MONOTONE_STEPS):
            if mu <= floor or q.barrier_error(mu) > cfg.barrier_tol_factor * mu:
                break
            mu = max(floor, min(cfg.mu_linear_decrease_factor * mu, mu ** cfg.mu_superlinear_decrease_power))
        return mu

    def _adaptive(self, mu: float, q: IterateQuantities) -> float:
        cfg = self.cfg
        prod = q.complementarity_products()
        if prod.size == 0:
            return self.floor
        avg = float(np.mean(prod))
        if avg <= 0.0:
            return self.floor
        xi = max(float(np.min(prod)) / avg, 1e-16)
        sigma = cfg.adaptive_mu_factor * min(0.05 * (1.0 - xi) / xi, 2.0) ** cfg.adaptive_mu_exponent
        mu_new = sigma * avg
        mu_new = min(max(mu_new, cfg.adaptive_mu_safeguard_lo * mu), cfg.adaptive_mu_safeguard_hi * mu)
        return float(min(max(mu_new, self.floor), cfg.mu_max))
