import numpy as np
import pytest

from ipfilter import IPConfig
from ipfilter.mu import BarrierUpdater


class _Q:
    def __init__(self, error=0.0, products=()):
        self.error = error
        self.products = np.asarray(products, dtype=float)

    def barrier_error(self, mu):
        return self.error

    def complementarity_products(self):
        return self.products


def test_floor_follows_tolerances():
    up = BarrierUpdater(IPConfig())
    assert up.floor == pytest.approx(1e-8 / 11.0)
    assert BarrierUpdater(IPConfig(mu_target=1e-3)).floor == pytest.approx(1e-3)


def test_initial_mu_is_clipped():
    assert BarrierUpdater(IPConfig()).initial_mu() == pytest.approx(0.1)
    up = BarrierUpdater(IPConfig(mu_init=1e-14))
    assert up.initial_mu() == pytest.approx(up.floor)


def test_monotone_keeps_mu_while_subproblem_unsolved():
    up = BarrierUpdater(IPConfig())
    mu, changed = up.update(0.1, _Q(error=10.0))
    assert mu == 0.1 and not changed


def test_monotone_decreases_until_error_exceeds_tolerance():
    up = BarrierUpdater(IPConfig())
    mu, changed = up.update(0.1, _Q(error=1e-3))
    assert changed
    assert mu < 0.1
    assert 1e-3 > 10.0 * mu


def test_monotone_single_step_formula():
    up = BarrierUpdater(IPConfig())
    mu, _ = up.update(0.1, _Q(error=0.5))
    assert mu == pytest.approx(0.02)


def test_monotone_stops_at_floor():
    up = BarrierUpdater(IPConfig())
    mu, changed = up.update(0.1, _Q(error=0.0))
    assert changed
    assert mu == pytest.approx(up.floor)
    mu2, changed2 = up.update(mu, _Q(error=0.0))
    assert mu2 == mu and not changed2


def test_adaptive_uniform_complementarity_hits_lower_safeguard():
    up = BarrierUpdater(IPConfig(mu_strategy="adaptive"))
    mu, changed = up.update(0.1, _Q(products=[0.1, 0.1, 0.1]))
    assert changed
    assert mu == pytest.approx(1e-3)


def test_adaptive_spread_complementarity_hits_upper_safeguard():
    up = BarrierUpdater(IPConfig(mu_strategy="adaptive"))
    mu, _ = up.update(0.1, _Q(products=[1e-6, 10.0]))
    assert mu == pytest.approx(1.0)


def test_adaptive_without_complementarity_goes_to_floor():
    up = BarrierUpdater(IPConfig(mu_strategy="adaptive"))
    mu, _ = up.update(0.1, _Q(products=[]))
    assert mu == pytest.approx(up.floor)
