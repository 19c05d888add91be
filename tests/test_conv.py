import pytest

from ipfilter import ConvergenceChecker, ConvergenceStatus, IPConfig, IterationStats
from ipfilter.conv import RestorationConvergenceChecker


def _checker(n=4, m_eq=1, clock=None, **cfg):
    return ConvergenceChecker(IPConfig(**cfg), n=n, m_eq=m_eq, clock=clock)


def test_all_primary_tolerances_met_converges(fake_q):
    chk = _checker()
    q = fake_q(overall=1e-9, dual=1e-9, constr=1e-9, compl=1e-9)
    assert chk.check_convergence(5, q) is ConvergenceStatus.CONVERGED


def test_far_from_solution_continues(fake_q):
    chk = _checker()
    q = fake_q(overall=1e-5, dual=1e-5, constr=1e-5, compl=1e-5)
    assert chk.check_convergence(1, q) is ConvergenceStatus.CONTINUE
    assert chk.acceptable_counter == 0


def test_acceptable_point_after_consecutive_passes(fake_q):
    chk = _checker()
    q = fake_q(overall=1e-7, dual=1e-7, constr=1e-7, compl=1e-7)
    # the first acceptable test compares against an unset objective and fails
    assert chk.check_convergence(1, q) is ConvergenceStatus.CONTINUE
    assert chk.acceptable_counter == 0
    for k in range(2, 16):
        assert chk.check_convergence(k, q) is ConvergenceStatus.CONTINUE
        assert chk.acceptable_counter == k - 1
    assert chk.check_convergence(16, q) is ConvergenceStatus.CONVERGED_TO_ACCEPTABLE_POINT


def test_failed_acceptable_test_resets_counter(fake_q):
    chk = _checker()
    good = fake_q(overall=1e-7, dual=1e-7, constr=1e-7, compl=1e-7)
    bad = fake_q(overall=1e-5, dual=1e-7, constr=1e-7, compl=1e-7)
    it = 0
    for _ in range(9):
        it += 1
        assert chk.check_convergence(it, good) is ConvergenceStatus.CONTINUE
    it += 1
    assert chk.check_convergence(it, bad) is ConvergenceStatus.CONTINUE
    assert chk.acceptable_counter == 0
    for k in range(14):
        it += 1
        assert chk.check_convergence(it, good) is ConvergenceStatus.CONTINUE
        assert chk.acceptable_counter == k + 1
    it += 1
    assert chk.check_convergence(it, good) is ConvergenceStatus.CONVERGED_TO_ACCEPTABLE_POINT


def test_acceptable_heuristic_disabled_with_zero_iters(fake_q):
    chk = _checker(acceptable_iter=0)
    q = fake_q(overall=1e-7, dual=1e-7, constr=1e-7, compl=1e-7)
    for k in range(1, 40):
        assert chk.check_convergence(k, q) is ConvergenceStatus.CONTINUE
    assert chk.acceptable_counter == 0


def test_objective_change_breaks_acceptable_streak(fake_q):
    chk = _checker(acceptable_obj_change_tol=1e-3, acceptable_iter=3)
    q1 = fake_q(overall=1e-7, dual=1e-7, constr=1e-7, compl=1e-7, obj=1.0)
    q2 = fake_q(overall=1e-7, dual=1e-7, constr=1e-7, compl=1e-7, obj=2.0)
    assert chk.check_convergence(1, q1) is ConvergenceStatus.CONTINUE
    assert chk.acceptable_counter == 0
    assert chk.check_convergence(2, q1) is ConvergenceStatus.CONTINUE
    assert chk.acceptable_counter == 1
    assert chk.check_convergence(3, q2) is ConvergenceStatus.CONTINUE
    assert chk.acceptable_counter == 0


def test_last_objective_only_moves_with_iteration_index(fake_q):
    chk = _checker()
    q = fake_q(overall=1e-7, dual=1e-7, constr=1e-7, compl=1e-7, obj=3.0)
    chk.current_is_acceptable(1, q)
    chk.current_is_acceptable(1, fake_q(obj=7.0))
    assert chk.curr_obj == 3.0
    assert chk.last_obj == -1e50
    chk.current_is_acceptable(2, fake_q(obj=7.0))
    assert (chk.last_obj, chk.curr_obj) == (3.0, 7.0)


def test_diverging_iterates(fake_q):
    chk = _checker()
    q = fake_q(overall=1e-5, dual=1e-5, constr=1e-5, compl=1e-5, max_x=2e20)
    assert chk.check_convergence(3, q) is ConvergenceStatus.DIVERGING


def test_iteration_limit(fake_q):
    chk = _checker()
    q = fake_q(overall=1e-5, dual=1e-5, constr=1e-5, compl=1e-5)
    assert chk.check_convergence(3000, q) is ConvergenceStatus.MAXITER_EXCEEDED
    assert chk.check_convergence(2999, q) is ConvergenceStatus.CONTINUE


def test_convergence_has_priority_over_iteration_limit(fake_q):
    chk = _checker(max_iter=10)
    q = fake_q(overall=1e-9, dual=1e-9, constr=1e-9, compl=1e-9)
    assert chk.check_convergence(10, q) is ConvergenceStatus.CONVERGED


def test_cpu_time_limit_with_injected_clock(fake_q):
    ticks = iter([0.0, 5.0, 20.0])
    chk = _checker(clock=lambda: next(ticks), max_cpu_time=10.0)
    q = fake_q(overall=1e-5, dual=1e-5, constr=1e-5, compl=1e-5)
    assert chk.check_convergence(1, q) is ConvergenceStatus.CONTINUE
    assert chk.check_convergence(2, q) is ConvergenceStatus.CPUTIME_EXCEEDED


def test_default_cpu_budget_is_never_checked(fake_q):
    chk = _checker(clock=lambda: 1e12)
    q = fake_q(overall=1e-5, dual=1e-5, constr=1e-5, compl=1e-5)
    assert chk.check_convergence(1, q) is ConvergenceStatus.CONTINUE


@pytest.mark.parametrize("n, m_eq, expected", [
    (2, 2, ConvergenceStatus.CONVERGED),
    (3, 2, ConvergenceStatus.CONTINUE),
])
def test_square_problem_ignores_dual_and_complementarity(fake_q, n, m_eq, expected):
    chk = _checker(n=n, m_eq=m_eq, acceptable_iter=0)
    q = fake_q(overall=1e-9, dual=1e5, constr=1e-9, compl=1e5)
    assert chk.check_convergence(1, q) is expected


def test_square_problem_relaxes_acceptable_test(fake_q):
    chk = _checker(n=2, m_eq=2, acceptable_iter=2)
    q = fake_q(overall=1e-7, dual=1e20, constr=1e-7, compl=1e20)
    assert chk.check_convergence(1, q) is ConvergenceStatus.CONTINUE
    assert chk.check_convergence(2, q) is ConvergenceStatus.CONTINUE
    assert chk.check_convergence(3, q) is ConvergenceStatus.CONVERGED_TO_ACCEPTABLE_POINT


def test_user_callback_stop_comes_first(fake_q):
    seen = []

    def cb(*args):
        seen.append(args)
        return False

    chk = _checker(intermediate_callback=cb)
    q = fake_q(overall=1e-9, dual=1e-9, constr=1e-9, compl=1e-9, obj=4.0, primal=2e-9)
    stats = IterationStats(mu=0.1, d_norm=2.0, regularization_size=1e-4,
                           alpha_du=0.5, alpha_pr=0.25, ls_trials=3)
    assert chk.check_convergence(7, q, stats) is ConvergenceStatus.USER_STOP
    assert seen == [(7, 4.0, 2e-9, 1e-9, 0.1, 2.0, 1e-4, 0.5, 0.25, 3)]
    assert chk.last_obj_iter is None


def test_user_callback_returning_none_continues(fake_q):
    chk = _checker(intermediate_callback=lambda *a: None)
    q = fake_q(overall=1e-5, dual=1e-5, constr=1e-5, compl=1e-5)
    assert chk.check_convergence(1, q) is ConvergenceStatus.CONTINUE


def test_restoration_checker_reports_success_and_failure(fake_q):
    base = _checker()
    flags = {"ok": False}
    chk = RestorationConvergenceChecker(base, restored=lambda q: flags["ok"])
    far = fake_q(overall=1e-5, dual=1e-5, constr=1e-5, compl=1e-5)
    done = fake_q(overall=1e-9, dual=1e-9, constr=1e-9, compl=1e-9)

    assert chk.check_convergence(1, far) is ConvergenceStatus.CONTINUE
    assert chk.check_convergence(2, done) is ConvergenceStatus.RESTORATION_FAILURE
    flags["ok"] = True
    assert chk.check_convergence(0, far) is ConvergenceStatus.CONTINUE
    assert chk.check_convergence(3, far) is ConvergenceStatus.CONVERGED


def test_single_acceptable_iteration_needs_a_previous_objective(fake_q):
    chk = _checker(acceptable_iter=1)
    q = fake_q(overall=1e-7, dual=1e-7, constr=1e-7, compl=1e-7, obj=0.5)
    assert chk.check_convergence(0, q) is ConvergenceStatus.CONTINUE
    assert chk.acceptable_counter == 0
    assert chk.check_convergence(1, q) is ConvergenceStatus.CONVERGED_TO_ACCEPTABLE_POINT


def test_reset_forgets_previous_objective(fake_q):
    chk = _checker(acceptable_iter=1)
    q = fake_q(overall=1e-7, dual=1e-7, constr=1e-7, compl=1e-7, obj=0.5)
    chk.check_convergence(0, q)
    chk.reset()
    assert (chk.last_obj, chk.curr_obj, chk.last_obj_iter) == (-1e50, -1e50, None)
    assert chk.check_convergence(0, q) is ConvergenceStatus.CONTINUE
