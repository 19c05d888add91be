"""Primal-dual interior-point NLP solver with a filter line search."""

from .blocks.aux import (
    ConvergenceStatus,
    EvaluationError,
    IPConfig,
    IPFilterError,
    InertiaCorrectionError,
    LineSearchState,
    Model,
    MuStrategy,
    NormType,
    RestorationFailedError,
)
from .conv import ConvergenceChecker, IterationStats, RestorationConvergenceChecker
from .ip import InteriorPointSolver, SolveResult, solve
from .ip_aux import Iterate, IterateQuantities
from .ip_kkt import DEFAULT_KKT_REGISTRY, EighSolver, LDLSolver, SearchDirection, SearchDirectionSolver

__all__ = [
    "ConvergenceChecker",
    "ConvergenceStatus",
    "DEFAULT_KKT_REGISTRY",
    "EighSolver",
    "EvaluationError",
    "IPConfig",
    "IPFilterError",
    "InertiaCorrectionError",
    "InteriorPointSolver",
    "Iterate",
    "IterateQuantities",
    "IterationStats",
    "LDLSolver",
    "LineSearchState",
    "Model",
    "MuStrategy",
    "NormType",
    "RestorationConvergenceChecker",
    "RestorationFailedError",
    "SearchDirection",
    "SearchDirectionSolver",
    "SolveResult",
    "solve",
]
