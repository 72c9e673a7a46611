"""
bcditrad: traditional phase retrieval for Bragg Coherent Diffraction Imaging.

A reconstruction is driven by composing operators and applying them to a
State, e.g.

    state = State(intensities, rec_support)
    recipe = (ER() * HIO(0.9) ** 20) ** 10
    recipe * state
"""

__version__ = "0.1.0"

from .exceptions import BcdiError, DimensionMismatch, InvalidArgument, EngineFailure
from .engine import TradEngine
from .state import State
from .operators import (Operator, OperatorList, ER, EROpt, HIO, HIOOpt, Shrink, Center,
                        sequence, repeat, enforce_support)
from .regularizers.base import Regularizer
from .regularizers.common import L2Regularizer, TVRegularizer
from .optimizers import Optimizer, LBFGS, BacktrackingLineSearch, OptimizeResult
from .utils import center_peak, center_of_mass


__all__ = [
    '__version__',
    'BcdiError', 'DimensionMismatch', 'InvalidArgument', 'EngineFailure',
    'TradEngine',
    'State',
    'Operator', 'OperatorList', 'ER', 'EROpt', 'HIO', 'HIOOpt', 'Shrink', 'Center',
    'sequence', 'repeat', 'enforce_support',
    'Regularizer', 'L2Regularizer', 'TVRegularizer',
    'Optimizer', 'LBFGS', 'BacktrackingLineSearch', 'OptimizeResult',
    'center_peak', 'center_of_mass',
]
