# bcditrad.regularizers module

from .base import Regularizer

from .common import (
    L2Regularizer,
    TVRegularizer
)

from .functional import (
    default_neighbors,
    l2_norm_squared,
    total_variation,
    total_variation_gradient
)

__all__ = [
    'Regularizer',
    'L2Regularizer',
    'TVRegularizer',
    'default_neighbors',
    'l2_norm_squared',
    'total_variation',
    'total_variation_gradient'
]
