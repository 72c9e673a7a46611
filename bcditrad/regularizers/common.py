import torch
from .base import Regularizer
from .functional import default_neighbors, l2_norm_squared, total_variation, total_variation_gradient
from ..exceptions import InvalidArgument


class L2Regularizer(Regularizer):
    """Squared L2 Norm Regularizer: R(x) = +/- lambda_reg * sum_{mask} |x|^2.

    With `neg=True` the penalty is negated, which rewards energy in the masked
    region instead of penalizing it. HIO uses this on the complement of the
    support: the negated term turns the plain exterior update
    `rho + beta * deriv / 2` into Fienup's `rho - beta * ER(rho)`.

    The mask is held by reference, so the owner may rewrite it in place
    between calls (HIO refreshes it from the current support).
    """
    def __init__(self, lambda_reg: float, mask: torch.Tensor | None = None, neg: bool = False):
        """Initializes the L2 Regularizer.

        Args:
            lambda_reg (float): The regularization strength parameter.
                Must be non-negative.
            mask (torch.Tensor, optional): Boolean mask restricting the penalty.
                Defaults to None (whole field).
            neg (bool, optional): Negate the penalty. Defaults to False.
        """
        super().__init__()
        if lambda_reg < 0:
            raise InvalidArgument("lambda_reg must be non-negative.")
        self.lambda_reg = lambda_reg
        self.mask = mask
        self.sign = -1.0 if neg else 1.0

    def value(self, x: torch.Tensor) -> torch.Tensor:
        return self.sign * self.lambda_reg * l2_norm_squared(x, self.mask)

    def gradient(self, x: torch.Tensor) -> torch.Tensor:
        grad = (2.0 * self.sign * self.lambda_reg) * x
        if self.mask is not None:
            grad = grad * self.mask
        return grad


class TVRegularizer(Regularizer):
    """Total Variation (TV) Regularizer: R(x) = lambda_reg * TV(x).

    Promotes piece-wise constant objects by penalizing differences between
    each voxel and its neighbours. The absolute value is smoothed with
    `epsilon` so the penalty is differentiable everywhere, which the
    line-search based operators require. Differences are taken with periodic
    boundaries.
    """
    def __init__(self,
                 lambda_reg: float,
                 neighbors: list[tuple[int, ...]] | None = None,
                 epsilon: float = 1e-8):
        """Initializes the Total Variation (TV) Regularizer.

        Args:
            lambda_reg (float): The regularization strength parameter.
                Must be non-negative.
            neighbors (list of tuples, optional): Integer offsets of the
                neighbours compared to each voxel. Defaults to the unit
                offsets along every axis of the field.
            epsilon (float, optional): Smoothing of the absolute value.
                Defaults to 1e-8.
        """
        super().__init__()
        if lambda_reg < 0:
            raise InvalidArgument("lambda_reg must be non-negative.")
        if epsilon <= 0:
            raise InvalidArgument("epsilon must be positive.")
        self.lambda_reg = lambda_reg
        self.neighbors = [tuple(int(o) for o in n) for n in neighbors] if neighbors is not None else None
        self.epsilon = epsilon

    def _neighbors_for(self, x: torch.Tensor) -> list[tuple[int, ...]]:
        if self.neighbors is None:
            return default_neighbors(x.ndim)
        for offset in self.neighbors:
            if len(offset) != x.ndim:
                raise InvalidArgument(f"Neighbor offset {offset} does not match field dimensionality {x.ndim}.")
        return self.neighbors

    def value(self, x: torch.Tensor) -> torch.Tensor:
        return self.lambda_reg * total_variation(x, self._neighbors_for(x), self.epsilon)

    def gradient(self, x: torch.Tensor) -> torch.Tensor:
        return self.lambda_reg * total_variation_gradient(x, self._neighbors_for(x), self.epsilon)
