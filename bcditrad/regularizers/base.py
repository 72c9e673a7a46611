import abc
import torch

class Regularizer(abc.ABC, torch.nn.Module):
    """
    Abstract base class for regularizers.

    Regularizers add a penalty R(x) to the magnitude-constraint objective.
    They implement the value of the penalty and its gradient so that the
    engine can fold them into its loss and derivative buffers.
    """
    def __init__(self):
        super().__init__() # Call __init__ for torch.nn.Module

    @abc.abstractmethod
    def value(self, x: torch.Tensor) -> torch.Tensor:
        """
        Computes the value of the regularization term R(x).

        Args:
            x (torch.Tensor): The current real-space field.

        Returns:
            torch.Tensor: A real scalar tensor.
        """
        pass

    @abc.abstractmethod
    def gradient(self, x: torch.Tensor) -> torch.Tensor:
        """
        Computes the gradient of R with respect to the real and imaginary
        parts of `x`, packed as a complex tensor: dR/dRe(x) + 1j * dR/dIm(x),
        which equals 2 * dR/d conj(x).

        Args:
            x (torch.Tensor): The current real-space field.

        Returns:
            torch.Tensor: Gradient with the same shape and dtype as `x`.
        """
        pass

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        """Default forward behavior is to evaluate the penalty."""
        return self.value(x)
