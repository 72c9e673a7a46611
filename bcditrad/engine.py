"""Fourier-domain loss and derivative engine for traditional phase retrieval."""

import torch
from .exceptions import DimensionMismatch, EngineFailure, InvalidArgument
from .regularizers.base import Regularizer


SUPPORTED_LOSSES = ('L2',)


class TradEngine:
    """
    Evaluates the Fourier magnitude constraint for a real-space field.

    The engine holds the measured intensities, the reciprocal-space mask of
    trusted detector voxels, and three field-shaped tensors:

    - `real_space`: the current iterate. It is shared by reference with the
      owning State, so the engine always sees the field the operators write.
    - `working`: Fourier-domain scratch.
    - `deriv`: the gradient buffer written by `loss` and `modify_deriv`.

    The L2 magnitude loss is

        L = (1/N) * sum_k m_k * (|F(rho)_k| - sqrt(I_k))^2

    and `deriv` holds dL/dRe(rho) + 1j * dL/dIm(rho) = 2 * ifftn(m * (F - sqrt(I) * sgn(F))).
    With this normalisation `rho - deriv / 2` is exactly the Fourier magnitude
    projection: trusted voxels take the measured amplitude, untrusted ones
    keep their current value.
    """
    def __init__(self,
                 loss_type: str,
                 real_space: torch.Tensor,
                 intensities: torch.Tensor,
                 rec_support: torch.Tensor,
                 working: torch.Tensor | None = None,
                 deriv: torch.Tensor | None = None):
        if loss_type not in SUPPORTED_LOSSES:
            raise InvalidArgument(f"Unknown loss_type '{loss_type}'. Supported: {SUPPORTED_LOSSES}.")
        if not real_space.is_complex():
            raise InvalidArgument("real_space must be a complex tensor.")
        shape = tuple(real_space.shape)
        if tuple(intensities.shape) != shape:
            raise DimensionMismatch(f"Intensities shape {tuple(intensities.shape)} does not match field shape {shape}.")
        if tuple(rec_support.shape) != shape:
            raise DimensionMismatch(f"Reciprocal support shape {tuple(rec_support.shape)} does not match field shape {shape}.")

        self.loss_type = loss_type
        self.real_space = real_space
        self.intensities = intensities.to(device=real_space.device, dtype=real_space.real.dtype)
        self.amplitudes = torch.sqrt(self.intensities)
        self.rec_support = rec_support.to(device=real_space.device, dtype=torch.bool)

        if working is None:
            working = torch.zeros_like(real_space)
        if deriv is None:
            deriv = torch.zeros_like(real_space)
        for name, buf in (('working', working), ('deriv', deriv)):
            if tuple(buf.shape) != shape:
                raise DimensionMismatch(f"{name} buffer shape {tuple(buf.shape)} does not match field shape {shape}.")
        self.working = working
        self.deriv = deriv
        self.far_field = None

    @property
    def shape(self) -> tuple[int, ...]:
        return tuple(self.real_space.shape)

    @property
    def device(self) -> torch.device:
        return self.real_space.device

    def _dims(self, x: torch.Tensor) -> tuple[int, ...]:
        return tuple(range(x.ndim))

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        """In-place forward FFT over all axes (unnormalised)."""
        try:
            x.copy_(torch.fft.fftn(x, dim=self._dims(x)))
        except RuntimeError as err:
            raise EngineFailure(f"Forward transform failed: {err}") from err
        return x

    def inverse(self, x: torch.Tensor) -> torch.Tensor:
        """In-place inverse FFT over all axes (1/N normalised)."""
        try:
            x.copy_(torch.fft.ifftn(x, dim=self._dims(x)))
        except RuntimeError as err:
            raise EngineFailure(f"Inverse transform failed: {err}") from err
        return x

    def loss(self, get_deriv: bool, get_loss: bool, get_aux: bool = False) -> torch.Tensor:
        """
        Evaluates the magnitude constraint at the current `real_space`.

        Args:
            get_deriv (bool): Overwrite `deriv` with the loss gradient.
            get_loss (bool): Compute and return the loss value.
            get_aux (bool): Keep a copy of the current far field in `far_field`.

        Returns:
            torch.Tensor: 0-d real tensor with the loss (zero if not requested).
        """
        value = torch.zeros((), dtype=self.intensities.dtype, device=self.device)
        if not (get_deriv or get_loss or get_aux):
            return value

        self.working.copy_(self.real_space)
        self.forward(self.working)

        if get_aux:
            self.far_field = self.working.clone()

        if get_loss:
            residual = (torch.abs(self.working) - self.amplitudes) * self.rec_support
            value = torch.sum(residual ** 2) / self.working.numel()
            if not torch.isfinite(value):
                raise EngineFailure(f"Non-finite loss value {value.item()}.")

        if get_deriv:
            self.deriv.copy_(self.working - self.amplitudes * torch.sgn(self.working))
            self.deriv *= self.rec_support
            self.inverse(self.deriv)
            self.deriv *= 2.0

        return value

    def modify_loss(self, reg: Regularizer) -> torch.Tensor:
        """Returns the regularizer's contribution to the loss at the current field."""
        return reg.value(self.real_space)

    def modify_deriv(self, reg: Regularizer) -> None:
        """Adds the regularizer's gradient to `deriv` in place."""
        self.deriv += reg.gradient(self.real_space)

    def rebind(self, intensities: torch.Tensor, rec_support: torch.Tensor) -> 'TradEngine':
        """
        Creates an engine for new measured data that shares this engine's
        field and scratch buffers. The new data must have the same shape.
        """
        return TradEngine(self.loss_type, self.real_space, intensities, rec_support,
                          working=self.working, deriv=self.deriv)
