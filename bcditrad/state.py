"""Reconstruction state threaded through every phase retrieval operator."""

import math

import numpy as np
import torch
from .engine import TradEngine
from .exceptions import DimensionMismatch, InvalidArgument
from .utils import as_tensor, center_peak


_REAL_DTYPES = {torch.complex64: torch.float32, torch.complex128: torch.float64}


class State:
    """
    Reconstruction state: the current real-space estimate, the support and
    the Fourier/loss engine bound to the measured data.

    Construction centers the diffraction peak (recording the circular shift in
    `shift`), derives a default support from the autocorrelation when none is
    given, and starts from the measured amplitudes with uniformly random
    phases, transformed back to real space. Untrusted detector voxels
    contribute zero amplitude to the starting guess. When an existing engine
    is passed, its current field is kept instead.

    The engine shares `real_space` by reference, so operators only need to
    write `state.real_space` / `state.support` in place.
    """
    def __init__(self,
                 intensities: np.ndarray | torch.Tensor,
                 rec_support: np.ndarray | torch.Tensor,
                 support: np.ndarray | torch.Tensor | None = None,
                 *,
                 engine: TradEngine | None = None,
                 generator: torch.Generator | None = None,
                 loss_type: str = 'L2',
                 center_mode: str = 'corner',
                 device: str | torch.device = 'cpu',
                 dtype: torch.dtype = torch.complex128,
                 verbose: bool = False):
        """
        Args:
            intensities: Measured diffraction intensities (non-negative), 2D or 3D.
            rec_support: Boolean mask of trusted reciprocal-space voxels.
            support: Optional boolean real-space support. Defaults to the
                autocorrelation magnitude thresholded at 10% of its maximum.
            engine: Optional existing engine whose buffers are reused. Its
                current field is kept as the starting point, so a
                reconstruction continues against the new data.
            generator: torch.Generator for the random starting phases
                (unused when `engine` is given).
            loss_type: Loss of the engine. Only 'L2' is supported.
            center_mode: 'corner' or 'center', see `center_peak`.
            device: Computational device ('cpu' or 'cuda').
            dtype: Complex dtype of the field (complex64 or complex128).
            verbose: Print a summary after construction.
        """
        if dtype not in _REAL_DTYPES:
            raise InvalidArgument(f"dtype must be complex64 or complex128, got {dtype}.")
        if engine is not None:
            device = engine.device
            dtype = engine.real_space.dtype
            loss_type = engine.loss_type
        self.device = torch.device(device)
        real_dtype = _REAL_DTYPES[dtype]

        intens = as_tensor(intensities, real_dtype, self.device)
        rec = as_tensor(rec_support, torch.bool, self.device)
        if intens.ndim not in (2, 3):
            raise DimensionMismatch(f"Intensities must be 2D or 3D, got {intens.ndim}D.")
        if rec.shape != intens.shape:
            raise DimensionMismatch(f"Reciprocal support shape {tuple(rec.shape)} does not match intensities {tuple(intens.shape)}.")
        if support is not None:
            support = as_tensor(support, torch.bool, self.device)
            if support.shape != intens.shape:
                raise DimensionMismatch(f"Support shape {tuple(support.shape)} does not match intensities {tuple(intens.shape)}.")
        if torch.any(intens < 0):
            raise InvalidArgument("Intensities must be non-negative.")
        if not torch.all(torch.isfinite(intens)):
            raise InvalidArgument("Intensities must be finite.")

        intens, rec, self.shift = center_peak(intens, rec, center_mode)
        dims = tuple(range(intens.ndim))

        if support is None:
            autocorr = torch.abs(torch.fft.ifftn(intens.to(dtype), dim=dims))
            support = autocorr > 0.1 * torch.max(autocorr)
        self.support = support.clone()

        if engine is None:
            phases = torch.rand(intens.shape, generator=generator, dtype=real_dtype, device=self.device) * (2 * math.pi)
            initial = torch.fft.ifftn(torch.sqrt(intens) * torch.exp(1j * phases) * rec, dim=dims)
            self.engine = TradEngine(loss_type, initial, intens, rec)
        else:
            if engine.shape != tuple(intens.shape):
                raise DimensionMismatch(f"Engine shape {engine.shape} does not match intensities {tuple(intens.shape)}.")
            # continue from the engine's current iterate
            self.engine = engine.rebind(intens, rec)
        self.real_space = self.engine.real_space

        if verbose:
            print(f"State initialized on device {self.device}")
            print(f"  Shape: {self.shape}, Peak shift: {self.shift}, Support size: {self.support_size}")

    @classmethod
    def create(cls, intensities, rec_support, support=None, **kwargs) -> 'State':
        """Alternate constructor mirroring State(...)."""
        return cls(intensities, rec_support, support, **kwargs)

    @property
    def field(self) -> torch.Tensor:
        return self.real_space

    @property
    def shape(self) -> tuple[int, ...]:
        return tuple(self.real_space.shape)

    @property
    def support_size(self) -> int:
        return int(torch.sum(self.support).item())

    @property
    def intensities(self) -> torch.Tensor:
        """Peak-centered measured intensities held by the engine (read-only by convention)."""
        return self.engine.intensities

    @property
    def rec_support(self) -> torch.Tensor:
        return self.engine.rec_support

    def __repr__(self):
        return f"State(shape={self.shape}, shift={self.shift}, support_size={self.support_size}, device={self.device})"
