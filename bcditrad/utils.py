"""Module for utility functions."""

import numpy as np
import torch
from .exceptions import InvalidArgument


CENTER_MODES = ('corner', 'center')


def as_tensor(data: np.ndarray | torch.Tensor,
              dtype: torch.dtype,
              device: str | torch.device = 'cpu') -> torch.Tensor:
    """
    Converts numpy arrays (or tensors) to a tensor of the requested dtype on
    `device`. Tensors that already match are returned as-is.
    """
    if isinstance(data, np.ndarray):
        data = torch.from_numpy(np.ascontiguousarray(data))
    return torch.as_tensor(data).to(device=device, dtype=dtype)


def center_of_mass(weights: torch.Tensor) -> list[float]:
    """
    Center of mass of a non-negative weight array, one coordinate per axis,
    in 0-based voxel units.

    Args:
        weights (torch.Tensor): Real weights.

    Returns:
        list[float]: Center of mass along each axis.

    Raises:
        InvalidArgument: If the weights sum to zero.
    """
    total = torch.sum(weights)
    if total.item() == 0:
        raise InvalidArgument("Cannot compute the center of mass of an all-zero array.")
    com = []
    for axis, size in enumerate(weights.shape):
        sum_axes = tuple(a for a in range(weights.ndim) if a != axis)
        profile = torch.sum(weights, dim=sum_axes) if sum_axes else weights
        coords = torch.arange(size, device=weights.device, dtype=profile.dtype)
        com.append((torch.sum(coords * profile) / total).item())
    return com


def center_peak(intensities: torch.Tensor,
                rec_support: torch.Tensor,
                mode: str = 'corner') -> tuple[torch.Tensor, torch.Tensor, tuple[int, ...]]:
    """
    Circularly shifts a diffraction pattern and its mask so that the peak's
    center of mass (weighted by sqrt(intensities)) sits at a canonical spot.

    Args:
        intensities (torch.Tensor): Measured intensities, non-negative.
        rec_support (torch.Tensor): Mask of trusted detector voxels.
        mode (str): 'corner' moves the peak to index 0 on every axis (the FFT
            zero frequency); 'center' moves it to index size // 2.

    Returns:
        tuple: (shifted intensities, shifted mask, shift applied per axis).
    """
    if mode not in CENTER_MODES:
        raise InvalidArgument(f"Unknown centering mode '{mode}'. Supported: {CENTER_MODES}.")

    com = center_of_mass(torch.sqrt(intensities))
    shift = []
    for size, c in zip(intensities.shape, com):
        target = 0 if mode == 'corner' else size // 2
        # round half to even, as torch.round does
        shift.append(target - int(round(c)))
    shift = tuple(shift)

    dims = tuple(range(intensities.ndim))
    return torch.roll(intensities, shifts=shift, dims=dims), torch.roll(rec_support, shifts=shift, dims=dims), shift
