import torch


def default_neighbors(ndim: int) -> list[tuple[int, ...]]:
    """Unit offsets along each axis, e.g. [(1,0,0), (0,1,0), (0,0,1)] for 3D."""
    neighbors = []
    for axis in range(ndim):
        offset = [0] * ndim
        offset[axis] = 1
        neighbors.append(tuple(offset))
    return neighbors


def _neighbor_difference(image: torch.Tensor, offset: tuple[int, ...]) -> torch.Tensor:
    # image[r + offset] - image[r], periodic boundaries
    dims = tuple(range(image.ndim))
    shifted = torch.roll(image, shifts=tuple(-o for o in offset), dims=dims)
    return shifted - image


def l2_norm_squared(image: torch.Tensor, mask: torch.Tensor | None = None) -> torch.Tensor:
    """Computes the squared L2 norm of an image, optionally restricted to a mask."""
    if mask is not None:
        image = image * mask
    return torch.sum(image * torch.conj(image)).real # Ensure real output for complex case


def total_variation(image: torch.Tensor,
                    neighbors: list[tuple[int, ...]],
                    epsilon: float = 1e-8) -> torch.Tensor:
    """
    Smoothed total variation over a set of neighbour offsets:
        sum_n sum_r sqrt(|image(r + n) - image(r)|^2 + epsilon^2)

    Boundaries are periodic, matching the FFT convention used by the engine.
    """
    tv = torch.zeros((), dtype=image.real.dtype, device=image.device)
    for offset in neighbors:
        diff = _neighbor_difference(image, offset)
        tv = tv + torch.sum(torch.sqrt(torch.abs(diff) ** 2 + epsilon ** 2))
    return tv


def total_variation_gradient(image: torch.Tensor,
                             neighbors: list[tuple[int, ...]],
                             epsilon: float = 1e-8) -> torch.Tensor:
    """
    Gradient of `total_variation` with respect to the real and imaginary parts
    of `image`, packed as a complex tensor (2 * dTV/d conj(image)).
    """
    dims = tuple(range(image.ndim))
    grad = torch.zeros_like(image)
    for offset in neighbors:
        diff = _neighbor_difference(image, offset)
        weight = diff / torch.sqrt(torch.abs(diff) ** 2 + epsilon ** 2)
        grad += torch.roll(weight, shifts=tuple(offset), dims=dims) - weight
    return grad
