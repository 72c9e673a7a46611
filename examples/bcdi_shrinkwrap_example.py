import torch
import numpy as np
import matplotlib.pyplot as plt
import sys
import os

# This allows running the example directly from the 'examples' folder.
# For general use, it's recommended to install bcditrad (e.g., `pip install -e .` from root).
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from bcditrad import State, ER, HIO, Shrink, Center


def create_crystal_phantom(shape=(48, 48, 48), radius=9, device='cpu'):
    """Faceted crystal (intersection of half spaces) with a smooth strain phase."""
    coords = [torch.arange(s, dtype=torch.float64, device=device) - s // 2 for s in shape]
    z, y, x = torch.meshgrid(*coords, indexing='ij')
    inside = (torch.abs(x) + torch.abs(y) <= 1.4 * radius) & (torch.abs(z) <= radius) & (torch.abs(x - y) <= 1.2 * radius)
    phase = 0.6 * torch.sin(np.pi * x / radius) * torch.cos(np.pi * z / (2 * radius))
    return inside * torch.exp(1j * phase)


def simulate_intensities(obj, photons=1e8, seed=0):
    """Noisy diffraction intensities of `obj` with the Bragg peak in the array centre."""
    far = torch.fft.fftshift(torch.fft.fftn(obj))
    intens = torch.abs(far) ** 2
    intens = intens * (photons / torch.sum(intens))
    rng = np.random.default_rng(seed)
    return rng.poisson(intens.cpu().numpy()).astype(np.float64)


def run_bcdi_example():
    device = torch.device('cuda' if torch.cuda.is_available() else 'cpu')
    print(f"Using device: {device}")

    shape = (48, 48, 48)
    obj = create_crystal_phantom(shape, device=device)
    intensities = simulate_intensities(obj)

    # Mask a beamstop-like block and a dead detector column
    rec_support = np.ones(shape, dtype=bool)
    rec_support[23:25, 23:25, :3] = False
    rec_support[:, 10, 30] = False
    print(f"Simulated intensities: {intensities.sum():.3e} photons, {np.sum(~rec_support)} masked voxels")

    generator = torch.Generator(device=device).manual_seed(42)
    state = State(intensities, rec_support, generator=generator, device=device, verbose=True)

    shrink = Shrink(0.1, 1.0, state)
    center = Center(state)
    # Operators on the right run first: HIO/ER cycles with shrink-wrap, then ER polishing
    recipe = ER() ** 50 * (center * shrink * (ER() * HIO(0.9) ** 30)) ** 15

    errors = []
    for cycle in range(4):
        recipe * state
        error = state.engine.loss(False, True).item()
        errors.append(error)
        print(f"Cycle {cycle+1}: loss {error:.4e}, support size {state.support_size}")

    rec = torch.fft.fftshift(state.real_space).cpu().numpy()
    truth = obj.cpu().numpy()
    mid = shape[0] // 2

    fig, axes = plt.subplots(1, 4, figsize=(16, 4))
    axes[0].imshow(np.abs(truth[mid]), cmap='gray')
    axes[0].set_title("Phantom |rho|")
    axes[1].imshow(np.log1p(intensities[mid]), cmap='viridis')
    axes[1].set_title("log(1 + I), central slice")
    axes[2].imshow(np.abs(rec[mid]), cmap='gray')
    axes[2].set_title("Reconstruction |rho|")
    axes[3].semilogy(errors, 'o-')
    axes[3].set_title("Loss per cycle")
    axes[3].set_xlabel("Cycle")
    for ax in axes[:3]:
        ax.axis('off')
    plt.tight_layout()
    plt.show()


if __name__ == '__main__':
    run_bcdi_example()
