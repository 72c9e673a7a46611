"""Module for the line-search optimizers used by the regularized operators."""

import math
from abc import ABC, abstractmethod
from collections import deque
from typing import Callable, NamedTuple, Optional, Tuple

import torch
from .exceptions import EngineFailure

# fg(x, need_grad) -> (objective value, gradient or None)
ObjectiveFn = Callable[[torch.Tensor, bool], Tuple[torch.Tensor, Optional[torch.Tensor]]]


def real_dot(a: torch.Tensor, b: torch.Tensor) -> float:
    """Real inner product Re(sum(conj(a) * b)), treating complex tensors as pairs of reals."""
    if a.is_complex():
        return torch.real(torch.vdot(a.flatten(), b.flatten())).item()
    return torch.dot(a.flatten(), b.flatten()).item()


class OptimizeResult(NamedTuple):
    x: torch.Tensor
    value: float
    step_sizes: list


class BacktrackingLineSearch:
    """
    Armijo backtracking line search.

    Starts from a static initial step and, while the sufficient decrease
    condition phi(a) <= phi(0) + c1 * a * phi'(0) fails, shrinks the step
    using a quadratic (first backtrack) or cubic interpolation, safeguarded
    to [rho_lo * a, rho_hi * a].
    """
    def __init__(self, initial_step=2.0, c1=1e-4, rho_hi=0.5, rho_lo=0.1, max_iter=1000):
        if initial_step <= 0:
            raise ValueError("initial_step must be positive.")
        if not 0 < rho_lo < rho_hi < 1:
            raise ValueError("Require 0 < rho_lo < rho_hi < 1.")
        self.initial_step = initial_step
        self.c1 = c1
        self.rho_hi = rho_hi
        self.rho_lo = rho_lo
        self.max_iter = max_iter

    def _interpolate(self, phi0, dphi0, alpha, phi_a, alpha_prev, phi_prev):
        if alpha_prev is None:
            denom = 2.0 * (phi_a - phi0 - dphi0 * alpha)
            return -dphi0 * alpha ** 2 / denom if denom != 0 else math.nan
        div = 1.0 / (alpha_prev ** 2 * alpha ** 2 * (alpha - alpha_prev))
        r1 = phi_a - phi0 - dphi0 * alpha
        r2 = phi_prev - phi0 - dphi0 * alpha_prev
        a = (alpha_prev ** 2 * r1 - alpha ** 2 * r2) * div
        b = (-alpha_prev ** 3 * r1 + alpha ** 3 * r2) * div
        if abs(a) < 1e-300:
            return -dphi0 / (2.0 * b) if b != 0 else math.nan
        disc = max(b ** 2 - 3.0 * a * dphi0, 0.0)
        return (-b + math.sqrt(disc)) / (3.0 * a)

    def search(self, phi: Callable[[float], float], phi0: float, dphi0: float) -> Tuple[float, float]:
        """
        Finds a step along a descent direction.

        Args:
            phi: Objective restricted to the search line, phi(alpha).
            phi0: phi(0).
            dphi0: Directional derivative at 0. Must not be positive.

        Returns:
            tuple: (accepted step, objective at the accepted step).
        """
        if not math.isfinite(phi0):
            raise EngineFailure(f"Line search started from a non-finite objective ({phi0}).")
        if dphi0 > 0:
            raise EngineFailure(f"Search direction is not a descent direction (slope {dphi0:.3e}).")

        alpha = self.initial_step
        phi_a = phi(alpha)
        alpha_prev, phi_prev = None, None
        iteration = 0
        while not math.isfinite(phi_a) or phi_a > phi0 + self.c1 * alpha * dphi0:
            iteration += 1
            if iteration > self.max_iter:
                raise EngineFailure(f"Line search did not satisfy the Armijo condition in {self.max_iter} iterations.")
            if not math.isfinite(phi_a):
                alpha_new = self.rho_hi * alpha
            else:
                alpha_new = self._interpolate(phi0, dphi0, alpha, phi_a, alpha_prev, phi_prev)
                if not math.isfinite(alpha_new):
                    alpha_new = self.rho_hi * alpha
                alpha_new = min(max(alpha_new, self.rho_lo * alpha), self.rho_hi * alpha)
                alpha_prev, phi_prev = alpha, phi_a
            alpha = alpha_new
            phi_a = phi(alpha)
        return alpha, phi_a


class Optimizer(ABC):
    """
    Abstract base class for optimizers.

    Defines the interface for the minimize method.
    """
    @abstractmethod
    def minimize(self, fg: ObjectiveFn, x0: torch.Tensor) -> OptimizeResult:
        """
        Minimizes an objective starting from x0.

        Args:
            fg: Callable `fg(x, need_grad) -> (value, grad | None)`.
            x0: Initial point (PyTorch tensor). Not modified.

        Returns:
            OptimizeResult with the final point, objective value and the
            step size taken on each iteration.
        """
        pass


class LBFGS(Optimizer):
    """
    Limited-memory BFGS with a backtracking line search.

    The first iteration has no curvature history and is a steepest-descent
    step; later iterations use the two-loop recursion with the usual
    s'y / y'y scaling of the initial inverse Hessian. Operators run a single
    iteration per call, which bounds the work done per application.

    Not torch.optim.LBFGS: that has no Armijo backtracking from a static step
    and does not report the accepted step size, which HIOOpt applies directly.
    """
    def __init__(self, history_size=10, iterations=1, line_search=None, verbose=False):
        if iterations < 1:
            raise ValueError("iterations must be at least 1.")
        self.history_size = history_size
        self.iterations = iterations
        self.line_search = line_search if line_search is not None else BacktrackingLineSearch()
        self.verbose = verbose

    def _direction(self, grad, s_hist, y_hist, rho_hist):
        q = grad.clone()
        alphas = []
        for s, y, rho in reversed(list(zip(s_hist, y_hist, rho_hist))):
            a = rho * real_dot(s, q)
            q -= a * y
            alphas.append(a)
        if s_hist:
            gamma = real_dot(s_hist[-1], y_hist[-1]) / real_dot(y_hist[-1], y_hist[-1])
            q *= gamma
        for (s, y, rho), a in zip(zip(s_hist, y_hist, rho_hist), reversed(alphas)):
            b = rho * real_dot(y, q)
            q += (a - b) * s
        return -q

    def minimize(self, fg: ObjectiveFn, x0: torch.Tensor) -> OptimizeResult:
        x = x0.clone()
        value, grad = fg(x, True)
        value = float(value)
        if not math.isfinite(value):
            raise EngineFailure(f"Objective is not finite at the initial point ({value}).")

        s_hist = deque(maxlen=self.history_size)
        y_hist = deque(maxlen=self.history_size)
        rho_hist = deque(maxlen=self.history_size)
        step_sizes = []

        for iter_num in range(self.iterations):
            direction = self._direction(grad, s_hist, y_hist, rho_hist)
            slope = real_dot(grad, direction)

            def phi(alpha):
                trial_value, _ = fg(x + alpha * direction, False)
                return float(trial_value)

            step, value = self.line_search.search(phi, value, slope)
            x_new = x + step * direction
            step_sizes.append(step)

            if self.verbose:
                print(f"LBFGS Iter {iter_num+1}/{self.iterations}, Objective: {value:.4e}, Step: {step:.3e}")

            if iter_num < self.iterations - 1:
                value, grad_new = fg(x_new, True)
                value = float(value)
                s = x_new - x
                y = grad_new - grad
                sy = real_dot(s, y)
                if sy > 0:
                    s_hist.append(s)
                    y_hist.append(y)
                    rho_hist.append(1.0 / sy)
                grad = grad_new
            x = x_new

        return OptimizeResult(x, value, step_sizes)
