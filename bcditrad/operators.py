"""Module for defining the phase retrieval Operator classes and their algebra."""

import operator

import torch
from abc import ABC, abstractmethod
from .exceptions import BcdiError, DimensionMismatch, EngineFailure, InvalidArgument
from .optimizers import BacktrackingLineSearch, LBFGS
from .regularizers.common import L2Regularizer, TVRegularizer
from .state import State


def enforce_support(state: State) -> None:
    state.real_space *= state.support


def _check_shape(op_name: str, expected: tuple[int, ...], state: State) -> None:
    if state.shape != expected:
        raise DimensionMismatch(f"{op_name} was built for shape {expected} but the state has shape {state.shape}.")


# Operator Base Class
class Operator(ABC):
    """
    An in-place transformation of a reconstruction State.

    Operators compose: `a * b` applies `b` then `a`, `a ** n` applies `a`
    n times, and `op * state` applies the operator and returns the state.
    """
    @abstractmethod
    def operate(self, state: State) -> None: pass

    def apply(self, state: State) -> State:
        try:
            self.operate(state)
        except BcdiError as err:
            if err.operator is None:
                err.operator = repr(self)
            raise
        except RuntimeError as err:
            # torch failures (device or dtype mismatches) outside the engine wrappers
            raise EngineFailure(f"{type(err).__name__}: {err}", operator=repr(self)) from err
        return state

    def __call__(self, state: State) -> State:
        return self.apply(state)

    def __mul__(self, other):
        if isinstance(other, Operator):
            return sequence(self, other)
        if isinstance(other, State):
            return self.apply(other)
        return NotImplemented

    def __pow__(self, n):
        return repeat(self, n)

    __xor__ = __pow__

    def __repr__(self):
        return f"{type(self).__name__}()"


class OperatorList(Operator):
    """An ordered sequence of operators, applied first to last."""
    def __init__(self, ops=()):
        ops = list(ops)
        for op in ops:
            if not isinstance(op, Operator):
                raise TypeError(f"OperatorList entries must be Operators, got {type(op).__name__}.")
        self.ops = ops

    def operate(self, state: State) -> None:
        for op in self.ops:
            op.apply(state)

    def __len__(self):
        return len(self.ops)

    def __iter__(self):
        return iter(self.ops)

    def __getitem__(self, index):
        return self.ops[index]

    def __repr__(self):
        return f"OperatorList({self.ops!r})"


def _flatten(op: Operator) -> list:
    if isinstance(op, OperatorList):
        return list(op.ops)
    return [op]


def sequence(op1: Operator, op2: Operator) -> OperatorList:
    """Composite that applies `op2` first, then `op1` (same as op1 * op2)."""
    if not isinstance(op1, Operator) or not isinstance(op2, Operator):
        raise TypeError("sequence expects two Operators.")
    return OperatorList(_flatten(op2) + _flatten(op1))


def repeat(op: Operator, n: int) -> OperatorList:
    """Composite that applies `op` exactly `n` times (same as op ** n)."""
    if not isinstance(op, Operator):
        raise TypeError("repeat expects an Operator.")
    if isinstance(n, bool):
        raise InvalidArgument(f"Repetition count must be an integer, got {n!r}.")
    try:
        n = operator.index(n)
    except TypeError as err:
        raise InvalidArgument(f"Repetition count must be an integer, got {n!r}.") from err
    if n < 0:
        raise InvalidArgument(f"Repetition count must be non-negative, got {n}.")
    return OperatorList(_flatten(op) * n)


class ER(Operator):
    """
    One iteration of Error Reduction (ER).

    ER alternately enforces the modulus constraint (the transform of the
    object must match the measured amplitudes) and the support constraint
    (the object must lie within the support). The modulus projection is a
    gradient-descent step of size 0.5 on the L2 magnitude loss.

    References: Fienup, Appl. Opt. 21 (1982); Marchesini, Rev. Sci. Instrum. 78 (2007).
    """
    def operate(self, state: State) -> None:
        state.engine.loss(True, False, False)
        state.real_space -= state.engine.deriv / 2.0
        enforce_support(state)


class EROpt(Operator):
    """
    Error Reduction driven by an optimizer.

    Takes a single L-BFGS iteration (static initial step of 2, backtracking)
    on the magnitude loss plus a total-variation penalty, with the gradient
    restricted to the support, then applies the support constraint.
    """
    def __init__(self, neighbors=None, lambda_tv: float = 1.0, line_search: BacktrackingLineSearch | None = None):
        self.reg = TVRegularizer(lambda_tv, neighbors)
        self.optimizer = LBFGS(iterations=1, line_search=line_search or BacktrackingLineSearch(initial_step=2.0))
        self.last_step_size = None

    def operate(self, state: State) -> None:
        engine = state.engine

        def fg(x, need_grad):
            state.real_space.copy_(x)
            value = engine.loss(need_grad, True, False) + engine.modify_loss(self.reg)
            grad = None
            if need_grad:
                engine.modify_deriv(self.reg)
                grad = engine.deriv * state.support
            return value, grad

        result = self.optimizer.minimize(fg, state.real_space)
        state.real_space.copy_(result.x)
        enforce_support(state)
        self.last_step_size = result.step_sizes[-1]

    def __repr__(self):
        return f"EROpt(lambda_tv={self.reg.lambda_reg})"


class HIO(Operator):
    """
    One iteration of Hybrid Input-Output (HIO).

    Inside the support the update is the ER modulus projection. Outside the
    support the previous value is kept and moved by a fraction `beta` of the
    gradient instead of being zeroed:

        rho_next = ER(rho)                         inside the support
        rho_next = rho - beta * (ER(rho) - rho)    outside the support

    When built with a state, HIO also owns a negated L2 regularizer of
    weight `alpha` on the complement of the support. Its gradient folds into
    the exterior update, which for alpha = 1 becomes Fienup's
    rho - beta * ER(rho).

    Marchesini has shown that HIO is equivalent to a mini-max problem.
    """
    def __init__(self, beta: float, state: State | None = None, alpha: float = 1.0):
        self.beta = float(beta)
        self.reg = None
        self.shape = None
        if state is not None:
            self.shape = state.shape
            self.outside = torch.zeros_like(state.support)
            self.reg = L2Regularizer(alpha, self.outside, neg=True)

    def operate(self, state: State) -> None:
        engine = state.engine
        engine.loss(True, False, False)
        if self.reg is not None:
            _check_shape(repr(self), self.shape, state)
            torch.logical_not(state.support, out=self.outside)
            engine.modify_deriv(self.reg)
        rho = state.real_space
        deriv = engine.deriv
        rho.copy_(torch.where(state.support, rho - deriv / 2.0, rho + self.beta * deriv / 2.0))

    def __repr__(self):
        if self.reg is None:
            return f"HIO(beta={self.beta})"
        return f"HIO(beta={self.beta}, alpha={self.reg.lambda_reg})"


class HIOOpt(Operator):
    """
    Hybrid Input-Output with step sizes chosen by line search.

    The gradient of the magnitude loss plus a negated L2 penalty (weight
    `alpha`) on the complement of the support is computed once. Two
    independent single-iteration line searches then pick a step size for
    each voxel partition: one descends the magnitude loss along the
    gradient inside the support, the other ascends the loss plus penalty
    along the gradient outside it. The field is restored after each search
    and finally updated as

        rho - step_in * deriv     inside the support
        rho + step_out * deriv    outside the support
    """
    def __init__(self, alpha: float, state: State, line_search: BacktrackingLineSearch | None = None):
        self.shape = state.shape
        self.outside = torch.zeros_like(state.support)
        self.reg = L2Regularizer(alpha, self.outside, neg=True)
        self.temp_space = torch.zeros_like(state.real_space)
        self.optimizer = LBFGS(iterations=1, line_search=line_search or BacktrackingLineSearch(initial_step=2.0))
        self.last_step_sizes = None

    def operate(self, state: State) -> None:
        _check_shape(repr(self), self.shape, state)
        engine = state.engine
        self.temp_space.copy_(state.real_space)
        torch.logical_not(state.support, out=self.outside)
        engine.loss(True, False, False)
        engine.modify_deriv(self.reg)
        # the line searches only request loss values, so engine.deriv stays fixed
        deriv = engine.deriv

        def fg_inside(x, need_grad):
            state.real_space.copy_(x)
            value = engine.loss(False, True, False)
            return value, (deriv * state.support if need_grad else None)

        def fg_outside(x, need_grad):
            state.real_space.copy_(x)
            value = engine.loss(False, True, False) + engine.modify_loss(self.reg)
            return -value, (-deriv * self.outside if need_grad else None)

        step_in = self.optimizer.minimize(fg_inside, self.temp_space).step_sizes[0]
        state.real_space.copy_(self.temp_space)
        step_out = self.optimizer.minimize(fg_outside, self.temp_space).step_sizes[0]
        state.real_space.copy_(self.temp_space)

        rho = state.real_space
        rho.copy_(torch.where(state.support, rho - step_in * deriv, rho + step_out * deriv))
        self.last_step_sizes = (step_in, step_out)

    def __repr__(self):
        return f"HIOOpt(alpha={self.reg.lambda_reg})"


class Shrink(Operator):
    """
    One iteration of the shrinkwrap support update.

    The magnitude of the current object is blurred with a Gaussian of width
    `sigma` (periodic, applied in Fourier space), and the support becomes
    every voxel above `threshold` times the maximum of the blurred magnitude.

    Reference: Marchesini et al., Phys. Rev. B 68, 140101 (2003).
    """
    def __init__(self, threshold: float, sigma: float, state: State, verbose: bool = False):
        if sigma <= 0:
            raise InvalidArgument(f"sigma must be positive, got {sigma}.")
        self.threshold = float(threshold)
        self.sigma = float(sigma)
        self.shape = state.shape
        self.verbose = verbose

        dist_sq = torch.zeros(self.shape, dtype=state.real_space.real.dtype, device=state.device)
        for axis, size in enumerate(self.shape):
            idx = torch.arange(size, device=state.device)
            d = torch.minimum(idx, size - idx).to(dist_sq.dtype)
            view_shape = [1] * len(self.shape)
            view_shape[axis] = -1
            dist_sq = dist_sq + (d ** 2).view(*view_shape)

        self.kernel = torch.exp(-dist_sq / (2 * self.sigma ** 2)).to(state.real_space.dtype)
        state.engine.forward(self.kernel)
        self.temp_space = torch.zeros_like(state.real_space)

    def operate(self, state: State) -> None:
        _check_shape(repr(self), self.shape, state)
        engine = state.engine
        self.temp_space.copy_(torch.abs(state.real_space))
        engine.forward(self.temp_space)
        self.temp_space *= self.kernel
        engine.inverse(self.temp_space)

        blurred = torch.abs(self.temp_space)
        thresh_val = self.threshold * torch.sqrt(torch.max(blurred ** 2))
        state.support.copy_(blurred > thresh_val)

        if self.verbose:
            print(f"Shrink: threshold value {thresh_val.item():.4e}, support size {state.support_size}")

    def __repr__(self):
        return f"Shrink(threshold={self.threshold}, sigma={self.sigma})"


class Center(Operator):
    """
    Centers the object on the support's center of mass.

    The support is fftshifted so the zero frequency sits in the middle of
    the volume, its rounded center of mass is computed, and the field and
    support are circularly shifted so that this point lands on the
    half-dimension index. In unshifted coordinates the object ends up
    centered on the corner voxel, the FFT origin.
    """
    def __init__(self, state: State, verbose: bool = False):
        self.shape = state.shape
        self.verbose = verbose
        axes = [torch.arange(size, dtype=torch.int64, device=state.device) for size in self.shape]
        self.grids = torch.meshgrid(*axes, indexing='ij')
        self.space = torch.zeros_like(state.real_space)
        self.support = torch.zeros_like(state.support)
        self.last_shift = None

    def operate(self, state: State) -> None:
        _check_shape(repr(self), self.shape, state)
        dims = tuple(range(len(self.shape)))
        self.support.copy_(torch.roll(state.support, shifts=tuple(s // 2 for s in self.shape), dims=dims))

        count = int(torch.sum(self.support).item())
        if count == 0:
            raise InvalidArgument("Support is empty; cannot compute its center of mass.")
        centers = [round(torch.sum(grid * self.support).item() / count) for grid in self.grids]
        shift = tuple(s // 2 - c for s, c in zip(self.shape, centers))

        self.space.copy_(torch.roll(state.real_space, shifts=shift, dims=dims))
        self.support.copy_(torch.roll(state.support, shifts=shift, dims=dims))
        state.real_space.copy_(self.space)
        state.support.copy_(self.support)
        self.last_shift = shift

        if self.verbose:
            print(f"Center: shifted by {shift}")

    def __repr__(self):
        return "Center()"
