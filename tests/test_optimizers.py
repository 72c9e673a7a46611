import math
import unittest
import torch
from bcditrad.optimizers import BacktrackingLineSearch, LBFGS, Optimizer, OptimizeResult, real_dot
from bcditrad.exceptions import EngineFailure

DEVICE = torch.device('cuda' if torch.cuda.is_available() else 'cpu')


class TestRealDot(unittest.TestCase):
    def test_real_and_complex(self):
        a = torch.tensor([1.0, 2.0, 3.0], device=DEVICE)
        b = torch.tensor([4.0, -1.0, 0.5], device=DEVICE)
        self.assertAlmostEqual(real_dot(a, b), 3.5)
        ac = torch.tensor([1 + 2j, -1j], dtype=torch.complex128, device=DEVICE)
        bc = torch.tensor([3 - 1j, 2 + 2j], dtype=torch.complex128, device=DEVICE)
        # Re(conj(1+2j)(3-1j) + conj(-1j)(2+2j)) = Re((1-5j) + (-2+2j))
        self.assertAlmostEqual(real_dot(ac, bc), -1.0)


class TestBacktrackingLineSearch(unittest.TestCase):
    def setUp(self):
        self.search = BacktrackingLineSearch()

    def test_instantiation(self):
        self.assertEqual(self.search.initial_step, 2.0)
        with self.assertRaises(ValueError):
            BacktrackingLineSearch(initial_step=0.0)
        with self.assertRaises(ValueError):
            BacktrackingLineSearch(rho_hi=0.1, rho_lo=0.5)

    def test_accepts_initial_step(self):
        alpha, value = self.search.search(lambda a: -a, 0.0, -1.0)
        self.assertEqual(alpha, 2.0)
        self.assertEqual(value, -2.0)

    def test_quadratic_interpolation_is_exact_on_parabola(self):
        alpha, value = self.search.search(lambda a: (a - 1.0) ** 2, 1.0, -2.0)
        self.assertAlmostEqual(alpha, 1.0)
        self.assertAlmostEqual(value, 0.0)

    def test_non_finite_trial_shrinks_step(self):
        calls = []

        def phi(a):
            calls.append(a)
            return math.nan if a >= 2.0 else (1.0 - 2.0 * a) ** 2

        alpha, value = self.search.search(phi, 1.0, -4.0)
        self.assertEqual(calls[:2], [2.0, 1.0])
        self.assertAlmostEqual(alpha, 0.5)
        self.assertAlmostEqual(value, 0.0)

    def test_step_is_safeguarded(self):
        # a very flat start pushes the interpolated step below rho_lo * alpha
        alpha, _ = self.search.search(lambda a: 1e6 * a ** 2 - 1e-6 * a, 0.0, -1e-6)
        self.assertLess(alpha, 2.0)
        self.assertGreater(alpha, 0.0)

    def test_ascent_direction_raises(self):
        with self.assertRaises(EngineFailure):
            self.search.search(lambda a: a, 0.0, 1.0)

    def test_non_finite_start_raises(self):
        with self.assertRaises(EngineFailure):
            self.search.search(lambda a: 0.0, math.inf, -1.0)

    def test_iteration_limit(self):
        search = BacktrackingLineSearch(max_iter=5)
        with self.assertRaises(EngineFailure):
            search.search(lambda a: math.inf, 0.0, -1.0)


class TestLBFGS(unittest.TestCase):
    def setUp(self):
        self.center = torch.linspace(-1.0, 2.0, 10, dtype=torch.float64, device=DEVICE)
        self.weights = torch.linspace(1.0, 10.0, 10, dtype=torch.float64, device=DEVICE)

    def shifted_norm(self, x, need_grad):
        r = x - self.center
        return torch.sum(r ** 2), (2 * r if need_grad else None)

    def weighted_norm(self, x, need_grad):
        return torch.sum(self.weights * x ** 2), (2 * self.weights * x if need_grad else None)

    def test_is_optimizer(self):
        self.assertIsInstance(LBFGS(), Optimizer)
        with self.assertRaises(TypeError):
            Optimizer()
        with self.assertRaises(ValueError):
            LBFGS(iterations=0)

    def test_single_iteration_on_isotropic_quadratic(self):
        x0 = torch.zeros(10, dtype=torch.float64, device=DEVICE)
        result = LBFGS().minimize(self.shifted_norm, x0)
        self.assertIsInstance(result, OptimizeResult)
        self.assertEqual(result.step_sizes, [0.5])
        torch.testing.assert_close(result.x, self.center)
        self.assertAlmostEqual(result.value, 0.0)
        self.assertTrue(torch.all(x0 == 0))

    def test_converges_on_diagonal_quadratic(self):
        x0 = torch.ones(10, dtype=torch.float64, device=DEVICE)
        initial, _ = self.weighted_norm(x0, False)
        result = LBFGS(iterations=20).minimize(self.weighted_norm, x0)
        self.assertEqual(len(result.step_sizes), 20)
        self.assertLess(result.value, 1e-3 * initial.item())

    def test_complex_variables(self):
        target = torch.tensor([1 + 1j, -2j, 0.5], dtype=torch.complex128, device=DEVICE)

        def fg(x, need_grad):
            r = x - target
            return torch.sum(torch.abs(r) ** 2), (2 * r if need_grad else None)

        result = LBFGS().minimize(fg, torch.zeros_like(target))
        torch.testing.assert_close(result.x, target)

    def test_non_finite_objective_raises(self):
        with self.assertRaises(EngineFailure):
            LBFGS().minimize(lambda x, g: (torch.tensor(math.nan), x), torch.zeros(3))


if __name__ == '__main__':
    unittest.main()
