"""
Unit tests for the dense matrix kernel.

Tests verify:
  1. Shape and dimension errors are raised
  2. Softmax rows sum to 1, are shift invariant and survive extreme inputs
  3. ReLU gradient passes only through strictly positive pre-activations
  4. MatMulTask matches mm() and honours cancellation
"""

import sys
import os
import asyncio

import numpy as np
import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from tiny_transformer.errors import ConfigurationError, ShapeError, TaskCancelledError
from tiny_transformer.matrix import (
    MatMulTask,
    add,
    column_sum,
    mm,
    random_matrix,
    relu,
    relu_backward,
    scale,
    softmax,
    subtract,
    transpose,
    zeros,
)


@pytest.fixture
def rng():
    return np.random.default_rng(1234)


class TestConstruction:

    def test_zeros(self):
        z = zeros(2, 3)
        assert z.shape == (2, 3)
        assert np.all(z == 0)

    @pytest.mark.parametrize("rows,cols", [(0, 3), (3, 0), (-1, 2)])
    def test_non_positive_dimensions(self, rows, cols, rng):
        with pytest.raises(ConfigurationError):
            zeros(rows, cols)
        with pytest.raises(ConfigurationError):
            random_matrix(rows, cols, 0.5, rng)

    def test_random_matrix_bounds(self, rng):
        m = random_matrix(20, 30, 0.25, rng)
        assert m.shape == (20, 30)
        assert np.all(np.abs(m) <= 0.25)

    def test_random_matrix_seeded(self):
        a = random_matrix(4, 4, 1.0, np.random.default_rng(7))
        b = random_matrix(4, 4, 1.0, np.random.default_rng(7))
        assert np.array_equal(a, b)


class TestArithmetic:

    def test_mm(self):
        a = np.array([[1.0, 2.0], [3.0, 4.0], [5.0, 6.0]])
        b = np.array([[1.0, 0.0, 2.0], [0.0, 1.0, 3.0]])
        expected = np.array([[1.0, 2.0, 8.0], [3.0, 4.0, 18.0], [5.0, 6.0, 28.0]])
        assert np.allclose(mm(a, b), expected)

    def test_mm_shape_mismatch(self):
        with pytest.raises(ShapeError, match=r"\(2, 3\).*\(2, 3\)"):
            mm(np.ones((2, 3)), np.ones((2, 3)))

    def test_add_subtract_require_same_shape(self):
        with pytest.raises(ShapeError):
            add(np.ones((2, 2)), np.ones((2, 3)))
        with pytest.raises(ShapeError):
            subtract(np.ones((2, 2)), np.ones((3, 2)))

    def test_pure_operations(self):
        a = np.array([[1.0, -2.0]])
        b = np.array([[3.0, 4.0]])
        assert np.allclose(add(a, b), [[4.0, 2.0]])
        assert np.allclose(subtract(a, b), [[-2.0, -6.0]])
        assert np.allclose(scale(a, 2.0), [[2.0, -4.0]])
        assert np.allclose(a, [[1.0, -2.0]])

    def test_transpose_and_column_sum(self):
        a = np.arange(6, dtype=float).reshape(2, 3)
        assert transpose(a).shape == (3, 2)
        assert np.allclose(column_sum(a), [3.0, 5.0, 7.0])


class TestSoftmax:

    def test_rows_sum_to_one(self, rng):
        a = rng.standard_normal((5, 7)) * 10
        assert np.allclose(softmax(a).sum(axis=-1), 1.0)

    def test_shift_invariance(self, rng):
        a = rng.standard_normal((4, 6))
        shifted = a + np.array([[3.0], [-50.0], [100.0], [0.5]])
        assert np.allclose(softmax(a), softmax(shifted))

    def test_extreme_values(self):
        s = softmax(np.array([[1000.0, 0.0, -1000.0], [1e6, 1e6, 1e6]]))
        assert np.all(np.isfinite(s))
        assert s[0, 0] == pytest.approx(1.0)
        assert np.allclose(s[1], 1.0 / 3.0)

    def test_stacked_heads(self, rng):
        a = rng.standard_normal((2, 3, 4))
        assert np.allclose(softmax(a).sum(axis=-1), 1.0)

    def test_rejects_vectors(self):
        with pytest.raises(ShapeError):
            softmax(np.ones(3))


class TestRelu:

    def test_relu(self):
        assert np.allclose(relu(np.array([[-1.0, 0.0, 2.0]])), [[0.0, 0.0, 2.0]])

    def test_gradient_only_where_strictly_positive(self):
        pre = np.array([[-1.0, 0.0, 2.0]])
        grad = np.array([[5.0, 5.0, 5.0]])
        assert np.allclose(relu_backward(grad, pre), [[0.0, 0.0, 5.0]])


class TestMatMulTask:

    def test_matches_mm(self, rng):
        a = rng.standard_normal((5, 3))
        b = rng.standard_normal((3, 4))
        task = MatMulTask(a, b)
        steps = 0
        while not task.step():
            steps += 1
        assert steps == 4
        assert task.done
        assert task.progress == 1.0
        assert np.allclose(task.result(), mm(a, b))

    def test_iteration_yields_rows(self, rng):
        task = MatMulTask(rng.standard_normal((3, 2)), rng.standard_normal((2, 2)))
        assert list(task) == [0, 1, 2]

    def test_unfinished_result(self, rng):
        task = MatMulTask(rng.standard_normal((3, 2)), rng.standard_normal((2, 2)))
        task.step()
        assert task.progress == pytest.approx(1 / 3)
        with pytest.raises(RuntimeError):
            task.result()

    def test_cancel(self, rng):
        task = MatMulTask(rng.standard_normal((3, 2)), rng.standard_normal((2, 2)))
        task.step()
        task.cancel()
        assert task.cancelled
        with pytest.raises(TaskCancelledError):
            task.result()
        with pytest.raises(TaskCancelledError):
            task.step()

    def test_run_async(self, rng):
        a = rng.standard_normal((6, 4))
        b = rng.standard_normal((4, 2))
        result = asyncio.run(MatMulTask(a, b).run_async())
        assert np.allclose(result, a @ b)

    def test_run_async_interleaves(self, rng):
        a = rng.standard_normal((4, 3))
        b = rng.standard_normal((3, 3))
        order = []

        async def other():
            for _ in range(3):
                order.append("other")
                await asyncio.sleep(0)

        async def main():
            task = MatMulTask(a, b)

            async def multiply():
                result = await task.run_async()
                order.append("done")
                return result

            result, _ = await asyncio.gather(multiply(), other())
            return result

        result = asyncio.run(main())
        assert np.allclose(result, a @ b)
        assert order.index("other") < order.index("done")

    def test_shape_mismatch(self):
        with pytest.raises(ShapeError):
            MatMulTask(np.ones((2, 3)), np.ones((2, 3)))
