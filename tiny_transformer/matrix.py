# Change Log
# 2025-10-19: Dense matrix kernel
# - Pure functions with shape checks (ShapeError) and dimension checks (ConfigurationError)
# - Row-wise softmax with max subtraction and exponent clamping
# - MatMulTask: resumable, cancellable row-by-row multiply

import asyncio
import numpy as np
from typing import Iterator, Optional

from .config import GlobalConfig
from .errors import ConfigurationError, ShapeError, TaskCancelledError

# ============================================================================
# Construction
# ============================================================================

def _check_dims(rows: int, cols: int) -> None:
    if rows <= 0 or cols <= 0:
        raise ConfigurationError(f"Matrix dimensions must be positive, got ({rows}, {cols})")


def zeros(rows: int, cols: int) -> np.ndarray:
    _check_dims(rows, cols)
    return np.zeros((rows, cols), dtype=GlobalConfig.DTYPE)


def random_matrix(rows: int, cols: int, scale: float, rng: np.random.Generator) -> np.ndarray:
    """Uniform random matrix with entries in [-scale, scale]."""
    _check_dims(rows, cols)
    return rng.uniform(-scale, scale, (rows, cols)).astype(GlobalConfig.DTYPE)


def xavier_scale(fan_in: int, fan_out: int) -> float:
    """Xavier/Glorot uniform limit."""
    return float(np.sqrt(6.0 / (fan_in + fan_out)))

# ============================================================================
# Arithmetic
# ============================================================================

def _check_matrix(a: np.ndarray, op: str) -> None:
    if a.ndim != 2:
        raise ShapeError(f"{op}: expected a 2-D matrix, got shape {a.shape}")


def mm(a: np.ndarray, b: np.ndarray) -> np.ndarray:
    """Matrix product. Requires cols(a) == rows(b)."""
    _check_matrix(a, "mm")
    _check_matrix(b, "mm")
    if a.shape[1] != b.shape[0]:
        raise ShapeError(f"mm: cannot multiply {a.shape} by {b.shape}")
    return a @ b


def transpose(a: np.ndarray) -> np.ndarray:
    _check_matrix(a, "transpose")
    return a.T.copy()


def _check_same(a: np.ndarray, b: np.ndarray, op: str) -> None:
    if a.shape != b.shape:
        raise ShapeError(f"{op}: shape mismatch {a.shape} vs {b.shape}")


def add(a: np.ndarray, b: np.ndarray) -> np.ndarray:
    _check_same(a, b, "add")
    return a + b


def subtract(a: np.ndarray, b: np.ndarray) -> np.ndarray:
    _check_same(a, b, "subtract")
    return a - b


def scale(a: np.ndarray, s: float) -> np.ndarray:
    return a * s


def column_sum(a: np.ndarray) -> np.ndarray:
    """Sum over rows, giving one value per column (bias gradients)."""
    _check_matrix(a, "column_sum")
    return np.sum(a, axis=0)

# ============================================================================
# Activations
# ============================================================================

def softmax(a: np.ndarray) -> np.ndarray:
    """
    Row-wise softmax.

    The row maximum is subtracted before exponentiation and the exponent is
    clamped to [-SOFTMAX_CLAMP, SOFTMAX_CLAMP]. Stacked matrices (one per
    attention head) are accepted; rows are always the last axis.

    Args:
        a: Array of shape (..., rows, cols)

    Returns:
        Array of the same shape whose rows sum to 1
    """
    if a.ndim < 2:
        raise ShapeError(f"softmax: expected at least a 2-D matrix, got shape {a.shape}")
    limit = GlobalConfig.SOFTMAX_CLAMP
    shifted = np.clip(a - np.max(a, axis=-1, keepdims=True), -limit, limit)
    exp_a = np.exp(shifted)
    return exp_a / np.sum(exp_a, axis=-1, keepdims=True)


def relu(a: np.ndarray) -> np.ndarray:
    return np.maximum(0.0, a)


def relu_backward(grad: np.ndarray, pre_activation: np.ndarray) -> np.ndarray:
    """Pass the gradient only where the pre-activation was strictly positive."""
    _check_same(grad, pre_activation, "relu_backward")
    return grad * (pre_activation > 0)

# ============================================================================
# Cooperative Matrix Multiply
# ============================================================================

class MatMulTask:
    """
    Row-by-row matrix multiply that a host scheduler can drive.

    Each step() computes one output row. The caller may poll, iterate, cancel,
    or await run_async(), which yields to the event loop after every row. The
    result is identical to mm(a, b). Not safe to drive from two callers at once.
    """
    def __init__(self, a: np.ndarray, b: np.ndarray):
        _check_matrix(a, "MatMulTask")
        _check_matrix(b, "MatMulTask")
        if a.shape[1] != b.shape[0]:
            raise ShapeError(f"MatMulTask: cannot multiply {a.shape} by {b.shape}")

        self.a = a
        self.b = b
        self._out = np.zeros((a.shape[0], b.shape[1]), dtype=np.result_type(a, b))
        self._next_row = 0
        self._cancelled = False

    @property
    def rows(self) -> int:
        return self.a.shape[0]

    @property
    def done(self) -> bool:
        return self._next_row >= self.rows

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def progress(self) -> float:
        """Fraction of output rows computed."""
        return self._next_row / self.rows if self.rows else 1.0

    def step(self) -> bool:
        """Compute the next output row. Returns True once every row is done."""
        if self._cancelled:
            raise TaskCancelledError("step() called on a cancelled MatMulTask")
        if not self.done:
            i = self._next_row
            self._out[i] = self.a[i] @ self.b
            self._next_row += 1
        return self.done

    def cancel(self) -> None:
        self._cancelled = True

    def result(self) -> np.ndarray:
        if self._cancelled:
            raise TaskCancelledError(
                f"MatMulTask cancelled after {self._next_row}/{self.rows} rows"
            )
        if not self.done:
            raise RuntimeError(f"MatMulTask not finished ({self._next_row}/{self.rows} rows)")
        return self._out

    def __iter__(self) -> Iterator[int]:
        """Yield each row index as it is completed."""
        while not self.done and not self._cancelled:
            row = self._next_row
            self.step()
            yield row

    def run(self) -> np.ndarray:
        for _ in self:
            pass
        return self.result()

    async def run_async(self, rows_per_yield: Optional[int] = 1) -> np.ndarray:
        """Compute the product, yielding to the event loop between rows."""
        rows_per_yield = max(1, rows_per_yield or 1)
        while not self.done:
            if self._cancelled:
                break
            for _ in range(rows_per_yield):
                if self.step():
                    break
            await asyncio.sleep(0)
        return self.result()
