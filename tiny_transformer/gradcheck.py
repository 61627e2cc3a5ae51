# Change Log
# 2025-10-19: Finite-difference checks for the analytic backward passes

import numpy as np
from typing import Callable, Dict, Optional, Tuple

from .tensor import Parameter


def numerical_gradient(
    f: Callable[[], float],
    array: np.ndarray,
    index: Tuple[int, ...],
    h: float = 1e-5,
) -> float:
    """Central difference of f() w.r.t. array[index]. The entry is restored afterwards."""
    saved = array[index]
    try:
        array[index] = saved + h
        plus = f()
        array[index] = saved - h
        minus = f()
    finally:
        array[index] = saved
    return (plus - minus) / (2 * h)


def relative_error(analytic: float, numeric: float, floor: float = 1e-6) -> float:
    return abs(analytic - numeric) / max(abs(analytic), abs(numeric), floor)


def check_layer_gradients(
    forward: Callable[[np.ndarray], Tuple[np.ndarray, object]],
    backward: Callable[[object, np.ndarray], np.ndarray],
    x: np.ndarray,
    params: Dict[str, Parameter],
    num_checks: int = 5,
    h: float = 1e-5,
    rng: Optional[np.random.Generator] = None,
) -> Dict[str, float]:
    """
    Compare a layer's analytic gradients with finite differences.

    The scalar objective is sum(forward(x) * G) for a fixed random G, so the
    analytic gradients are backward(cache, G).

    Args:
        forward: x -> (output, cache)
        backward: (cache, grad_output) -> grad_x; accumulates parameter grads
        x: Layer input, perturbed in place and restored
        params: Parameters to check, keyed by name
        num_checks: Random entries sampled per tensor

    Returns:
        Worst relative error for "input" and for every parameter name
    """
    rng = rng if rng is not None else np.random.default_rng(0)

    output, cache = forward(x)
    upstream = rng.standard_normal(output.shape)

    for param in params.values():
        param.zero_grad()
    analytic = {"input": backward(cache, upstream)}
    for name, param in params.items():
        analytic[name] = param.grad.copy() if param.grad is not None else np.zeros_like(param.data)

    def objective() -> float:
        return float(np.sum(forward(x)[0] * upstream))

    tensors = [("input", x)] + [(name, param.data) for name, param in params.items()]
    errors = {}
    for name, array in tensors:
        worst = 0.0
        for _ in range(num_checks):
            index = tuple(int(rng.integers(0, dim)) for dim in array.shape)
            numeric = numerical_gradient(objective, array, index, h)
            worst = max(worst, relative_error(float(analytic[name][index]), numeric))
        errors[name] = worst
    return errors
