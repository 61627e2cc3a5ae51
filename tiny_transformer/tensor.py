# Change Log
# 2025-10-19: Named parameter handles
# - Parameter carries its own name, value and same-shaped gradient
# - Gradient accumulation checks shape agreement
# - clip_grad_norm / check_gradients utilities

import math
import numpy as np
from typing import Dict, Iterable, List, Optional, Tuple

from .config import GlobalConfig
from .errors import ShapeError

# ============================================================================
# Core Parameter Class
# ============================================================================

class Parameter:
    """
    A learnable tensor: value plus gradient of the same shape.
    The name is stable and unique within a model and keys optimizer state.
    """
    def __init__(self, data: np.ndarray, name: str = ""):
        self.data = np.asarray(data, dtype=GlobalConfig.DTYPE)
        self.grad: Optional[np.ndarray] = None
        self.name = name

    @property
    def shape(self) -> Tuple[int, ...]:
        return self.data.shape

    @property
    def size(self) -> int:
        return int(self.data.size)

    def accumulate(self, grad: np.ndarray) -> None:
        """Add grad to the stored gradient."""
        grad = np.asarray(grad, dtype=GlobalConfig.DTYPE)
        if grad.shape != self.data.shape:
            raise ShapeError(
                f"Gradient for '{self.name}' has shape {grad.shape}, expected {self.data.shape}"
            )
        if self.grad is None:
            self.grad = grad.copy()
        else:
            self.grad += grad

    def zero_grad(self) -> None:
        """Reset gradient to None."""
        self.grad = None

    def __repr__(self) -> str:
        return f"Parameter(name={self.name!r}, shape={self.data.shape})"


def prefixed(prefix: str, named: Dict[str, Parameter]) -> Dict[str, Parameter]:
    """Qualify every key of a named-parameter mapping with prefix."""
    return {f"{prefix}.{name}": param for name, param in named.items()}


def rename(named: Dict[str, Parameter]) -> Dict[str, Parameter]:
    """Write each mapping key back onto its Parameter so the name is fully qualified."""
    for name, param in named.items():
        param.name = name
    return named

# ============================================================================
# Gradient Utilities
# ============================================================================

def clip_grad_norm(params: Iterable[Parameter], max_norm: float) -> float:
    """
    Clip gradient norm to prevent exploding gradients.

    Args:
        params: Parameters whose gradients are scaled in place
        max_norm: Maximum global L2 norm

    Returns:
        Total gradient norm before clipping
    """
    params = list(params)
    total_norm = 0.0
    for param in params:
        if param.grad is not None:
            total_norm += float(np.sum(param.grad ** 2))

    total_norm = math.sqrt(total_norm)

    clip_coef = max_norm / (total_norm + 1e-6)
    if clip_coef < 1:
        for param in params:
            if param.grad is not None:
                param.grad *= clip_coef

    return total_norm


def check_gradients(params: Iterable[Parameter], verbose: bool = False) -> Tuple[int, int, List[str]]:
    """
    Check which parameters have gradients.

    Returns:
        num_with_grad: Number of parameters with gradients
        total_params: Total number of parameters
        missing_params: List of parameter names without gradients
    """
    params = list(params)
    num_with_grad = 0
    missing_params = []

    for param in params:
        if param.grad is not None:
            num_with_grad += 1
        else:
            param_name = param.name if param.name else "unnamed"
            missing_params.append(param_name)
            if verbose:
                print(f"⚠ Parameter '{param_name}' has no gradient")

    total_params = len(params)

    if verbose:
        print(f"\nGradient Check: {num_with_grad}/{total_params} parameters have gradients")
        if missing_params:
            print(f"Missing gradients for: {missing_params[:5]}{'...' if len(missing_params) > 5 else ''}")

    return num_with_grad, total_params, missing_params
