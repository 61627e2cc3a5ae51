# Change Log
# 2025-10-19: Name-keyed AdamW
# - Moment state allocated lazily per parameter name
# - Partial updates keep the state of absent parameters
# - Warmup + cosine learning rate schedule

import math
import numpy as np
from typing import Dict, Iterable, Optional, Tuple

from .errors import ConfigurationError, ShapeError
from .tensor import Parameter

# ============================================================================
# Optimizers
# ============================================================================

class AdamW:
    """
    Adam with bias correction and optional decoupled weight decay.
    With weight_decay=0 this is plain Adam.
    """
    def __init__(
        self,
        lr: float = 0.001,
        betas: Tuple[float, float] = (0.9, 0.999),
        eps: float = 1e-8,
        weight_decay: float = 0.0,
    ):
        if lr <= 0:
            raise ConfigurationError(f"Learning rate must be positive, got {lr}")
        self.lr = lr
        self.beta1, self.beta2 = betas
        self.eps = eps
        self.weight_decay = weight_decay
        self.t = 0

        self.m: Dict[str, np.ndarray] = {}
        self.v: Dict[str, np.ndarray] = {}

    def state_for(self, name: str) -> Optional[Tuple[np.ndarray, np.ndarray]]:
        """(m, v) for a parameter name, or None if it was never updated."""
        if name not in self.m:
            return None
        return self.m[name], self.v[name]

    def update(self, params: Iterable[Parameter]) -> None:
        """
        Perform a single optimization step on the given parameters.

        Args:
            params: A name -> Parameter mapping, whose keys key the moment
                    state, or plain Parameters keyed by their own names
        """
        if isinstance(params, dict):
            named = params.items()
        else:
            named = ((param.name, param) for param in params)
        self.t += 1

        for name, param in named:
            if param.grad is None:
                continue
            grad = param.grad
            if grad.shape != param.data.shape:
                raise ShapeError(
                    f"Gradient for '{name}' has shape {grad.shape}, value has {param.data.shape}"
                )

            if name not in self.m:
                self.m[name] = np.zeros_like(param.data)
                self.v[name] = np.zeros_like(param.data)
            elif self.m[name].shape != grad.shape:
                raise ShapeError(
                    f"Optimizer state for '{name}' has shape {self.m[name].shape}, gradient has {grad.shape}"
                )

            # Update biased first and second moment estimates
            self.m[name] = self.beta1 * self.m[name] + (1 - self.beta1) * grad
            self.v[name] = self.beta2 * self.v[name] + (1 - self.beta2) * (grad ** 2)

            # Compute bias-corrected moments
            m_hat = self.m[name] / (1 - self.beta1 ** self.t)
            v_hat = self.v[name] / (1 - self.beta2 ** self.t)

            param.data -= self.lr * (
                m_hat / (np.sqrt(v_hat) + self.eps) + self.weight_decay * param.data
            )

    @staticmethod
    def zero_grad(params: Iterable[Parameter]) -> None:
        """Zero all parameter gradients."""
        if isinstance(params, dict):
            params = params.values()
        for param in params:
            param.zero_grad()


class WarmupCosineScheduler:
    """Learning rate scheduler with linear warmup and cosine decay."""
    def __init__(
        self,
        optimizer: AdamW,
        warmup_steps: int,
        total_steps: int,
        min_lr: float = 1e-6,
    ):
        if total_steps <= 0 or warmup_steps < 0:
            raise ConfigurationError(
                f"Invalid schedule: warmup_steps={warmup_steps}, total_steps={total_steps}"
            )
        self.optimizer = optimizer
        self.warmup_steps = warmup_steps
        self.total_steps = total_steps
        self.min_lr = min_lr
        self.base_lr = optimizer.lr
        self.current_step = 0

    def step(self) -> float:
        """Update learning rate and return current LR."""
        self.current_step += 1

        if self.current_step < self.warmup_steps:
            # Linear warmup
            lr = self.base_lr * (self.current_step / self.warmup_steps)
        else:
            # Cosine decay
            span = max(1, self.total_steps - self.warmup_steps)
            progress = min(1.0, (self.current_step - self.warmup_steps) / span)
            lr = self.min_lr + (self.base_lr - self.min_lr) * 0.5 * (1 + math.cos(math.pi * progress))

        self.optimizer.lr = lr
        return lr
