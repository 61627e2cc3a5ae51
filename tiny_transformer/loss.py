# Change Log
# 2025-10-19: Summed cross-entropy with validated targets

import numpy as np
from numbers import Integral
from typing import Optional, Sequence

from .errors import DataError, ShapeError
from .matrix import softmax

# ============================================================================
# Loss
# ============================================================================

class CrossEntropyLoss:
    """
    Per-position softmax + negative log-likelihood, summed over positions.
    The gradient w.r.t. the logits is probabilities - one_hot(targets).
    """
    def __init__(self):
        self.probabilities: Optional[np.ndarray] = None

    @staticmethod
    def _validate(logits: np.ndarray, targets: Sequence[int]) -> np.ndarray:
        if logits.ndim != 2:
            raise ShapeError(f"Expected logits of shape (seq_len, vocab_size), got {logits.shape}")
        seq_len, vocab_size = logits.shape

        if targets is None:
            raise DataError("Targets are missing")
        targets = list(targets)
        if len(targets) != seq_len:
            raise DataError(f"Expected {seq_len} targets, got {len(targets)}")

        for position, target in enumerate(targets):
            if isinstance(target, (bool, np.bool_)) or not isinstance(target, Integral):
                raise DataError(f"Target at position {position} is not an integer: {target!r}")
            if not 0 <= target < vocab_size:
                raise DataError(
                    f"Target at position {position} is {target}, outside [0, {vocab_size})"
                )
        return np.asarray(targets, dtype=np.int64)

    def compute(self, logits: np.ndarray, targets: Sequence[int]) -> float:
        """
        Args:
            logits: (seq_len, vocab_size)
            targets: One target ID per position

        Returns:
            Sum of -log p(target) over all positions
        """
        targets = self._validate(logits, targets)
        probs = softmax(logits)
        self.probabilities = probs

        target_probs = probs[np.arange(len(targets)), targets]
        bad = np.nonzero(~(target_probs > 0))[0]
        if bad.size:
            position = int(bad[0])
            raise DataError(
                f"Target probability at position {position} is {target_probs[position]!r}; "
                "cannot take its logarithm"
            )
        return float(-np.sum(np.log(target_probs)))

    def backward(self, logits: np.ndarray, targets: Sequence[int]) -> np.ndarray:
        """
        Gradient: softmax - one_hot. Softmax is recomputed from the logits given
        here so the result does not depend on a previous compute() call.
        """
        targets = self._validate(logits, targets)
        probs = softmax(logits)
        self.probabilities = probs

        grad = probs.copy()
        grad[np.arange(len(targets)), targets] -= 1.0
        return grad

    def __call__(self, logits: np.ndarray, targets: Sequence[int]):
        """Loss and gradient in one call."""
        return self.compute(logits, targets), self.backward(logits, targets)
