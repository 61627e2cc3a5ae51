# Change Log
# 2025-10-19: Model and training configuration
# - GlobalConfig constants (dtype, mask value, clamps)
# - Frozen dataclasses with explicit validation
# - Single switch for the positional scheme

import numpy as np
from dataclasses import dataclass, replace
from typing import Optional, Tuple

from .errors import ConfigurationError

# ============================================================================
# Global Configuration
# ============================================================================

class GlobalConfig:
    """Global numerical constants shared by every layer."""
    DTYPE = np.float64
    MASK_VALUE = -1e9
    SOFTMAX_CLAMP = 700.0
    LAYER_NORM_EPS = 1e-5
    GREEDY_TEMPERATURE = 1e-7


POSITIONAL_SCHEMES = ("sinusoidal", "learned")
TOKENIZER_MODES = ("char", "bpe")

# ============================================================================
# Model Configuration
# ============================================================================

@dataclass(frozen=True)
class TransformerConfig:
    d_model: int = 32
    num_heads: int = 4
    d_ff: int = 64
    num_layers: int = 2
    max_seq_len: int = 64
    vocab_size: int = 0
    positional: str = "sinusoidal"
    tokenizer_mode: str = "char"
    external_vocab_url: Optional[str] = None
    seed: Optional[int] = None

    @property
    def d_head(self) -> int:
        return self.d_model // self.num_heads

    def with_vocab_size(self, vocab_size: int) -> "TransformerConfig":
        """Return a copy with vocab_size filled in from a tokenizer."""
        return replace(self, vocab_size=vocab_size)

    def validate(self) -> "TransformerConfig":
        """
        Check every field, raising ConfigurationError on the first problem.

        Returns:
            self, so construction can chain on it
        """
        for field_name in ("d_model", "num_heads", "d_ff", "num_layers", "max_seq_len"):
            value = getattr(self, field_name)
            if not isinstance(value, (int, np.integer)) or value <= 0:
                raise ConfigurationError(f"{field_name} must be a positive integer, got {value!r}")

        if self.d_model % self.num_heads != 0:
            raise ConfigurationError(
                f"d_model ({self.d_model}) must be divisible by num_heads ({self.num_heads})"
            )
        if self.vocab_size <= 0:
            raise ConfigurationError(
                f"vocab_size must be set from the tokenizer before building a model, got {self.vocab_size}"
            )
        if self.positional not in POSITIONAL_SCHEMES:
            raise ConfigurationError(
                f"positional must be one of {POSITIONAL_SCHEMES}, got {self.positional!r}"
            )
        if self.tokenizer_mode not in TOKENIZER_MODES:
            raise ConfigurationError(
                f"tokenizer_mode must be one of {TOKENIZER_MODES}, got {self.tokenizer_mode!r}"
            )
        return self

# ============================================================================
# Training Configuration
# ============================================================================

@dataclass(frozen=True)
class TrainingConfig:
    learning_rate: float = 0.01
    epochs: int = 50
    betas: Tuple[float, float] = (0.9, 0.999)
    eps: float = 1e-8
    weight_decay: float = 0.0
    max_grad_norm: Optional[float] = None
    warmup_steps: int = 0
    min_lr: float = 1e-6
    shuffle: bool = False
    print_every: int = 10

    def validate(self) -> "TrainingConfig":
        if self.learning_rate <= 0:
            raise ConfigurationError(f"learning_rate must be positive, got {self.learning_rate}")
        if self.epochs <= 0:
            raise ConfigurationError(f"epochs must be positive, got {self.epochs}")
        beta1, beta2 = self.betas
        if not (0.0 <= beta1 < 1.0 and 0.0 <= beta2 < 1.0):
            raise ConfigurationError(f"betas must lie in [0, 1), got {self.betas}")
        if self.eps <= 0:
            raise ConfigurationError(f"eps must be positive, got {self.eps}")
        if self.weight_decay < 0:
            raise ConfigurationError(f"weight_decay must be non-negative, got {self.weight_decay}")
        if self.max_grad_norm is not None and self.max_grad_norm <= 0:
            raise ConfigurationError(f"max_grad_norm must be positive, got {self.max_grad_norm}")
        if self.warmup_steps < 0:
            raise ConfigurationError(f"warmup_steps must be non-negative, got {self.warmup_steps}")
        return self
