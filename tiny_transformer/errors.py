# Change Log
# 2025-10-19: Error taxonomy for configuration, shape and data failures

class TransformerError(Exception):
    """Base class for every error raised by tiny_transformer."""


class ConfigurationError(TransformerError, ValueError):
    """Invalid model, layer or training configuration. Raised at construction."""


class ShapeError(TransformerError, ValueError):
    """Operands with non-conformant shapes."""


class DataError(TransformerError, ValueError):
    """Bad token IDs, targets or training sequences."""


class TaskCancelledError(TransformerError):
    """Result requested from a cancelled MatMulTask."""
