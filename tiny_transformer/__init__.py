"""A small decoder-only transformer language model with hand-written backpropagation."""

from .config import GlobalConfig, TrainingConfig, TransformerConfig
from .errors import ConfigurationError, DataError, ShapeError, TaskCancelledError, TransformerError
from .layers import Embedding, FeedForwardNetwork, LayerNormalization, MultiHeadAttention, TransformerBlock
from .loss import CrossEntropyLoss
from .matrix import MatMulTask
from .model import ModelGradients, TransformerModel, create_look_ahead_mask
from .optimizer import AdamW, WarmupCosineScheduler
from .tensor import Parameter
from .tokenizer import BPETokenizer, CharTokenizer, chunk_text, create_tokenizer
from .trainer import Trainer

__all__ = [
    "GlobalConfig",
    "TrainingConfig",
    "TransformerConfig",
    "ConfigurationError",
    "DataError",
    "ShapeError",
    "TaskCancelledError",
    "TransformerError",
    "Embedding",
    "FeedForwardNetwork",
    "LayerNormalization",
    "MultiHeadAttention",
    "TransformerBlock",
    "CrossEntropyLoss",
    "MatMulTask",
    "ModelGradients",
    "TransformerModel",
    "create_look_ahead_mask",
    "AdamW",
    "WarmupCosineScheduler",
    "Parameter",
    "BPETokenizer",
    "CharTokenizer",
    "chunk_text",
    "create_tokenizer",
    "Trainer",
]

__version__ = "0.1.0"
