# Change Log
# 2025-10-19: Decoder-only language model
# - Embedding -> causal block stack -> final projection
# - Backward returns the embedding / projection gradients for inspection
# - Greedy and temperature-sampled next-token prediction with an explicit rng

import numpy as np
from dataclasses import dataclass
from typing import Dict, List, NamedTuple, Optional, Sequence

from .config import GlobalConfig, TransformerConfig
from .errors import DataError, ShapeError
from .layers import BlockCache, Embedding, EmbeddingCache, TransformerBlock, as_index_array
from .matrix import mm, random_matrix, softmax, xavier_scale
from .tensor import Parameter, prefixed, rename

# ============================================================================
# Mask Creation Utilities
# ============================================================================

def create_look_ahead_mask(size: int) -> np.ndarray:
    """Additive causal mask: MASK_VALUE where j > i, else 0."""
    upper = np.triu(np.ones((size, size), dtype=bool), k=1)
    return np.where(upper, GlobalConfig.MASK_VALUE, 0.0)

# ============================================================================
# Model
# ============================================================================

@dataclass
class ModelCache:
    tokens: np.ndarray
    positions: np.ndarray
    embedding: EmbeddingCache
    blocks: List[BlockCache]
    hidden: np.ndarray
    logits: np.ndarray


class ModelGradients(NamedTuple):
    token_embedding: np.ndarray
    final_projection: np.ndarray
    embedding_output: np.ndarray


class TransformerModel:
    """
    Decoder-only Transformer language model with full backward pass.
    """
    def __init__(self, config: TransformerConfig, rng: Optional[np.random.Generator] = None):
        self.config = config.validate()
        self.rng = rng if rng is not None else np.random.default_rng(config.seed)

        self.vocab_size = config.vocab_size
        self.d_model = config.d_model
        self.max_seq_len = config.max_seq_len

        self.embedding = Embedding(
            config.vocab_size, config.d_model, config.max_seq_len, config.positional, self.rng
        )
        self.blocks = [
            TransformerBlock(config.d_model, config.num_heads, config.d_ff, self.rng)
            for _ in range(config.num_layers)
        ]

        # Final projection with Xavier initialization
        self.final_projection = Parameter(
            random_matrix(
                config.d_model, config.vocab_size,
                xavier_scale(config.d_model, config.vocab_size), self.rng,
            ),
            name="final_projection",
        )

        rename(self.named_parameters())

    def parameters(self) -> List[Parameter]:
        """Return all parameters."""
        return list(self.named_parameters().values())

    def named_parameters(self) -> Dict[str, Parameter]:
        """Return all parameters keyed by stable, unique dotted names."""
        named = {}
        named.update(prefixed("embedding", self.embedding.named_parameters()))
        for i, block in enumerate(self.blocks):
            named.update(prefixed(f"blocks.{i}", block.named_parameters()))
        named["final_projection"] = self.final_projection
        return named

    def num_parameters(self) -> int:
        return sum(p.size for p in self.parameters())

    def zero_grad(self) -> None:
        for param in self.parameters():
            param.zero_grad()

    def forward(self, tokens: Sequence[int]):
        """
        Forward pass.

        Args:
            tokens: Token IDs, 1 <= len(tokens) <= max_seq_len

        Returns:
            logits: (seq_len, vocab_size)
            cache: ModelCache for backward
        """
        tokens = as_index_array(tokens, self.vocab_size, "tokens")
        seq_len = tokens.shape[0]
        if seq_len == 0:
            raise DataError("Cannot run the model on an empty token sequence")
        if seq_len > self.max_seq_len:
            raise DataError(f"Sequence length {seq_len} exceeds max_seq_len {self.max_seq_len}")

        positions = np.arange(seq_len)
        x, embedding_cache = self.embedding.forward(tokens, positions)

        mask = create_look_ahead_mask(seq_len)
        block_caches = []
        for block in self.blocks:
            x, block_cache = block.forward(x, mask)
            block_caches.append(block_cache)

        logits = mm(x, self.final_projection.data)

        cache = ModelCache(
            tokens=tokens, positions=positions, embedding=embedding_cache,
            blocks=block_caches, hidden=x, logits=logits,
        )
        return logits, cache

    def backward(self, cache: ModelCache, grad_logits: np.ndarray) -> ModelGradients:
        """
        Complete backward pass through the model.

        Args:
            cache: Cache from the matching forward call
            grad_logits: Gradient from the loss, shape (seq_len, vocab_size)

        Returns:
            ModelGradients with this call's token-embedding gradient,
            final-projection gradient and the gradient at the embedding output
        """
        expected = cache.logits.shape
        if grad_logits.shape != expected:
            raise ShapeError(f"Model.backward: gradient shape {grad_logits.shape}, expected {expected}")

        grad_final = mm(cache.hidden.T, grad_logits)
        self.final_projection.accumulate(grad_final)
        grad = mm(grad_logits, self.final_projection.data.T)

        for block, block_cache in zip(reversed(self.blocks), reversed(cache.blocks)):
            grad = block.backward(block_cache, grad)

        embedding_grads = self.embedding.backward(cache.embedding, grad)

        return ModelGradients(
            token_embedding=embedding_grads["token_embedding"],
            final_projection=grad_final,
            embedding_output=grad,
        )

    # ------------------------------------------------------------------------
    # Prediction
    # ------------------------------------------------------------------------

    def next_token_logits(self, tokens: Sequence[int]) -> np.ndarray:
        logits, _ = self.forward(tokens)
        return logits[-1]

    def next_token_probabilities(self, tokens: Sequence[int]) -> np.ndarray:
        return softmax(self.next_token_logits(tokens)[np.newaxis, :])[0]

    def predict_next_token(self, tokens: Sequence[int]) -> int:
        """Greedy prediction; ties go to the lowest index."""
        return int(np.argmax(self.next_token_logits(tokens)))

    def predict_next_token_temperature(
        self,
        tokens: Sequence[int],
        temperature: float,
        rng: Optional[np.random.Generator] = None,
    ) -> int:
        """
        Sample the next token from softmax(logits / temperature).

        A temperature below GREEDY_TEMPERATURE falls back to arg-max. Sampling
        draws one uniform value and walks the cumulative distribution.
        """
        logits = self.next_token_logits(tokens)
        if temperature < GlobalConfig.GREEDY_TEMPERATURE:
            return int(np.argmax(logits))

        rng = rng if rng is not None else self.rng
        probs = softmax((logits / temperature)[np.newaxis, :])[0]

        draw = rng.random()
        cumulative = 0.0
        for index, p in enumerate(probs):
            cumulative += p
            if draw < cumulative:
                return index
        return len(probs) - 1
