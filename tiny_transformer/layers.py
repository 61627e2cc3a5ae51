# Change Log
# 2025-10-19: Decoder-only layers with explicit forward caches
# - forward() returns (output, cache); backward(cache, grad) consumes it
# - Embedding with sinusoidal or learned positions, scatter-add backward
# - LayerNorm backward through mean and variance
# - Causal multi-head attention with softmax-Jacobian backward
# - Post-norm transformer block

import math
import numpy as np
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

from .config import GlobalConfig, POSITIONAL_SCHEMES
from .errors import ConfigurationError, DataError, ShapeError
from .matrix import column_sum, mm, random_matrix, relu, relu_backward, softmax, xavier_scale
from .tensor import Parameter, prefixed


def _default_rng(rng: Optional[np.random.Generator]) -> np.random.Generator:
    return rng if rng is not None else np.random.default_rng()


def _check_rows(x: np.ndarray, width: int, layer: str) -> None:
    if x.ndim != 2 or x.shape[1] != width:
        raise ShapeError(f"{layer}: expected input of shape (seq_len, {width}), got {x.shape}")


def as_index_array(values: Sequence[int], upper: int, what: str) -> np.ndarray:
    """Validate a 1-D sequence of integer indices in [0, upper)."""
    arr = np.asarray(values)
    if arr.ndim != 1:
        raise DataError(f"{what} must be a 1-D sequence, got shape {arr.shape}")
    if arr.size and not np.issubdtype(arr.dtype, np.integer):
        raise DataError(f"{what} must be integers, got dtype {arr.dtype}")
    arr = arr.astype(np.int64)
    bad = np.nonzero((arr < 0) | (arr >= upper))[0]
    if bad.size:
        i = int(bad[0])
        raise DataError(f"{what}[{i}] = {int(arr[i])} is outside [0, {upper})")
    return arr

# ============================================================================
# Forward Caches
# ============================================================================

@dataclass
class EmbeddingCache:
    tokens: np.ndarray
    positions: np.ndarray


@dataclass
class LayerNormCache:
    x: np.ndarray
    x_hat: np.ndarray
    mean: np.ndarray
    rstd: np.ndarray


@dataclass
class AttentionCache:
    x: np.ndarray
    q: np.ndarray
    k: np.ndarray
    v: np.ndarray
    # Per-head tensors of shape (num_heads, seq_len, ...)
    q_heads: np.ndarray
    k_heads: np.ndarray
    v_heads: np.ndarray
    scores: np.ndarray
    attn: np.ndarray
    merged: np.ndarray
    blocked: Optional[np.ndarray]


@dataclass
class FeedForwardCache:
    x: np.ndarray
    pre_activation: np.ndarray
    hidden: np.ndarray


@dataclass
class BlockCache:
    attention: AttentionCache
    norm1: LayerNormCache
    ffn: FeedForwardCache
    norm2: LayerNormCache

# ============================================================================
# Embedding
# ============================================================================

def sinusoidal_encoding(max_seq_len: int, d_model: int) -> np.ndarray:
    """
    Fixed positional table. Row p encodes the (p + 1)-th token: feature i has
    angle (p + 1) / 10000^(i / d_model), sin on even features and cos on odd ones.
    """
    position = np.arange(1, max_seq_len + 1, dtype=GlobalConfig.DTYPE)[:, np.newaxis]
    feature = np.arange(d_model, dtype=GlobalConfig.DTYPE)[np.newaxis, :]
    angle = position / np.power(10000.0, feature / d_model)
    return np.where(feature.astype(np.int64) % 2 == 0, np.sin(angle), np.cos(angle))


class Embedding:
    """Token lookup table plus one positional scheme."""
    def __init__(
        self,
        vocab_size: int,
        d_model: int,
        max_seq_len: int,
        positional: str = "sinusoidal",
        rng: Optional[np.random.Generator] = None,
    ):
        if positional not in POSITIONAL_SCHEMES:
            raise ConfigurationError(
                f"positional must be one of {POSITIONAL_SCHEMES}, got {positional!r}"
            )
        rng = _default_rng(rng)

        self.vocab_size = vocab_size
        self.d_model = d_model
        self.max_seq_len = max_seq_len
        self.positional = positional

        self.token_embedding = Parameter(
            random_matrix(vocab_size, d_model, xavier_scale(vocab_size, d_model), rng),
            name="token_embedding",
        )
        self.position_embedding: Optional[Parameter] = None
        self.pe: Optional[np.ndarray] = None
        if positional == "learned":
            self.position_embedding = Parameter(
                random_matrix(max_seq_len, d_model, xavier_scale(max_seq_len, d_model), rng),
                name="position_embedding",
            )
        else:
            self.pe = sinusoidal_encoding(max_seq_len, d_model)

    def parameters(self) -> List[Parameter]:
        return list(self.named_parameters().values())

    def named_parameters(self) -> Dict[str, Parameter]:
        named = {"token_embedding": self.token_embedding}
        if self.position_embedding is not None:
            named["position_embedding"] = self.position_embedding
        return named

    def positional_table(self) -> np.ndarray:
        if self.position_embedding is not None:
            return self.position_embedding.data
        return self.pe

    def forward(self, tokens: Sequence[int], positions: Sequence[int]):
        """
        Args:
            tokens: Token IDs of length seq_len
            positions: Position indices of the same length

        Returns:
            output: (seq_len, d_model) sum of token and positional rows
            cache: EmbeddingCache for backward
        """
        tokens = as_index_array(tokens, self.vocab_size, "tokens")
        positions = as_index_array(positions, self.max_seq_len, "positions")
        if tokens.shape != positions.shape:
            raise ShapeError(
                f"Embedding: {tokens.shape[0]} tokens but {positions.shape[0]} positions"
            )
        if tokens.size == 0:
            raise DataError("Embedding: empty token sequence")

        output = self.token_embedding.data[tokens] + self.positional_table()[positions]
        return output, EmbeddingCache(tokens=tokens, positions=positions)

    def backward(self, cache: EmbeddingCache, grad: np.ndarray) -> Dict[str, np.ndarray]:
        """
        Scatter-add the output gradient into the rows that were looked up.
        Repeated token IDs accumulate.

        Returns:
            Gradients from this call keyed by parameter name
        """
        expected = (cache.tokens.shape[0], self.d_model)
        if grad.shape != expected:
            raise ShapeError(f"Embedding.backward: gradient shape {grad.shape}, expected {expected}")

        grads = {}
        grad_tokens = np.zeros_like(self.token_embedding.data)
        np.add.at(grad_tokens, cache.tokens, grad)
        self.token_embedding.accumulate(grad_tokens)
        grads["token_embedding"] = grad_tokens

        if self.position_embedding is not None:
            grad_positions = np.zeros_like(self.position_embedding.data)
            np.add.at(grad_positions, cache.positions, grad)
            self.position_embedding.accumulate(grad_positions)
            grads["position_embedding"] = grad_positions

        return grads

# ============================================================================
# Layer Normalization
# ============================================================================

class LayerNormalization:
    """
    Layer Normalization with full backward pass.
    Normalizes each token row across the feature dimension.
    """
    def __init__(self, d_model: int, epsilon: float = GlobalConfig.LAYER_NORM_EPS):
        if d_model <= 0:
            raise ConfigurationError(f"d_model must be positive, got {d_model}")
        self.epsilon = epsilon
        self.d_model = d_model

        # Learnable parameters
        self.gamma = Parameter(np.ones(d_model), name="gamma")
        self.beta = Parameter(np.zeros(d_model), name="beta")

    def parameters(self) -> List[Parameter]:
        return [self.gamma, self.beta]

    def named_parameters(self) -> Dict[str, Parameter]:
        return {"gamma": self.gamma, "beta": self.beta}

    def forward(self, x: np.ndarray):
        """
        Args:
            x: Input of shape (seq_len, d_model)

        Returns:
            output: Normalized, scaled and shifted input
            cache: LayerNormCache for backward
        """
        _check_rows(x, self.d_model, "LayerNormalization")

        mean = np.mean(x, axis=-1, keepdims=True)
        variance = np.var(x, axis=-1, keepdims=True)
        rstd = 1.0 / np.sqrt(variance + self.epsilon)
        x_hat = (x - mean) * rstd

        output = x_hat * self.gamma.data + self.beta.data
        return output, LayerNormCache(x=x, x_hat=x_hat, mean=mean, rstd=rstd)

    def backward(self, cache: LayerNormCache, grad: np.ndarray) -> np.ndarray:
        """
        Backward pass through the affine transform and the row statistics.

        Args:
            cache: Cache from the matching forward call
            grad: Gradient w.r.t. the output

        Returns:
            Gradient w.r.t. the input
        """
        if grad.shape != cache.x.shape:
            raise ShapeError(
                f"LayerNormalization.backward: gradient shape {grad.shape}, expected {cache.x.shape}"
            )
        x_hat = cache.x_hat

        self.gamma.accumulate(np.sum(grad * x_hat, axis=0))
        self.beta.accumulate(np.sum(grad, axis=0))

        # mean and variance both depend on every feature in the row
        n = self.d_model
        grad_x_hat = grad * self.gamma.data
        sum_grad = np.sum(grad_x_hat, axis=-1, keepdims=True)
        sum_grad_x_hat = np.sum(grad_x_hat * x_hat, axis=-1, keepdims=True)

        return cache.rstd / n * (n * grad_x_hat - sum_grad - x_hat * sum_grad_x_hat)

# ============================================================================
# Multi-Head Attention
# ============================================================================

class MultiHeadAttention:
    """
    Multi-Head self-attention with complete backward pass.
    Heads are contiguous feature slices of width d_model / num_heads.
    """
    def __init__(self, d_model: int, num_heads: int, rng: Optional[np.random.Generator] = None):
        if num_heads <= 0 or d_model <= 0:
            raise ConfigurationError(
                f"d_model and num_heads must be positive, got {d_model} and {num_heads}"
            )
        if d_model % num_heads != 0:
            raise ConfigurationError(
                f"d_model ({d_model}) must be divisible by num_heads ({num_heads})"
            )
        rng = _default_rng(rng)

        self.d_model = d_model
        self.num_heads = num_heads
        self.head_dim = d_model // num_heads
        self.scale = 1.0 / math.sqrt(self.head_dim)

        init_scale = xavier_scale(d_model, d_model)
        self.wq = Parameter(random_matrix(d_model, d_model, init_scale, rng), name="wq")
        self.wk = Parameter(random_matrix(d_model, d_model, init_scale, rng), name="wk")
        self.wv = Parameter(random_matrix(d_model, d_model, init_scale, rng), name="wv")
        self.wo = Parameter(random_matrix(d_model, d_model, init_scale, rng), name="wo")

    def parameters(self) -> List[Parameter]:
        return [self.wq, self.wk, self.wv, self.wo]

    def named_parameters(self) -> Dict[str, Parameter]:
        return {"wq": self.wq, "wk": self.wk, "wv": self.wv, "wo": self.wo}

    def _split_heads(self, x: np.ndarray) -> np.ndarray:
        # (seq_len, d_model) -> (num_heads, seq_len, head_dim)
        return x.reshape(x.shape[0], self.num_heads, self.head_dim).transpose(1, 0, 2)

    def _merge_heads(self, x: np.ndarray) -> np.ndarray:
        # (num_heads, seq_len, head_dim) -> (seq_len, d_model)
        return x.transpose(1, 0, 2).reshape(x.shape[1], self.d_model)

    def forward(self, x: np.ndarray, mask: Optional[np.ndarray] = None):
        """
        Forward pass.

        Args:
            x: Input of shape (seq_len, d_model)
            mask: Additive mask of shape (seq_len, seq_len); entries at or below
                  MASK_VALUE / 2 are blocked and receive exactly zero weight

        Returns:
            output: Attention output of shape (seq_len, d_model)
            cache: AttentionCache for backward
        """
        _check_rows(x, self.d_model, "MultiHeadAttention")
        seq_len = x.shape[0]

        blocked = None
        if mask is not None:
            mask = np.asarray(mask, dtype=GlobalConfig.DTYPE)
            if mask.shape != (seq_len, seq_len):
                raise ShapeError(
                    f"MultiHeadAttention: mask shape {mask.shape}, expected {(seq_len, seq_len)}"
                )
            blocked = mask <= GlobalConfig.MASK_VALUE / 2

        # Linear projections and split into heads
        q = mm(x, self.wq.data)
        k = mm(x, self.wk.data)
        v = mm(x, self.wv.data)
        q_heads = self._split_heads(q)
        k_heads = self._split_heads(k)
        v_heads = self._split_heads(v)

        # Scaled dot-product attention
        scores = np.matmul(q_heads, k_heads.transpose(0, 2, 1)) * self.scale
        if mask is not None:
            scores = scores + mask

        attn = softmax(scores)
        if blocked is not None:
            attn = np.where(blocked, 0.0, attn)

        # Concatenate heads in head order, then project
        merged = self._merge_heads(np.matmul(attn, v_heads))
        output = mm(merged, self.wo.data)

        cache = AttentionCache(
            x=x, q=q, k=k, v=v,
            q_heads=q_heads, k_heads=k_heads, v_heads=v_heads,
            scores=scores, attn=attn, merged=merged, blocked=blocked,
        )
        return output, cache

    def backward(self, cache: AttentionCache, grad: np.ndarray) -> np.ndarray:
        """
        Backward pass.

        Args:
            cache: Cache from the matching forward call
            grad: Gradient w.r.t. the output, shape (seq_len, d_model)

        Returns:
            Gradient w.r.t. the input x (sum of the Q, K and V paths)
        """
        if grad.shape != cache.x.shape:
            raise ShapeError(
                f"MultiHeadAttention.backward: gradient shape {grad.shape}, expected {cache.x.shape}"
            )

        # Output projection
        self.wo.accumulate(mm(cache.merged.T, grad))
        grad_merged = mm(grad, self.wo.data.T)
        grad_heads = self._split_heads(grad_merged)

        # Through attn @ V
        attn = cache.attn
        grad_v_heads = np.matmul(attn.transpose(0, 2, 1), grad_heads)
        grad_attn = np.matmul(grad_heads, cache.v_heads.transpose(0, 2, 1))

        # Softmax backward, reusing the forward softmax
        grad_scores = attn * (grad_attn - np.sum(attn * grad_attn, axis=-1, keepdims=True))
        if cache.blocked is not None:
            grad_scores = np.where(cache.blocked, 0.0, grad_scores)
        grad_scores = grad_scores * self.scale

        grad_q_heads = np.matmul(grad_scores, cache.k_heads)
        grad_k_heads = np.matmul(grad_scores.transpose(0, 2, 1), cache.q_heads)

        grad_q = self._merge_heads(grad_q_heads)
        grad_k = self._merge_heads(grad_k_heads)
        grad_v = self._merge_heads(grad_v_heads)

        # Projection weights
        x_t = cache.x.T
        self.wq.accumulate(mm(x_t, grad_q))
        self.wk.accumulate(mm(x_t, grad_k))
        self.wv.accumulate(mm(x_t, grad_v))

        return (
            mm(grad_q, self.wq.data.T)
            + mm(grad_k, self.wk.data.T)
            + mm(grad_v, self.wv.data.T)
        )

    @staticmethod
    def attention_weights(cache: AttentionCache) -> np.ndarray:
        """Per-head attention weights, shape (num_heads, seq_len, seq_len)."""
        return cache.attn

# ============================================================================
# Feed-Forward Network
# ============================================================================

class FeedForwardNetwork:
    """Position-wise Feed-Forward Network with full backward pass."""
    def __init__(self, d_model: int, d_ff: int, rng: Optional[np.random.Generator] = None):
        if d_model <= 0 or d_ff <= 0:
            raise ConfigurationError(f"d_model and d_ff must be positive, got {d_model} and {d_ff}")
        rng = _default_rng(rng)
        self.d_model = d_model
        self.d_ff = d_ff

        self.w1 = Parameter(random_matrix(d_model, d_ff, xavier_scale(d_model, d_ff), rng), name="w1")
        self.b1 = Parameter(np.zeros(d_ff), name="b1")
        self.w2 = Parameter(random_matrix(d_ff, d_model, xavier_scale(d_ff, d_model), rng), name="w2")
        self.b2 = Parameter(np.zeros(d_model), name="b2")

    def parameters(self) -> List[Parameter]:
        return [self.w1, self.b1, self.w2, self.b2]

    def named_parameters(self) -> Dict[str, Parameter]:
        return {"w1": self.w1, "b1": self.b1, "w2": self.w2, "b2": self.b2}

    def forward(self, x: np.ndarray):
        _check_rows(x, self.d_model, "FeedForwardNetwork")

        pre_activation = mm(x, self.w1.data) + self.b1.data
        hidden = relu(pre_activation)
        output = mm(hidden, self.w2.data) + self.b2.data

        return output, FeedForwardCache(x=x, pre_activation=pre_activation, hidden=hidden)

    def backward(self, cache: FeedForwardCache, grad: np.ndarray) -> np.ndarray:
        if grad.shape != cache.x.shape:
            raise ShapeError(
                f"FeedForwardNetwork.backward: gradient shape {grad.shape}, expected {cache.x.shape}"
            )
        # Second linear layer
        self.w2.accumulate(mm(cache.hidden.T, grad))
        self.b2.accumulate(column_sum(grad))

        # ReLU backward
        grad_hidden = relu_backward(mm(grad, self.w2.data.T), cache.pre_activation)

        # First linear layer
        self.w1.accumulate(mm(cache.x.T, grad_hidden))
        self.b1.accumulate(column_sum(grad_hidden))

        return mm(grad_hidden, self.w1.data.T)

# ============================================================================
# Transformer Block
# ============================================================================

class TransformerBlock:
    """
    Post-norm block:
        x2 = LayerNorm1(x + Attention(x))
        x3 = LayerNorm2(x2 + FFN(x2))
    """
    def __init__(
        self,
        d_model: int,
        num_heads: int,
        d_ff: int,
        rng: Optional[np.random.Generator] = None,
        epsilon: float = GlobalConfig.LAYER_NORM_EPS,
    ):
        rng = _default_rng(rng)
        self.mha = MultiHeadAttention(d_model, num_heads, rng)
        self.ffn = FeedForwardNetwork(d_model, d_ff, rng)
        self.layernorm1 = LayerNormalization(d_model, epsilon)
        self.layernorm2 = LayerNormalization(d_model, epsilon)

    def parameters(self) -> List[Parameter]:
        return list(self.named_parameters().values())

    def named_parameters(self) -> Dict[str, Parameter]:
        named = {}
        named.update(prefixed("attention", self.mha.named_parameters()))
        named.update(prefixed("ffn", self.ffn.named_parameters()))
        named.update(prefixed("norm1", self.layernorm1.named_parameters()))
        named.update(prefixed("norm2", self.layernorm2.named_parameters()))
        return named

    def forward(self, x: np.ndarray, mask: Optional[np.ndarray] = None):
        """Forward pass with post-normalization."""
        attn_output, attn_cache = self.mha.forward(x, mask)
        x2, norm1_cache = self.layernorm1.forward(x + attn_output)

        ffn_output, ffn_cache = self.ffn.forward(x2)
        x3, norm2_cache = self.layernorm2.forward(x2 + ffn_output)

        return x3, BlockCache(attention=attn_cache, norm1=norm1_cache, ffn=ffn_cache, norm2=norm2_cache)

    def backward(self, cache: BlockCache, grad: np.ndarray) -> np.ndarray:
        """Backward pass through the block, residual paths included."""
        # Feed-forward sub-layer: the sum's gradient feeds both the FFN and the residual
        grad_sum2 = self.layernorm2.backward(cache.norm2, grad)
        grad_x2 = grad_sum2 + self.ffn.backward(cache.ffn, grad_sum2)

        # Attention sub-layer
        grad_sum1 = self.layernorm1.backward(cache.norm1, grad_x2)
        return grad_sum1 + self.mha.backward(cache.attention, grad_sum1)
