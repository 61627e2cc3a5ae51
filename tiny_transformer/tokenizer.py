# Change Log
# 2025-10-19: Character and byte-pair tokenizers
# - ID 0 is reserved for unknown symbols
# - BPE merges learned greedily from the corpus, applied in learned order
# - chunk_text for corpora longer than the model context

from collections import Counter
from typing import Dict, Iterable, List, Sequence, Tuple

from .config import TOKENIZER_MODES
from .errors import ConfigurationError, DataError

UNK_ID = 0

# ============================================================================
# Base Tokenizer
# ============================================================================

class Tokenizer:
    """Maps between text and token IDs in [0, vocab_size)."""
    def __init__(self, symbols: Sequence[str], unk_token: str = "<unk>"):
        self.unk_token = unk_token
        self.id_to_token: List[str] = [unk_token]
        self.token_to_id: Dict[str, int] = {}
        for symbol in symbols:
            if symbol not in self.token_to_id:
                self.token_to_id[symbol] = len(self.id_to_token)
                self.id_to_token.append(symbol)

    def get_vocab_size(self) -> int:
        return len(self.id_to_token)

    def _symbols(self, text: str) -> List[str]:
        raise NotImplementedError

    def text_to_tokens(self, text: str) -> List[int]:
        return [self.token_to_id.get(symbol, UNK_ID) for symbol in self._symbols(text)]

    def tokens_to_text(self, token_ids: Iterable[int]) -> str:
        pieces = []
        vocab_size = self.get_vocab_size()
        for token_id in token_ids:
            token_id = int(token_id)
            if not 0 <= token_id < vocab_size:
                raise DataError(f"Token ID {token_id} is outside [0, {vocab_size})")
            pieces.append(self.id_to_token[token_id])
        return "".join(pieces)

    def __len__(self) -> int:
        return self.get_vocab_size()

# ============================================================================
# Character Tokenizer
# ============================================================================

class CharTokenizer(Tokenizer):
    """One token per character."""
    @classmethod
    def from_corpus(cls, texts: Iterable[str], unk_token: str = "<unk>") -> "CharTokenizer":
        chars = sorted({ch for text in texts for ch in text})
        return cls(chars, unk_token)

    def _symbols(self, text: str) -> List[str]:
        return list(text)

# ============================================================================
# Byte-Pair Tokenizer
# ============================================================================

def _merge_pair(symbols: List[str], pair: Tuple[str, str]) -> List[str]:
    merged = []
    i = 0
    while i < len(symbols):
        if i + 1 < len(symbols) and (symbols[i], symbols[i + 1]) == pair:
            merged.append(symbols[i] + symbols[i + 1])
            i += 2
        else:
            merged.append(symbols[i])
            i += 1
    return merged


class BPETokenizer(Tokenizer):
    """
    Byte-pair-style tokenizer over characters.

    Training starts from the character vocabulary and repeatedly merges the
    most frequent adjacent pair (ties go to the pair seen first) until
    num_merges merges are learned or no pair occurs twice.
    """
    def __init__(self, symbols: Sequence[str], merges: Sequence[Tuple[str, str]], unk_token: str = "<unk>"):
        super().__init__(list(symbols) + [a + b for a, b in merges], unk_token)
        self.merges: List[Tuple[str, str]] = list(merges)

    @classmethod
    def train(cls, texts: Iterable[str], num_merges: int = 50, unk_token: str = "<unk>") -> "BPETokenizer":
        if num_merges < 0:
            raise ConfigurationError(f"num_merges must be non-negative, got {num_merges}")
        texts = list(texts)
        chars = sorted({ch for text in texts for ch in text})
        sequences = [list(text) for text in texts]

        merges: List[Tuple[str, str]] = []
        for _ in range(num_merges):
            pair_counts: Counter = Counter()
            for symbols in sequences:
                pair_counts.update(zip(symbols, symbols[1:]))
            if not pair_counts:
                break

            # Counter keeps first-seen order, so max() breaks ties by first occurrence
            best_pair, best_count = max(pair_counts.items(), key=lambda item: item[1])
            if best_count < 2:
                break

            merges.append(best_pair)
            sequences = [_merge_pair(symbols, best_pair) for symbols in sequences]

        return cls(chars, merges, unk_token)

    def _symbols(self, text: str) -> List[str]:
        symbols = list(text)
        for pair in self.merges:
            if len(symbols) < 2:
                break
            symbols = _merge_pair(symbols, pair)
        return symbols

# ============================================================================
# Helpers
# ============================================================================

def create_tokenizer(mode: str, texts: Iterable[str], num_merges: int = 50) -> Tokenizer:
    """Build the tokenizer selected by TransformerConfig.tokenizer_mode."""
    if mode == "char":
        return CharTokenizer.from_corpus(texts)
    if mode == "bpe":
        return BPETokenizer.train(texts, num_merges)
    raise ConfigurationError(f"tokenizer_mode must be one of {TOKENIZER_MODES}, got {mode!r}")


def chunk_text(text: str, chunk_size: int, overlap: int = 0) -> List[str]:
    """
    Split text into chunks of at most chunk_size characters. Consecutive
    chunks share `overlap` characters.
    """
    if chunk_size <= 0:
        raise ConfigurationError(f"chunk_size must be positive, got {chunk_size}")
    if not 0 <= overlap < chunk_size:
        raise ConfigurationError(f"overlap must lie in [0, {chunk_size}), got {overlap}")

    chunks = []
    stride = chunk_size - overlap
    for start in range(0, len(text), stride):
        chunks.append(text[start:start + chunk_size])
        if start + chunk_size >= len(text):
            break
    return chunks
