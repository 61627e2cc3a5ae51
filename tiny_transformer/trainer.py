# Change Log
# 2025-10-19: Single-sequence training loop and text generation
# - One forward / backward / optimizer step per sequence
# - Sequences longer than the context are windowed
# - Greedy prediction, next-token distribution and temperature sampling on text

import numpy as np
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from .config import TrainingConfig, TransformerConfig
from .errors import ConfigurationError, DataError
from .loss import CrossEntropyLoss
from .model import TransformerModel
from .optimizer import AdamW, WarmupCosineScheduler
from .tensor import check_gradients, clip_grad_norm
from .tokenizer import Tokenizer, create_tokenizer

# ============================================================================
# Trainer
# ============================================================================

class Trainer:
    """Trainer with complete backpropagation, one sequence at a time."""
    def __init__(
        self,
        model: TransformerModel,
        tokenizer: Tokenizer,
        config: Optional[TrainingConfig] = None,
        optimizer: Optional[AdamW] = None,
        rng: Optional[np.random.Generator] = None,
        verbose: bool = True,
    ):
        if tokenizer.get_vocab_size() != model.vocab_size:
            raise ConfigurationError(
                f"Tokenizer vocabulary ({tokenizer.get_vocab_size()}) does not match "
                f"model vocab_size ({model.vocab_size})"
            )
        self.model = model
        self.tokenizer = tokenizer
        self.config = (config or TrainingConfig()).validate()
        self.optimizer = optimizer or AdamW(
            lr=self.config.learning_rate,
            betas=self.config.betas,
            eps=self.config.eps,
            weight_decay=self.config.weight_decay,
        )
        self.base_lr = self.optimizer.lr
        self.scheduler: Optional[WarmupCosineScheduler] = None
        self.loss_fn = CrossEntropyLoss()
        self.rng = rng if rng is not None else model.rng
        self.verbose = verbose

        self.loss_history: List[float] = []

    @classmethod
    def from_corpus(
        cls,
        corpus: Sequence[str],
        model_config: TransformerConfig,
        training_config: Optional[TrainingConfig] = None,
        num_merges: int = 50,
        verbose: bool = True,
    ) -> "Trainer":
        """Build tokenizer and model from a corpus; vocab_size comes from the tokenizer."""
        tokenizer = create_tokenizer(model_config.tokenizer_mode, corpus, num_merges)
        vocab_size = tokenizer.get_vocab_size()
        if vocab_size <= 1:
            raise ConfigurationError("Corpus produced an empty vocabulary")

        model = TransformerModel(model_config.with_vocab_size(vocab_size))
        return cls(model, tokenizer, training_config, verbose=verbose)

    # ------------------------------------------------------------------------
    # Data
    # ------------------------------------------------------------------------

    def prepare_sequences(self, text: str) -> List[Tuple[List[int], List[int]]]:
        """
        Tokenize text into (inputs, targets) pairs shifted by one token.
        Texts longer than max_seq_len + 1 tokens are split into windows that
        overlap by one token so every transition is trained on.
        """
        tokens = self.tokenizer.text_to_tokens(text)
        if len(tokens) < 2:
            raise DataError(
                f"Training sequence {text!r} has {len(tokens)} token(s); at least two are required"
            )

        max_len = self.model.max_seq_len
        pairs = []
        for start in range(0, len(tokens) - 1, max_len):
            window = tokens[start:start + max_len + 1]
            pairs.append((window[:-1], window[1:]))
        return pairs

    def _prepare_corpus(self, corpus: Iterable[str]) -> List[Tuple[List[int], List[int]]]:
        if isinstance(corpus, str):
            corpus = [corpus]
        sequences = [pair for text in corpus for pair in self.prepare_sequences(text)]
        if not sequences:
            raise DataError("Corpus is empty")
        return sequences

    # ------------------------------------------------------------------------
    # Training
    # ------------------------------------------------------------------------

    def train_step(self, inputs: Sequence[int], targets: Sequence[int]) -> Dict[str, float]:
        """Single training step with full backpropagation."""
        self.model.zero_grad()

        # Forward pass
        logits, cache = self.model.forward(inputs)

        # Loss and gradient on the logits
        loss = self.loss_fn.compute(logits, targets)
        grad_logits = self.loss_fn.backward(logits, targets)

        # Backward pass
        self.model.backward(cache, grad_logits)

        grad_norm = 0.0
        if self.config.max_grad_norm is not None:
            grad_norm = clip_grad_norm(self.model.parameters(), self.config.max_grad_norm)

        self.optimizer.update(self.model.named_parameters())

        lr = self.optimizer.lr
        if self.scheduler is not None:
            lr = self.scheduler.step()

        return {"loss": loss, "grad_norm": grad_norm, "lr": lr}

    def train(self, corpus: Iterable[str], epochs: Optional[int] = None) -> List[float]:
        """
        Complete training loop.

        Args:
            corpus: Training texts, each processed as its own sequence
            epochs: Overrides config.epochs

        Returns:
            Summed loss of every epoch run by this call
        """
        sequences = self._prepare_corpus(corpus)
        if epochs is None:
            epochs = self.config.epochs
        if epochs <= 0:
            raise ConfigurationError(f"epochs must be positive, got {epochs}")

        # Each call runs its own warmup and decay from the base learning rate
        if self.config.warmup_steps > 0:
            self.optimizer.lr = self.base_lr
            self.scheduler = WarmupCosineScheduler(
                self.optimizer,
                warmup_steps=self.config.warmup_steps,
                total_steps=epochs * len(sequences),
                min_lr=self.config.min_lr,
            )

        if self.verbose:
            print("=" * 80)
            print(f"Training on {len(sequences)} sequences | "
                  f"{self.model.num_parameters():,} parameters | {epochs} epochs")
            print("=" * 80)

        history = []
        for epoch in range(epochs):
            order = self.rng.permutation(len(sequences)) if self.config.shuffle else range(len(sequences))

            epoch_loss = 0.0
            metrics: Dict[str, float] = {}
            for i in order:
                inputs, targets = sequences[i]
                metrics = self.train_step(inputs, targets)
                epoch_loss += metrics["loss"]

            if epoch == 0 and self.verbose:
                check_gradients(self.model.parameters(), verbose=True)

            history.append(epoch_loss)
            self.loss_history.append(epoch_loss)

            if self.verbose and (epoch == 0 or (epoch + 1) % self.config.print_every == 0):
                print(f"Epoch {epoch+1}/{epochs} | Loss: {epoch_loss:.4f} | "
                      f"Avg: {epoch_loss / len(sequences):.4f} | LR: {metrics['lr']:.6f}")

        return history

    def evaluate(self, corpus: Iterable[str]) -> float:
        """Summed loss over a corpus without updating parameters."""
        total = 0.0
        for inputs, targets in self._prepare_corpus(corpus):
            logits, _ = self.model.forward(inputs)
            total += self.loss_fn.compute(logits, targets)
        return total

    # ------------------------------------------------------------------------
    # Generation
    # ------------------------------------------------------------------------

    def _context(self, text: str) -> List[int]:
        tokens = self.tokenizer.text_to_tokens(text)
        if not tokens:
            raise DataError("Prompt produced no tokens")
        return tokens[-self.model.max_seq_len:]

    def predict(self, text: str) -> str:
        """Most likely next token, rendered as text."""
        token_id = self.model.predict_next_token(self._context(text))
        return self.tokenizer.tokens_to_text([token_id])

    def next_token_distribution(self, text: str) -> Dict[str, float]:
        """Probability of every vocabulary entry following text."""
        probs = self.model.next_token_probabilities(self._context(text))
        return {
            self.tokenizer.id_to_token[token_id]: float(p) for token_id, p in enumerate(probs)
        }

    def generate(
        self,
        prompt: str,
        max_new_tokens: int = 20,
        temperature: float = 1.0,
        rng: Optional[np.random.Generator] = None,
    ) -> str:
        """
        Extend prompt by sampling one token at a time.

        Returns:
            The prompt followed by the generated text
        """
        rng = rng if rng is not None else self.rng
        tokens = list(self.tokenizer.text_to_tokens(prompt))
        if not tokens:
            raise DataError("Prompt produced no tokens")

        generated = []
        for _ in range(max_new_tokens):
            context = tokens[-self.model.max_seq_len:]
            next_id = self.model.predict_next_token_temperature(context, temperature, rng)
            tokens.append(next_id)
            generated.append(next_id)

        return prompt + self.tokenizer.tokens_to_text(generated)
