import argparse
import numpy as np
import os

from .config import POSITIONAL_SCHEMES, TOKENIZER_MODES, TrainingConfig, TransformerConfig
from .tokenizer import chunk_text
from .trainer import Trainer

# ============================================================================
# Command Line
# ============================================================================

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Train a tiny transformer language model and sample from it.")
    parser.add_argument('--corpus', type=str, default=None, help='Path to a training text file.')
    parser.add_argument('--text', type=str, action='append', default=None,
                        help='Inline training text (repeatable). Used when --corpus is not given.')
    parser.add_argument('--chunk-size', type=int, default=None,
                        help='Split the corpus into chunks of this many characters.')
    parser.add_argument('--d-model', type=int, default=32)
    parser.add_argument('--num-heads', type=int, default=4)
    parser.add_argument('--d-ff', type=int, default=64)
    parser.add_argument('--num-layers', type=int, default=2)
    parser.add_argument('--max-seq-len', type=int, default=64)
    parser.add_argument('--positional', choices=POSITIONAL_SCHEMES, default='sinusoidal')
    parser.add_argument('--tokenizer', choices=TOKENIZER_MODES, default='char')
    parser.add_argument('--num-merges', type=int, default=50, help='BPE merges to learn.')
    parser.add_argument('--epochs', type=int, default=50)
    parser.add_argument('--lr', type=float, default=0.01)
    parser.add_argument('--max-grad-norm', type=float, default=None)
    parser.add_argument('--warmup-steps', type=int, default=0)
    parser.add_argument('--print-every', type=int, default=10)
    parser.add_argument('--seed', type=int, default=0)
    parser.add_argument('--prompt', type=str, default=None)
    parser.add_argument('--max-new-tokens', type=int, default=40)
    parser.add_argument('--temperature', type=float, default=0.8)
    parser.add_argument('--plot', action='store_true', help='Plot the loss history with matplotlib.')
    return parser


def load_corpus(args: argparse.Namespace) -> list:
    if args.corpus is not None:
        if not os.path.exists(args.corpus):
            raise FileNotFoundError(f"Corpus file '{args.corpus}' not found.")
        with open(args.corpus, encoding='utf-8') as f:
            text = f.read()
        if args.chunk_size:
            return chunk_text(text, args.chunk_size)
        return [line for line in text.splitlines() if len(line) >= 2]

    texts = args.text or ["hello world", "hello there", "world of words"]
    if args.chunk_size:
        return [chunk for text in texts for chunk in chunk_text(text, args.chunk_size)]
    return texts


def plot_loss_history(loss_history: list) -> None:
    import matplotlib.pyplot as plt

    plt.figure(figsize=(8, 5))
    plt.plot(np.arange(1, len(loss_history) + 1), loss_history, marker='o', markersize=3)
    plt.xlabel("Epoch")
    plt.ylabel("Summed cross-entropy")
    plt.title("Training Loss")
    plt.grid(True, alpha=0.3)
    plt.tight_layout()
    plt.show()


def main(argv=None) -> None:
    args = build_parser().parse_args(argv)
    corpus = load_corpus(args)

    model_config = TransformerConfig(
        d_model=args.d_model,
        num_heads=args.num_heads,
        d_ff=args.d_ff,
        num_layers=args.num_layers,
        max_seq_len=args.max_seq_len,
        positional=args.positional,
        tokenizer_mode=args.tokenizer,
        seed=args.seed,
    )
    training_config = TrainingConfig(
        learning_rate=args.lr,
        epochs=args.epochs,
        max_grad_norm=args.max_grad_norm,
        warmup_steps=args.warmup_steps,
        print_every=args.print_every,
    )

    trainer = Trainer.from_corpus(corpus, model_config, training_config, num_merges=args.num_merges)
    print(f"Vocabulary size: {trainer.tokenizer.get_vocab_size()}")
    trainer.train(corpus)

    prompt = args.prompt if args.prompt is not None else corpus[0][:2]
    rng = np.random.default_rng(args.seed)
    print(f"\nPrompt: {prompt!r}")
    print(f"Greedy next token: {trainer.predict(prompt)!r}")
    print(f"Sample: {trainer.generate(prompt, args.max_new_tokens, args.temperature, rng)!r}")

    if args.plot:
        plot_loss_history(trainer.loss_history)


if __name__ == "__main__":
    main()
