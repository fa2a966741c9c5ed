"""
Run polarity inference on raw texts or a held-out labeled corpus using a
trained classifier.
"""
import argparse
from pathlib import Path
from typing import Iterable, List, Optional, Tuple, Union

from .config import PipelineConfig
from .corpus import CorpusLoader
from .data_setup import SequenceEncoder, Vocabulary
from .engine import Trainer
from .model_builder import SentimentClassifier
from .utils import load_artifacts, select_device

LABEL_NAMES = {0: "negative", 1: "positive"}


def predict_texts(
    model: SentimentClassifier,
    vocabulary: Vocabulary,
    texts: Iterable[str],
    max_len: int,
    batch_size: int = 64
) -> List[float]:
    """
    Returns the positive-class probability of every text
    """
    encoder = SequenceEncoder(vocabulary, max_len)
    features = encoder.encode_batch(list(texts))
    probs: List[float] = []
    for start in range(0, len(features), batch_size):
        batch = features[start:start + batch_size]
        probs.extend(model.predict(batch).cpu().tolist())
    return probs


def map_probability_to_label(prob: float, threshold: float = 0.5) -> str:
    """
    Maps a single probability to "negative" or "positive"
    """
    return LABEL_NAMES[int(prob >= threshold)]


def evaluate_corpus(
    model: SentimentClassifier,
    vocabulary: Vocabulary,
    corpus_dir: Union[str, Path],
    config: PipelineConfig,
    exclude: Iterable[str] = ("unsup",)
) -> Tuple[float, float]:
    """
    Returns (loss, accuracy) on a second labeled corpus, e.g. aclImdb/test.
    The corpus is encoded with the training vocabulary.
    """
    texts, labels = CorpusLoader(corpus_dir, exclude=exclude).texts_and_labels()
    encoder = SequenceEncoder(vocabulary, config.max_sequence_length)
    dataset = encoder.build_dataset(texts, labels)
    trainer = Trainer(model, progress=False)
    return trainer.evaluate(dataset, config.batch_size)


def main(argv: Optional[List[str]] = None) -> None:
    """
    Loads saved artifacts and classifies reviews typed at the prompt
    """
    parser = argparse.ArgumentParser(description=main.__doc__)
    parser.add_argument("artifacts", type=Path,
                        help="directory written by polarity-train")
    parser.add_argument("--test-dir", type=Path, default=None,
                        help="labeled corpus to report test accuracy on")
    args = parser.parse_args(argv)

    device = select_device(verbose=True)
    model, vocabulary, config = load_artifacts(args.artifacts, device)
    print("Model loaded")

    if args.test_dir is not None:
        loss, acc = evaluate_corpus(model, vocabulary, args.test_dir, config)
        print(f"Test loss: {loss:.4f}, test accuracy: {acc * 100:.2f}%")

    print("Type a review or 'quit' to exit:")
    while True:
        user_input = input("Enter a review: ").strip()
        if user_input.lower() in {"quit", "exit"}:
            print("Exiting interactive mode.")
            break
        prob = predict_texts(
            model, vocabulary, [user_input], config.max_sequence_length
        )[0]
        label = map_probability_to_label(prob)
        print(f"Predicted sentiment: {label} (P_positive={prob:.3f})\n")


if __name__ == "__main__":
    main()
