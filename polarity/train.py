"""
Train a polarity classifier end-to-end: load the corpus, build the
vocabulary, encode, split, then fit and keep the best epoch
"""
import argparse
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Iterable, List, Optional, Union

import torch
from torch import nn, optim
from torch.utils.data import Subset

from .config import CELL_TYPES, MODEL_KINDS, OPTIMIZERS, PipelineConfig
from .corpus import CorpusLoader, documents_to_frame
from .data_setup import (
    DatasetSplit,
    EncodedDataset,
    SequenceEncoder,
    TextTokenizer,
    Vocabulary,
    shuffle_split
)
from .download_dataset import download_and_extract
from .engine import BestEpoch, CancelToken, Trainer, TrainingHistory
from .inference import evaluate_corpus
from .model_builder import (
    SentimentClassifier,
    build_classifier,
    load_pretrained_embeddings
)
from .utils import classifier_config, save_artifacts, select_device, set_seed


@dataclass
class PipelineResult:
    vocabulary: Vocabulary
    dataset: EncodedDataset
    split: DatasetSplit
    model: SentimentClassifier
    history: TrainingHistory
    best: Optional[BestEpoch]


def prepare_data(
    corpus_dir: Union[str, Path],
    config: PipelineConfig,
    exclude: Iterable[str] = (),
    verbose: bool = False
):
    """
    Loads and encodes the corpus, then splits it. Every preprocessing
    error surfaces here, before a model exists.
    Returns (vocabulary, dataset, split).
    """
    documents = CorpusLoader(corpus_dir, exclude=exclude).load()
    if verbose:
        counts = documents_to_frame(documents)["label"].value_counts().sort_index()
        print(f"[INFO] Loaded {len(documents)} documents "
              f"(per label: {counts.to_dict()})")
    texts = [doc.raw_text for doc in documents]
    labels = [doc.label for doc in documents]

    tokenizer = TextTokenizer(
        lower=config.lower,
        remove_punctuation=config.remove_punctuation
    )
    vocabulary = tokenizer.fit(texts, config.max_vocabulary_size)
    if verbose:
        print(f"[INFO] Found {vocabulary.total_unique_words} unique words, "
              f"kept {len(vocabulary)}")

    encoder = SequenceEncoder(vocabulary, config.max_sequence_length)
    dataset = encoder.build_dataset(texts, labels)
    split = shuffle_split(dataset, config.validation_fraction, config.seed)
    if config.max_train_samples is not None:
        kept = min(config.max_train_samples, len(split.train))
        split = DatasetSplit(Subset(split.train, range(kept)), split.validation)
    return vocabulary, dataset, split


def build_optimizer(model: nn.Module, config: PipelineConfig) -> optim.Optimizer:
    """
    Creates the optimizer named in the config over the trainable parameters
    """
    params = [p for p in model.parameters() if p.requires_grad]
    if config.optimizer == "rmsprop":
        return optim.RMSprop(params, lr=config.learning_rate)
    return optim.Adam(params, lr=config.learning_rate)


def build_model(
    config: PipelineConfig,
    vocabulary: Vocabulary,
    device: torch.device
) -> SentimentClassifier:
    """
    Instantiates the configured classifier, optionally seeding its
    embedding table from a pretrained vectors file
    """
    model = build_classifier(classifier_config(config))
    if config.pretrained_embeddings:
        weights = load_pretrained_embeddings(
            config.pretrained_embeddings,
            vocabulary,
            config.embedding_dim,
            num_embeddings=config.max_vocabulary_size
        )
        model.load_embedding_weights(weights, freeze=config.freeze_embeddings)
    return model.to(device)


def run_pipeline(
    corpus_dir: Union[str, Path],
    config: Optional[PipelineConfig] = None,
    exclude: Iterable[str] = (),
    progress: bool = True,
    cancel: Optional[CancelToken] = None,
    checkpoint_path: Optional[Union[str, Path]] = None
) -> PipelineResult:
    """
    Runs load -> vocabulary -> encode -> split -> train. After training the
    model holds the weights of its best epoch.
    """
    config = config or PipelineConfig()
    set_seed(config.seed)
    vocabulary, dataset, split = prepare_data(
        corpus_dir, config, exclude=exclude, verbose=progress
    )

    device = (torch.device(config.device) if config.device
              else select_device(verbose=progress))
    model = build_model(config, vocabulary, device)
    trainer = Trainer(
        model,
        build_optimizer(model, config),
        patience=config.early_stopping_patience,
        strict=config.strict,
        progress=progress,
        checkpoint_path=checkpoint_path
    )
    history = trainer.fit(
        split.train,
        epochs=config.epochs,
        batch_size=config.batch_size,
        validation=split.validation,
        seed=config.seed,
        cancel=cancel
    )
    best = history.best() if len(history) else None
    trainer.restore_best()
    return PipelineResult(vocabulary, dataset, split, model, history, best)


def _parse_args(argv: Optional[List[str]]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Train a review polarity classifier"
    )
    parser.add_argument("corpus_dir", type=Path, nargs="?", default=None,
                        help="directory with neg/ and pos/ subdirectories; "
                             "defaults to the downloaded aclImdb/train")
    parser.add_argument("--output-dir", type=Path, default=Path("models"))
    parser.add_argument("--config", type=Path, default=None,
                        help="JSON file with PipelineConfig options")
    parser.add_argument("--test-dir", type=Path, default=None)
    parser.add_argument("--exclude", nargs="*", default=["unsup"],
                        help="corpus subdirectories to ignore")
    parser.add_argument("--quiet", action="store_true")

    # every flag defaults to None so that only given values override
    parser.add_argument("--max-vocabulary-size", type=int)
    parser.add_argument("--max-sequence-length", type=int)
    parser.add_argument("--embedding-dim", type=int)
    parser.add_argument("--model-kind", choices=MODEL_KINDS)
    parser.add_argument("--recurrent-units", type=int)
    parser.add_argument("--cell", choices=CELL_TYPES)
    parser.add_argument("--dense-units", type=int)
    parser.add_argument("--epochs", type=int)
    parser.add_argument("--batch-size", type=int)
    parser.add_argument("--validation-fraction", type=float)
    parser.add_argument("--learning-rate", type=float)
    parser.add_argument("--optimizer", choices=OPTIMIZERS)
    parser.add_argument("--early-stopping-patience", type=int)
    parser.add_argument("--seed", type=int)
    parser.add_argument("--keep-punctuation", dest="remove_punctuation",
                        action="store_const", const=False)
    parser.add_argument("--max-train-samples", type=int)
    parser.add_argument("--pretrained-embeddings", type=str)
    parser.add_argument("--freeze-embeddings", action="store_const", const=True)
    parser.add_argument("--strict", action="store_const", const=True)
    parser.add_argument("--device", type=str)
    return parser.parse_args(argv)


def config_from_args(args: argparse.Namespace) -> PipelineConfig:
    """
    Starts from --config (or the defaults) and applies the given flags
    """
    base = (PipelineConfig.from_json(args.config).to_dict()
            if args.config is not None else {})
    for f in fields(PipelineConfig):
        value = getattr(args, f.name, None)
        if value is not None:
            base[f.name] = value
    return PipelineConfig.from_dict(base)


def main(argv: Optional[List[str]] = None) -> None:
    """
    End-to-end training from the command line
    """
    args = _parse_args(argv)
    config = config_from_args(args)
    corpus_dir = args.corpus_dir or download_and_extract() / "train"

    result = run_pipeline(
        corpus_dir,
        config,
        exclude=args.exclude,
        progress=not args.quiet,
        checkpoint_path=args.output_dir / "best_checkpoint.pth"
    )
    if result.best is None:
        print("No epoch completed, nothing to save")
        return
    print(
        f"Best epoch: {result.best.epoch + 1} "
        f"(val_loss={result.best.val_loss:.4f}, "
        f"val_acc={result.best.val_acc:.4f})"
    )
    save_artifacts(
        args.output_dir, result.model, result.vocabulary, config, result.history
    )

    if args.test_dir is not None:
        loss, acc = evaluate_corpus(
            result.model, result.vocabulary, args.test_dir, config,
            exclude=args.exclude
        )
        print(f"Test loss: {loss:.4f}, test accuracy: {acc * 100:.2f}%")


if __name__ == "__main__":
    main()
