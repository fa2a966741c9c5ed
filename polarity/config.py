"""
Hyperparameters and options for the whole preprocessing + training pipeline
"""
import json
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any, Dict, Optional, Union

from .errors import (
    InsufficientDataError,
    InvalidConfigError,
    InvalidLengthError
)

MODEL_KINDS = ("embedding", "recurrent")
CELL_TYPES = ("rnn", "lstm", "gru")
OPTIMIZERS = ("adam", "rmsprop")


@dataclass
class PipelineConfig:
    """
    Every recognized option of the pipeline, validated on construction.

    Args:
        max_vocabulary_size: Cap on the vocabulary; index 0 is reserved so
            at most max_vocabulary_size - 1 words are kept.
        max_sequence_length: Width every encoded row is padded/truncated to.
        embedding_dim: Width of the per-token vectors.
        model_kind: "embedding" (flatten) or "recurrent".
        recurrent_units: Hidden width of the recurrent summarizer.
        cell: Recurrent cell type, one of "rnn", "lstm", "gru".
        dense_units: Optional hidden dense layer before the output unit.
        epochs: Number of passes over the training rows.
        batch_size: Rows per gradient step.
        validation_fraction: Share of rows held out for validation.
        learning_rate: Optimizer step size.
        optimizer: "adam" or "rmsprop".
        early_stopping_patience: Epochs without val_loss improvement
            before training stops; None disables early stopping.
        seed: Seed for the split, the weight init and batch shuffling.
        lower: Lowercase text before tokenizing.
        remove_punctuation: Drop punctuation instead of keeping it as tokens.
        max_train_samples: Optional cap on the number of training rows.
        pretrained_embeddings: Optional GloVe-style vectors file.
        freeze_embeddings: Keep the embedding table fixed during training.
        strict: Raise DivergenceError when a loss becomes non-finite.
        device: Torch device name; None picks the best available one.
    """
    max_vocabulary_size: int = 10000
    max_sequence_length: int = 100
    embedding_dim: int = 32
    model_kind: str = "embedding"
    recurrent_units: int = 32
    cell: str = "lstm"
    dense_units: Optional[int] = None
    epochs: int = 10
    batch_size: int = 32
    validation_fraction: float = 0.2
    learning_rate: float = 1e-3
    optimizer: str = "adam"
    early_stopping_patience: Optional[int] = None
    seed: int = 42
    lower: bool = True
    remove_punctuation: bool = True
    max_train_samples: Optional[int] = None
    pretrained_embeddings: Optional[str] = None
    freeze_embeddings: bool = False
    strict: bool = False
    device: Optional[str] = None

    def __post_init__(self) -> None:
        if self.max_sequence_length <= 0:
            raise InvalidLengthError(
                f"max_sequence_length must be positive, "
                f"got {self.max_sequence_length}"
            )
        if not 0.0 < self.validation_fraction < 1.0:
            raise InsufficientDataError(
                f"validation_fraction must be in (0, 1), "
                f"got {self.validation_fraction}"
            )
        if self.max_vocabulary_size < 2:
            raise InvalidConfigError(
                "max_vocabulary_size must leave room for index 0 and "
                "at least one word"
            )
        positives = {
            "embedding_dim": self.embedding_dim,
            "recurrent_units": self.recurrent_units,
            "batch_size": self.batch_size,
        }
        for name, value in positives.items():
            if value <= 0:
                raise InvalidConfigError(f"{name} must be positive, got {value}")
        if self.epochs < 0:
            raise InvalidConfigError(f"epochs must be >= 0, got {self.epochs}")
        if self.learning_rate < 0:
            raise InvalidConfigError("learning_rate must be >= 0")
        if self.model_kind not in MODEL_KINDS:
            raise InvalidConfigError(
                f"model_kind must be one of {MODEL_KINDS}, "
                f"got {self.model_kind!r}"
            )
        if self.cell not in CELL_TYPES:
            raise InvalidConfigError(
                f"cell must be one of {CELL_TYPES}, got {self.cell!r}"
            )
        if self.optimizer not in OPTIMIZERS:
            raise InvalidConfigError(
                f"optimizer must be one of {OPTIMIZERS}, "
                f"got {self.optimizer!r}"
            )
        if self.dense_units is not None and self.dense_units <= 0:
            raise InvalidConfigError("dense_units must be positive or None")
        if (self.early_stopping_patience is not None
                and self.early_stopping_patience <= 0):
            raise InvalidConfigError(
                "early_stopping_patience must be positive or None"
            )
        if self.max_train_samples is not None and self.max_train_samples <= 0:
            raise InvalidConfigError("max_train_samples must be positive or None")

    def to_dict(self) -> Dict[str, Any]:
        """
        Returns the configuration as a plain dictionary
        """
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PipelineConfig":
        """
        Builds a config from a dictionary, rejecting unknown keys
        """
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise InvalidConfigError(f"Unknown config options: {unknown}")
        return cls(**data)

    @classmethod
    def from_json(cls, path: Union[str, Path]) -> "PipelineConfig":
        """
        Reads a config previously written with save_json
        """
        with open(path, "r", encoding="utf-8") as f:
            return cls.from_dict(json.load(f))

    def save_json(self, path: Union[str, Path]) -> None:
        """
        Writes the config as JSON
        """
        with open(path, "w", encoding="utf-8") as f:
            json.dump(self.to_dict(), f, indent=2)
