"""
Builds the neural network models for sentiment polarity
"""
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

import torch
from torch import nn

from .data_setup import PAD_INDEX, Vocabulary
from .errors import InvalidConfigError

_CELLS = {
    "rnn": nn.RNN,
    "lstm": nn.LSTM,
    "gru": nn.GRU,
}


@dataclass
class ClassifierConfig:
    """
    Hyperparameters shared by both classifier variants
    """
    vocabulary_size: int
    max_len: int
    embedding_dim: int = 32
    kind: str = "embedding"
    recurrent_units: int = 32
    cell: str = "lstm"
    dense_units: Optional[int] = None
    padding_idx: Optional[int] = PAD_INDEX


class SentimentClassifier(nn.Module):
    """
    Base class: embedding lookup -> summarize() -> output head.
    forward returns one logit per row; predict turns logits into
    probabilities of the positive class.
    """

    def __init__(self, config: ClassifierConfig, summary_dim: int) -> None:
        super().__init__()
        self.config = config
        self.embedding = nn.Embedding(
            num_embeddings=config.vocabulary_size,
            embedding_dim=config.embedding_dim,
            padding_idx=config.padding_idx
        )
        if config.dense_units:
            self.head = nn.Sequential(
                nn.Linear(summary_dim, config.dense_units),
                nn.ReLU(),
                nn.Linear(config.dense_units, 1)
            )
        else:
            self.head = nn.Linear(summary_dim, 1)

    def summarize(self, embedded: torch.Tensor) -> torch.Tensor:
        """
        Reduces (B, T, E) token vectors to a (B, D) representation
        """
        raise NotImplementedError

    def forward(self, input_ids: torch.Tensor) -> torch.Tensor:
        # input_ids: (B, T)
        embedded = self.embedding(input_ids)  # (B, T, E)
        summary = self.summarize(embedded)  # (B, D)
        return self.head(summary).squeeze(-1)  # (B,)

    def predict(self, input_ids: torch.Tensor) -> torch.Tensor:
        """
        Returns positive-class probabilities without tracking gradients
        """
        was_training = self.training
        self.eval()
        device = next(self.parameters()).device
        with torch.no_grad():
            probs = torch.sigmoid(self(input_ids.to(device)))
        self.train(was_training)
        return probs

    def load_embedding_weights(
        self,
        weights: torch.Tensor,
        freeze: bool = False
    ) -> None:
        """
        Copies a pretrained (vocabulary_size, embedding_dim) matrix in
        """
        if tuple(weights.shape) != tuple(self.embedding.weight.shape):
            raise InvalidConfigError(
                f"Embedding matrix of shape {tuple(weights.shape)} does not "
                f"match {tuple(self.embedding.weight.shape)}"
            )
        with torch.no_grad():
            self.embedding.weight.copy_(weights)
        self.embedding.weight.requires_grad = not freeze


class EmbeddingClassifier(SentimentClassifier):
    """
    Flattens the max_len token vectors into one max_len * embedding_dim
    wide vector before the dense head. Word order only matters through
    position in the flattened vector.
    """

    def __init__(self, config: ClassifierConfig) -> None:
        super().__init__(config, config.max_len * config.embedding_dim)

    def summarize(self, embedded: torch.Tensor) -> torch.Tensor:
        return embedded.flatten(start_dim=1)


class RecurrentClassifier(SentimentClassifier):
    """
    Runs a recurrent cell over the token vectors and uses the last
    hidden state as the summary, independent of max_len
    """

    def __init__(self, config: ClassifierConfig) -> None:
        super().__init__(config, config.recurrent_units)
        if config.cell not in _CELLS:
            raise InvalidConfigError(f"Unknown recurrent cell {config.cell!r}")
        self.rnn = _CELLS[config.cell](
            input_size=config.embedding_dim,
            hidden_size=config.recurrent_units,
            batch_first=True
        )

    def summarize(self, embedded: torch.Tensor) -> torch.Tensor:
        _, h_n = self.rnn(embedded)
        if isinstance(h_n, tuple):
            # LSTM returns (h_n, c_n)
            h_n = h_n[0]
        # h_n: (num_layers, B, hidden)
        return h_n[-1]


MODEL_REGISTRY = {
    "embedding": EmbeddingClassifier,
    "recurrent": RecurrentClassifier,
}


def build_classifier(config: ClassifierConfig) -> SentimentClassifier:
    """
    Instantiates the variant named by config.kind
    """
    if config.vocabulary_size < 2:
        raise InvalidConfigError("vocabulary_size must be at least 2")
    if config.max_len <= 0 or config.embedding_dim <= 0:
        raise InvalidConfigError("max_len and embedding_dim must be positive")
    try:
        model_cls = MODEL_REGISTRY[config.kind]
    except KeyError as e:
        raise InvalidConfigError(
            f"Unknown classifier kind {config.kind!r}; "
            f"choose from {sorted(MODEL_REGISTRY)}"
        ) from e
    return model_cls(config)


def load_pretrained_embeddings(
    path: Union[str, Path],
    vocabulary: Vocabulary,
    embedding_dim: int,
    num_embeddings: Optional[int] = None
) -> torch.Tensor:
    """
    Reads a GloVe-style text file ("word v1 v2 ...") into a matrix aligned
    with the vocabulary. Rows of words missing from the file, and the
    padding row, stay zero.
    """
    rows = num_embeddings or vocabulary.size
    matrix = torch.zeros(rows, embedding_dim)
    lookup = vocabulary.word_to_index
    with open(path, "r", encoding="utf-8", errors="ignore") as f:
        for line in f:
            parts = line.rstrip().split(" ")
            if len(parts) < embedding_dim + 1:
                continue
            idx = lookup.get(parts[0])
            if idx is None or idx >= rows:
                continue
            matrix[idx] = torch.tensor(
                [float(x) for x in parts[1:1 + embedding_dim]]
            )
    return matrix
