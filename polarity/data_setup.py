"""
Module to turn raw review text into fixed-width index tensors.
Vocabulary fitting, sequence encoding, padding and the train/validation
split all live here so that fitting and encoding share one tokenizer.
"""
import json
import math
import re
from collections import Counter
from pathlib import Path
from types import MappingProxyType
from typing import (
    Dict, Iterable, List, Mapping, NamedTuple, Optional, Sequence, Union
)

import torch
from torch.utils.data import DataLoader, Dataset as TorchDataset, Subset

from .errors import (
    EmptyCorpusError,
    InsufficientDataError,
    InvalidConfigError,
    InvalidLengthError
)

PAD_INDEX = 0
WORD_RE = re.compile(r"[^\W_]+")
WORD_OR_PUNCT_RE = re.compile(r"[^\W_]+|[^\w\s]|_")


def tokenize(
    text: str,
    lower: bool = True,
    remove_punctuation: bool = True
) -> List[str]:
    """
    Splits text on non-alphanumeric boundaries (underscores included).
    With remove_punctuation disabled, each punctuation character, "_"
    among them, becomes a token of its own.
    """
    if lower:
        text = text.lower()
    pattern = WORD_RE if remove_punctuation else WORD_OR_PUNCT_RE
    return pattern.findall(text)


class Vocabulary:
    """
    Frequency-ranked word index. Index 0 is never assigned to a word; it
    stands for both padding and out-of-vocabulary words. Read-only once
    built.
    """

    def __init__(
        self,
        word_to_index: Mapping[str, int],
        max_size: int,
        total_unique_words: int,
        lower: bool = True,
        remove_punctuation: bool = True
    ):
        if len(word_to_index) > max_size - 1:
            raise InvalidConfigError(
                f"{len(word_to_index)} words do not fit max_size={max_size}"
            )
        if PAD_INDEX in word_to_index.values():
            raise InvalidConfigError("Index 0 is reserved for padding/OOV")
        self._word_to_index = MappingProxyType(dict(word_to_index))
        self._index_to_word = MappingProxyType(
            {i: w for w, i in word_to_index.items()}
        )
        self._max_size = max_size
        self._total_unique_words = total_unique_words
        self._lower = lower
        self._remove_punctuation = remove_punctuation

    def __setattr__(self, name: str, value: object) -> None:
        if hasattr(self, "_remove_punctuation"):
            raise AttributeError(f"Vocabulary is read-only, cannot set {name!r}")
        super().__setattr__(name, value)

    @property
    def max_size(self) -> int:
        return self._max_size

    @property
    def total_unique_words(self) -> int:
        return self._total_unique_words

    @property
    def lower(self) -> bool:
        return self._lower

    @property
    def remove_punctuation(self) -> bool:
        return self._remove_punctuation

    @property
    def word_to_index(self) -> Mapping[str, int]:
        return self._word_to_index

    @property
    def index_to_word(self) -> Mapping[int, str]:
        return self._index_to_word

    @property
    def size(self) -> int:
        """
        Number of embedding rows needed: the kept words plus index 0
        """
        return len(self._word_to_index) + 1

    def __len__(self) -> int:
        return len(self._word_to_index)

    def __contains__(self, word: object) -> bool:
        return word in self._word_to_index

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Vocabulary):
            return NotImplemented
        return self.to_dict() == other.to_dict()

    def __repr__(self) -> str:
        return (
            f"Vocabulary(words={len(self)}, max_size={self.max_size}, "
            f"total_unique_words={self.total_unique_words})"
        )

    def tokenize(self, text: str) -> List[str]:
        """
        Tokenizes with the normalization the vocabulary was fitted with
        """
        return tokenize(text, self.lower, self.remove_punctuation)

    def decode(self, indices: Iterable[int]) -> List[str]:
        """
        Maps indices back to words, dropping padding/OOV positions
        """
        return [
            self._index_to_word[int(i)] for i in indices
            if int(i) != PAD_INDEX
        ]

    def to_dict(self) -> Dict:
        return {
            "word_to_index": dict(self._word_to_index),
            "max_size": self.max_size,
            "total_unique_words": self.total_unique_words,
            "lower": self.lower,
            "remove_punctuation": self.remove_punctuation,
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "Vocabulary":
        return cls(
            word_to_index=data["word_to_index"],
            max_size=data["max_size"],
            total_unique_words=data["total_unique_words"],
            lower=data.get("lower", True),
            remove_punctuation=data.get("remove_punctuation", True)
        )

    def save(self, path: Union[str, Path]) -> None:
        """
        Writes the vocabulary as a standalone JSON artifact
        """
        with open(path, "w", encoding="utf-8") as f:
            json.dump(self.to_dict(), f, ensure_ascii=False)

    @classmethod
    def load(cls, path: Union[str, Path]) -> "Vocabulary":
        with open(path, "r", encoding="utf-8") as f:
            return cls.from_dict(json.load(f))


class TextTokenizer:
    """
    Builds a Vocabulary from a corpus of raw texts
    """

    def __init__(self, lower: bool = True, remove_punctuation: bool = True):
        self.lower = lower
        self.remove_punctuation = remove_punctuation

    def tokenize(self, text: str) -> List[str]:
        return tokenize(text, self.lower, self.remove_punctuation)

    def fit(self, corpus: Iterable[str], max_size: int) -> Vocabulary:
        """
        Keeps the max_size - 1 most frequent words. Equally frequent words
        are ranked by first appearance, which decides who survives the cut.
        """
        if max_size < 2:
            raise InvalidConfigError(
                f"max_size must be at least 2, got {max_size}"
            )
        counts: Counter = Counter()
        for text in corpus:
            counts.update(self.tokenize(text))
        if not counts:
            raise EmptyCorpusError("Corpus produced no tokens")

        # most_common keeps insertion (first-seen) order among equal counts
        ranked = counts.most_common(max_size - 1)
        word_to_index = {
            word: rank for rank, (word, _) in enumerate(ranked, start=1)
        }
        return Vocabulary(
            word_to_index,
            max_size=max_size,
            total_unique_words=len(counts),
            lower=self.lower,
            remove_punctuation=self.remove_punctuation
        )


def encode(text: str, vocabulary: Vocabulary) -> List[int]:
    """
    Maps each token to its index; words outside the vocabulary become 0
    """
    lookup = vocabulary.word_to_index
    return [lookup.get(token, PAD_INDEX) for token in vocabulary.tokenize(text)]


def pad_and_truncate(
    sequences: Sequence[Sequence[int]],
    max_len: int,
    pad_value: int = PAD_INDEX
) -> torch.Tensor:
    """
    Returns a (N, max_len) LongTensor. Long rows keep their last max_len
    tokens, short rows are padded on the left.
    """
    if max_len <= 0:
        raise InvalidLengthError(f"max_len must be positive, got {max_len}")
    out = torch.full((len(sequences), max_len), pad_value, dtype=torch.long)
    for row, seq in enumerate(sequences):
        kept = list(seq)[-max_len:]
        if kept:
            out[row, max_len - len(kept):] = torch.tensor(kept, dtype=torch.long)
    return out


class EncodedDataset(TorchDataset):
    """
    Padded index rows and their labels, usable with a DataLoader
    """

    def __init__(self, features: torch.Tensor, labels: torch.Tensor):
        if features.dim() != 2:
            raise InvalidLengthError(
                f"features must be 2-D, got shape {tuple(features.shape)}"
            )
        if len(features) != len(labels):
            raise InsufficientDataError(
                f"{len(features)} feature rows but {len(labels)} labels"
            )
        self.features = features.long()
        self.labels = labels.float()

    def __len__(self) -> int:
        return len(self.features)

    def __getitem__(self, idx: int):
        return self.features[idx], self.labels[idx]

    @property
    def max_len(self) -> int:
        return self.features.size(1)


class SequenceEncoder:
    """
    Encodes texts into fixed-width rows for one vocabulary.

    Note that padding and out-of-vocabulary words share index 0, so a
    model cannot tell an unknown word from an empty position.
    """

    def __init__(self, vocabulary: Vocabulary, max_len: int):
        if max_len <= 0:
            raise InvalidLengthError(f"max_len must be positive, got {max_len}")
        self.vocabulary = vocabulary
        self.max_len = max_len

    def encode(self, text: str) -> List[int]:
        return encode(text, self.vocabulary)

    def encode_batch(self, texts: Iterable[str]) -> torch.Tensor:
        return pad_and_truncate(
            [self.encode(t) for t in texts], self.max_len
        )

    def build_dataset(
        self,
        texts: Sequence[str],
        labels: Sequence[int]
    ) -> EncodedDataset:
        """
        Encodes the whole corpus into an EncodedDataset
        """
        if len(texts) != len(labels):
            raise InsufficientDataError(
                f"{len(texts)} texts but {len(labels)} labels"
            )
        return EncodedDataset(
            self.encode_batch(texts),
            torch.tensor(list(labels), dtype=torch.float)
        )


class DatasetSplit(NamedTuple):
    train: Subset
    validation: Subset


def shuffle_split(
    dataset: EncodedDataset,
    validation_fraction: float,
    seed: int
) -> DatasetSplit:
    """
    Shuffles row indices with a seeded permutation and holds out the last
    ceil(N * validation_fraction) of them. Both sides are Subset views
    over the same rows, so features and labels stay paired.
    """
    n = len(dataset)
    if not 0.0 < validation_fraction < 1.0:
        raise InsufficientDataError(
            f"validation_fraction must be in (0, 1), got {validation_fraction}"
        )
    n_val = math.ceil(round(n * validation_fraction, 9))
    if n_val == 0 or n_val >= n:
        raise InsufficientDataError(
            f"validation_fraction={validation_fraction} on {n} rows leaves "
            f"{n - n_val} train and {n_val} validation rows"
        )
    generator = torch.Generator().manual_seed(seed)
    perm = torch.randperm(n, generator=generator).tolist()
    return DatasetSplit(
        train=Subset(dataset, perm[:n - n_val]),
        validation=Subset(dataset, perm[n - n_val:])
    )


def subset_labels(dataset: TorchDataset) -> torch.Tensor:
    """
    Returns the labels of an EncodedDataset or of a (nested) Subset of one
    """
    if isinstance(dataset, Subset):
        parent = subset_labels(dataset.dataset)
        return parent[torch.as_tensor(list(dataset.indices), dtype=torch.long)]
    if isinstance(dataset, EncodedDataset):
        return dataset.labels
    return torch.stack([dataset[i][1] for i in range(len(dataset))])


class DataLoaderBuilder:
    """
    Builds Pytorch DataLoaders for training and evaluation
    """

    def __init__(
        self,
        batch_size: int = 32,
        num_workers: int = 0,
        seed: int = 0
    ):
        if batch_size <= 0:
            raise InvalidConfigError(
                f"batch_size must be positive, got {batch_size}"
            )
        self.batch_size = batch_size
        self.num_workers = num_workers
        self.seed = seed

    def get_train_loader(
        self,
        ds: TorchDataset,
        epoch: int = 0,
        shuffle: bool = True
    ) -> DataLoader:
        """
        Training loader; the shuffle order depends only on seed and epoch
        """
        generator = torch.Generator().manual_seed(self.seed + epoch)
        return DataLoader(
            ds,
            batch_size=self.batch_size,
            shuffle=shuffle,
            num_workers=self.num_workers,
            generator=generator
        )

    def get_eval_loader(
        self,
        ds: TorchDataset,
        batch_size: Optional[int] = None
    ) -> DataLoader:
        """
        Creates a DataLoader for validation, testing or inference
        """
        return DataLoader(
            ds,
            batch_size=batch_size or self.batch_size,
            shuffle=False,
            num_workers=self.num_workers
        )
