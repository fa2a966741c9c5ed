"""
Review polarity: corpus loading, vocabulary and sequence encoding,
embedding / recurrent classifiers and their training loop.
"""
from .config import PipelineConfig
from .corpus import CorpusLoader, LabeledDocument
from .data_setup import (
    DatasetSplit,
    EncodedDataset,
    SequenceEncoder,
    TextTokenizer,
    Vocabulary,
    encode,
    pad_and_truncate,
    shuffle_split
)
from .engine import (
    BestEpoch,
    EpochRecord,
    Trainer,
    TrainingHistory,
    select_best_epoch
)
from .errors import (
    CorpusStructureError,
    DivergenceError,
    EmptyCorpusError,
    InsufficientDataError,
    InvalidConfigError,
    InvalidLengthError,
    PolarityError
)
from .model_builder import (
    ClassifierConfig,
    EmbeddingClassifier,
    RecurrentClassifier,
    SentimentClassifier,
    build_classifier
)

__all__ = [
    # configuration
    "PipelineConfig",
    # corpus & preprocessing
    "CorpusLoader",
    "LabeledDocument",
    "TextTokenizer",
    "Vocabulary",
    "SequenceEncoder",
    "EncodedDataset",
    "DatasetSplit",
    "encode",
    "pad_and_truncate",
    "shuffle_split",
    # modeling
    "ClassifierConfig",
    "SentimentClassifier",
    "EmbeddingClassifier",
    "RecurrentClassifier",
    "build_classifier",
    # training
    "Trainer",
    "TrainingHistory",
    "EpochRecord",
    "BestEpoch",
    "select_best_epoch",
    # errors
    "PolarityError",
    "CorpusStructureError",
    "EmptyCorpusError",
    "InvalidLengthError",
    "InsufficientDataError",
    "InvalidConfigError",
    "DivergenceError",
]
