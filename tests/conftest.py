# tests/conftest.py
from pathlib import Path
from typing import Callable, Dict, List

import pytest
import torch

from polarity.config import PipelineConfig

POSITIVE_REVIEW = "a great and wonderful film"
NEGATIVE_REVIEW = "a dull and terrible film"


@pytest.fixture(autouse=True)
def seeded():
    torch.manual_seed(0)
    yield


@pytest.fixture
def make_corpus(tmp_path: Path) -> Callable[[Dict[str, List[str]]], Path]:
    """
    Writes {class_name: [texts]} as <tmp>/corpus/<class_name>/<nnn>.txt
    """
    def _make(classes: Dict[str, List[str]], name: str = "corpus") -> Path:
        root = tmp_path / name
        for class_name, texts in classes.items():
            class_dir = root / class_name
            class_dir.mkdir(parents=True)
            for i, text in enumerate(texts):
                (class_dir / f"{i:03d}.txt").write_text(text, encoding="utf-8")
        return root
    return _make


@pytest.fixture
def synthetic_corpus(make_corpus) -> Path:
    """
    20 documents, 10 per class, each a fixed known string
    """
    return make_corpus({
        "neg": [NEGATIVE_REVIEW] * 10,
        "pos": [POSITIVE_REVIEW] * 10,
    })


@pytest.fixture
def small_config() -> PipelineConfig:
    return PipelineConfig(
        max_vocabulary_size=20,
        max_sequence_length=5,
        embedding_dim=4,
        epochs=1,
        batch_size=4,
        device="cpu",
    )
