"""
Utility functions
"""
import random
from pathlib import Path
from typing import Optional, Tuple, Union

import torch

from .config import PipelineConfig
from .data_setup import Vocabulary
from .engine import TrainingHistory
from .model_builder import ClassifierConfig, SentimentClassifier, build_classifier

MODEL_FILE = "model.pth"
VOCAB_FILE = "vocabulary.json"
CONFIG_FILE = "config.json"
HISTORY_FILE = "history.csv"


def get_root() -> Path:
    """
    Returns the root directory of the project
    """
    return Path(__file__).resolve().parent.parent


def select_device(verbose: bool = False) -> torch.device:
    """
    Returns the available device
    """
    if torch.backends.mps.is_available():
        dev = torch.device("mps")
    elif torch.cuda.is_available():
        dev = torch.device("cuda")
    else:
        dev = torch.device("cpu")
    if verbose:
        print(f"Using device: {dev}")
    return dev


def set_seed(seed: int) -> None:
    """
    Seeds python and torch so weight init and shuffling are reproducible
    """
    random.seed(seed)
    torch.manual_seed(seed)


def classifier_config(config: PipelineConfig) -> ClassifierConfig:
    """
    Derives the model hyperparameters from the pipeline config
    """
    return ClassifierConfig(
        vocabulary_size=config.max_vocabulary_size,
        max_len=config.max_sequence_length,
        embedding_dim=config.embedding_dim,
        kind=config.model_kind,
        recurrent_units=config.recurrent_units,
        cell=config.cell,
        dense_units=config.dense_units
    )


def save_model(
    model: torch.nn.Module,
    model_name: str,
    target_dir: Union[str, Path] = "models"
) -> Path:
    """Saves a PyTorch model to a target directory.

    Args:
        model: A target PyTorch model to save.
        model_name: A filename for the saved model. Should include
            either ".pth" or ".pt" as the file extension.
        target_dir: A directory for saving the model, defaulting to "models".

    Example usage:
        save_model(
            model=model,
            model_name="polarity_lstm.pth"
        )
    """
    save_dir = Path(target_dir)
    save_dir.mkdir(parents=True, exist_ok=True)

    assert model_name.endswith(".pth") or model_name.endswith(".pt"), \
        "Model should end with '.pt' or .pth'"
    model_save_path = save_dir / model_name

    print(f"[INFO] Saving model to: {model_save_path}")
    torch.save(obj=model.state_dict(), f=model_save_path)
    return model_save_path


def save_artifacts(
    target_dir: Union[str, Path],
    model: SentimentClassifier,
    vocabulary: Vocabulary,
    config: PipelineConfig,
    history: Optional[TrainingHistory] = None
) -> Path:
    """
    Writes everything needed to reuse a trained model in another process:
    weights, vocabulary, config and (optionally) the training history
    """
    target = Path(target_dir)
    save_model(model, MODEL_FILE, target)
    vocabulary.save(target / VOCAB_FILE)
    config.save_json(target / CONFIG_FILE)
    if history is not None:
        history.to_csv(target / HISTORY_FILE)
    print(f"[INFO] Saved vocabulary and config to: {target}")
    return target


def load_artifacts(
    source_dir: Union[str, Path],
    device: Optional[torch.device] = None
) -> Tuple[SentimentClassifier, Vocabulary, PipelineConfig]:
    """
    Rebuilds the model, vocabulary and config written by save_artifacts
    """
    source = Path(source_dir)
    device = device or torch.device("cpu")
    config = PipelineConfig.from_json(source / CONFIG_FILE)
    vocabulary = Vocabulary.load(source / VOCAB_FILE)
    model = build_classifier(classifier_config(config)).to(device)
    state = torch.load(source / MODEL_FILE, map_location=device)
    model.load_state_dict(state)
    model.eval()
    return model, vocabulary, config
