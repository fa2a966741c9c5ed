"""
Training loop for the sentiment classifiers: per-epoch metrics, early
stopping, cancellation between batches and best-epoch selection
"""
import math
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import (
    Dict, Iterator, List, Optional, Protocol, Sequence, Tuple, Union
)

import pandas as pd
import torch
from torch import nn, optim
from torch.utils.data import DataLoader, Dataset as TorchDataset
from tqdm.auto import tqdm

from .data_setup import DataLoaderBuilder, shuffle_split
from .errors import DivergenceError, InsufficientDataError, InvalidConfigError


class CancelToken(Protocol):
    """
    Anything with an is_set() method, e.g. threading.Event
    """

    def is_set(self) -> bool:
        ...


@dataclass(frozen=True)
class EpochRecord:
    """
    Metrics of one completed epoch. epoch is 0-based.
    """
    epoch: int
    train_loss: float
    train_acc: float
    val_loss: float
    val_acc: float
    skipped_batches: int = 0
    diverged: bool = False


@dataclass(frozen=True)
class BestEpoch:
    epoch: int
    val_loss: float
    val_acc: float


@dataclass
class TrainingHistory:
    """
    Append-only list of EpochRecords, one per completed epoch
    """
    records: List[EpochRecord] = field(default_factory=list)

    def append(self, record: EpochRecord) -> None:
        if record.epoch != len(self.records):
            raise ValueError(
                f"Expected record for epoch {len(self.records)}, "
                f"got {record.epoch}"
            )
        self.records.append(record)

    def __len__(self) -> int:
        return len(self.records)

    def __iter__(self) -> Iterator[EpochRecord]:
        return iter(self.records)

    def __getitem__(self, idx: int) -> EpochRecord:
        return self.records[idx]

    def best(self) -> BestEpoch:
        return select_best_epoch(self)

    def to_frame(self) -> pd.DataFrame:
        """
        One row per epoch, columns named after EpochRecord fields
        """
        columns = list(EpochRecord.__dataclass_fields__)
        return pd.DataFrame([asdict(r) for r in self.records], columns=columns)

    def to_csv(self, path: Union[str, Path]) -> None:
        self.to_frame().to_csv(path, index=False)


def select_best_epoch(
    history: Union[TrainingHistory, Sequence[EpochRecord]]
) -> BestEpoch:
    """
    Returns the epoch with the lowest val_loss; the earliest one wins ties.
    Non-finite losses never win unless every epoch has one, in which case
    the first epoch is returned.
    """
    records = list(history)
    if not records:
        raise ValueError("Cannot select a best epoch from an empty history")
    best = records[0]
    for record in records[1:]:
        if not math.isfinite(record.val_loss):
            continue
        if not math.isfinite(best.val_loss) or record.val_loss < best.val_loss:
            best = record
    return BestEpoch(best.epoch, best.val_loss, best.val_acc)


class Trainer:
    """
    Handles the training of a SentimentClassifier
    """

    def __init__(
        self,
        model: nn.Module,
        optimizer: Optional[optim.Optimizer] = None,
        criterion: Optional[nn.Module] = None,
        patience: Optional[int] = None,
        min_delta: float = 0.0,
        strict: bool = False,
        progress: bool = True,
        checkpoint_path: Optional[Union[str, Path]] = None
    ):
        if patience is not None and patience <= 0:
            raise InvalidConfigError("patience must be positive or None")
        self.model = model
        self.optimizer = optimizer
        self.criterion = criterion or nn.BCEWithLogitsLoss()
        self.patience = patience
        self.min_delta = min_delta
        self.strict = strict
        self.progress = progress
        self.checkpoint_path = checkpoint_path
        self.device = next(model.parameters()).device
        self.history = TrainingHistory()
        self.best_state: Optional[Dict[str, torch.Tensor]] = None
        self.cancelled = False

    def _to_device(
        self,
        batch: Tuple[torch.Tensor, torch.Tensor]
    ) -> Tuple[torch.Tensor, torch.Tensor]:
        inputs, labels = batch
        return inputs.to(self.device), labels.float().to(self.device)

    def train_step(
        self,
        batch: Tuple[torch.Tensor, torch.Tensor]
    ) -> Optional[Tuple[float, int]]:
        """
        Runs a single training step on one batch.
        Returns (loss_value, num_correct), or None when the loss was not
        finite and the update was skipped.
        """
        inputs, labels = self._to_device(batch)

        self.optimizer.zero_grad()
        logits = self.model(inputs)
        loss = self.criterion(logits, labels)
        if not torch.isfinite(loss):
            return None
        loss.backward()
        self.optimizer.step()

        preds = (logits.detach() > 0).float()
        correct = int((preds == labels).sum().item())
        return loss.item(), correct

    def eval_step(
        self,
        batch: Tuple[torch.Tensor, torch.Tensor]
    ) -> Tuple[float, int]:
        """
        Runs a single evaluation step on one batch.
        Returns (loss_value, num_correct)
        """
        inputs, labels = self._to_device(batch)

        with torch.no_grad():
            logits = self.model(inputs)
            loss = self.criterion(logits, labels)
            preds = (logits > 0).float()
            correct = int((preds == labels).sum().item())
        return loss.item(), correct

    def train_epoch(
        self,
        loader: DataLoader,
        cancel: Optional[CancelToken] = None
    ) -> Optional[Tuple[float, float, int]]:
        """
        Trains all batches for a single epoch.
        Returns (avg loss, accuracy, skipped batches), or None if the
        cancel token was set before the epoch finished.
        """
        self.model.train()
        total_loss, total_correct, total_samples, skipped = 0.0, 0, 0, 0
        for batch in tqdm(loader, desc="Training Epoch",
                          disable=not self.progress, leave=False):
            if cancel is not None and cancel.is_set():
                return None
            result = self.train_step(batch)
            if result is None:
                skipped += 1
                continue
            loss, correct = result
            batch_size = batch[1].size(0)
            total_loss += loss * batch_size
            total_correct += correct
            total_samples += batch_size
        if total_samples == 0:
            return math.nan, math.nan, skipped
        return total_loss/total_samples, total_correct/total_samples, skipped

    def val_epoch(self, loader: DataLoader) -> Tuple[float, float]:
        """
        Runs all batches in the loader. Returns (avg loss, accuracy) for val
        """
        self.model.eval()
        total_loss, total_correct, total_samples = 0.0, 0, 0
        for batch in tqdm(loader, desc="Validation",
                          disable=not self.progress, leave=False):
            loss, correct = self.eval_step(batch)
            batch_size = batch[1].size(0)
            total_loss += loss * batch_size
            total_correct += correct
            total_samples += batch_size
        if total_samples == 0:
            raise InsufficientDataError("Cannot evaluate an empty dataset")
        return total_loss/total_samples, total_correct/total_samples

    def evaluate(
        self,
        dataset: TorchDataset,
        batch_size: int = 32
    ) -> Tuple[float, float]:
        """
        Returns (loss, accuracy) of the current weights on a dataset
        """
        loader = DataLoaderBuilder(batch_size=batch_size).get_eval_loader(dataset)
        return self.val_epoch(loader)

    def _save_best(self) -> None:
        self.best_state = {
            k: v.detach().clone() for k, v in self.model.state_dict().items()
        }
        if self.checkpoint_path is not None:
            path = Path(self.checkpoint_path)
            path.parent.mkdir(parents=True, exist_ok=True)
            torch.save(self.best_state, path)

    def restore_best(self) -> bool:
        """
        Loads the weights of the best epoch back into the model.
        Returns False when no epoch has completed yet.
        """
        if self.best_state is None:
            return False
        self.model.load_state_dict(self.best_state)
        return True

    def fit(
        self,
        train: TorchDataset,
        epochs: int,
        batch_size: int,
        validation: Optional[TorchDataset] = None,
        validation_fraction: Optional[float] = None,
        seed: int = 0,
        shuffle: bool = True,
        cancel: Optional[CancelToken] = None
    ) -> TrainingHistory:
        """
        Trains the model for up to `epochs` epochs and returns the history.
        Pass either an explicit validation set or a validation_fraction of
        `train` to hold out. Stops early when val_loss has not improved for
        `patience` epochs, or when the cancel token is set; a cancelled
        epoch is not recorded.
        """
        if self.optimizer is None:
            raise InvalidConfigError("Trainer needs an optimizer to fit")
        if (validation is None) == (validation_fraction is None):
            raise InvalidConfigError(
                "Pass exactly one of validation or validation_fraction"
            )
        if epochs < 0:
            raise InvalidConfigError(f"epochs must be >= 0, got {epochs}")
        if validation_fraction is not None:
            train, validation = shuffle_split(train, validation_fraction, seed)
        if len(train) == 0 or len(validation) == 0:
            raise InsufficientDataError("Train and validation must be non-empty")

        self.history = TrainingHistory()
        self.best_state = None
        self.cancelled = False
        if epochs == 0:
            return self.history

        loaders = DataLoaderBuilder(batch_size=batch_size, seed=seed)
        val_loader = loaders.get_eval_loader(validation)
        best_loss = math.inf
        best_state_loss = math.inf
        stale_epochs = 0
        for epoch in range(epochs):
            train_loader = loaders.get_train_loader(train, epoch, shuffle)
            result = self.train_epoch(train_loader, cancel)
            if result is None:
                self.cancelled = True
                if self.progress:
                    print(f"Training cancelled during epoch {epoch + 1}")
                break
            train_loss, train_acc, skipped = result
            val_loss, val_acc = self.val_epoch(val_loader)

            diverged = skipped > 0 or not math.isfinite(val_loss)
            record = EpochRecord(
                epoch=epoch,
                train_loss=train_loss,
                train_acc=train_acc,
                val_loss=val_loss,
                val_acc=val_acc,
                skipped_batches=skipped,
                diverged=diverged
            )
            self.history.append(record)
            if self.progress:
                print(
                    f"Epoch {epoch + 1}: "
                    f"train_loss={train_loss:.4f}, train_acc={train_acc:.4f} | "
                    f"val_loss={val_loss:.4f}, val_acc={val_acc:.4f}"
                    + (f" | skipped {skipped} non-finite batches"
                       if skipped else "")
                )
            if diverged and self.strict:
                raise DivergenceError(epoch)

            # the kept weights follow select_best_epoch; min_delta only
            # decides whether the patience counter resets
            if math.isfinite(val_loss) and val_loss < best_state_loss:
                best_state_loss = val_loss
                self._save_best()
            if math.isfinite(val_loss) and val_loss < best_loss - self.min_delta:
                best_loss = val_loss
                stale_epochs = 0
            else:
                stale_epochs += 1
                if self.patience is not None and stale_epochs >= self.patience:
                    if self.progress:
                        print(
                            f"Early stopping: val_loss did not improve for "
                            f"{stale_epochs} epochs"
                        )
                    break
        return self.history
