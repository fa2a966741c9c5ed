import math
import threading

import pytest
import torch
from torch import optim

from polarity.data_setup import EncodedDataset, shuffle_split
from polarity.engine import (
    BestEpoch,
    EpochRecord,
    Trainer,
    TrainingHistory,
    select_best_epoch
)
from polarity.errors import DivergenceError, InvalidConfigError
from polarity.model_builder import ClassifierConfig, build_classifier


def _dataset(n=20, max_len=5, vocab=20):
    # positives use the upper half of the vocabulary, negatives the lower
    labels = torch.tensor([0, 1] * (n // 2))
    low = torch.randint(1, vocab // 2, (n, max_len))
    high = torch.randint(vocab // 2, vocab, (n, max_len))
    features = torch.where(labels.unsqueeze(1) == 1, high, low)
    return EncodedDataset(features, labels)


def _model(kind="embedding"):
    return build_classifier(
        ClassifierConfig(vocabulary_size=20, max_len=5, embedding_dim=4,
                         kind=kind, recurrent_units=4)
    )


def _record(epoch, val_loss, val_acc=0.5):
    return EpochRecord(epoch=epoch, train_loss=1.0, train_acc=0.5,
                       val_loss=val_loss, val_acc=val_acc)


class CountingToken:
    """Reports cancellation from the n-th check on"""

    def __init__(self, cancel_at):
        self.calls = 0
        self.cancel_at = cancel_at

    def is_set(self):
        self.calls += 1
        return self.calls >= self.cancel_at


@pytest.fixture
def split():
    return shuffle_split(_dataset(), 0.2, seed=0)


# ---------- best epoch ----------
def test_best_epoch_is_minimum_val_loss():
    history = [_record(0, 0.8), _record(1, 0.3, 0.9), _record(2, 0.5)]

    assert select_best_epoch(history) == BestEpoch(1, 0.3, 0.9)


def test_best_epoch_ties_go_to_earliest():
    history = [_record(0, 0.6), _record(1, 0.4), _record(2, 0.4)]

    assert select_best_epoch(history).epoch == 1


def test_non_finite_losses_never_win():
    history = [_record(0, math.nan), _record(1, 0.7), _record(2, math.inf)]

    assert select_best_epoch(history).epoch == 1


def test_all_non_finite_returns_first_epoch():
    history = [_record(0, math.nan), _record(1, math.nan)]

    assert select_best_epoch(history).epoch == 0


def test_best_epoch_of_empty_history_raises():
    with pytest.raises(ValueError):
        select_best_epoch(TrainingHistory())


def test_history_is_append_only_in_epoch_order():
    history = TrainingHistory()
    history.append(_record(0, 0.5))

    with pytest.raises(ValueError):
        history.append(_record(2, 0.5))


def test_history_to_frame():
    history = TrainingHistory()
    history.append(_record(0, 0.5))
    history.append(_record(1, 0.4))

    frame = history.to_frame()

    assert frame["val_loss"].tolist() == [0.5, 0.4]
    assert list(frame.columns) == [
        "epoch", "train_loss", "train_acc", "val_loss", "val_acc",
        "skipped_batches", "diverged"
    ]


# ---------- fit ----------
def test_zero_epochs_returns_empty_history_without_updates(split):
    model = _model()
    before = {k: v.clone() for k, v in model.state_dict().items()}
    optimizer = optim.Adam(model.parameters(), lr=0.1)
    trainer = Trainer(model, optimizer, progress=False)

    history = trainer.fit(split.train, epochs=0, batch_size=4,
                          validation=split.validation)

    assert len(history) == 0
    assert optimizer.state_dict()["state"] == {}
    for k, v in model.state_dict().items():
        assert torch.equal(v, before[k])


@pytest.mark.parametrize("kind", ["embedding", "recurrent"])
def test_one_record_per_epoch(split, kind):
    model = _model(kind)
    trainer = Trainer(model, optim.Adam(model.parameters()), progress=False)

    history = trainer.fit(split.train, epochs=3, batch_size=4,
                          validation=split.validation)

    assert [r.epoch for r in history] == [0, 1, 2]
    for record in history:
        assert math.isfinite(record.train_loss)
        assert math.isfinite(record.val_loss)
        assert 0.0 <= record.val_acc <= 1.0
        assert not record.diverged


def test_fit_with_validation_fraction():
    model = _model()
    trainer = Trainer(model, optim.Adam(model.parameters()), progress=False)

    history = trainer.fit(_dataset(), epochs=1, batch_size=4,
                          validation_fraction=0.2)

    assert len(history) == 1


def test_fit_needs_exactly_one_validation_source(split):
    model = _model()
    trainer = Trainer(model, optim.Adam(model.parameters()), progress=False)

    with pytest.raises(InvalidConfigError):
        trainer.fit(split.train, epochs=1, batch_size=4)
    with pytest.raises(InvalidConfigError):
        trainer.fit(split.train, epochs=1, batch_size=4,
                    validation=split.validation, validation_fraction=0.2)


def test_fit_without_optimizer_raises(split):
    trainer = Trainer(_model(), progress=False)

    with pytest.raises(InvalidConfigError):
        trainer.fit(split.train, epochs=1, batch_size=4,
                    validation=split.validation)


def test_training_is_reproducible_for_a_seed(split):
    def run():
        torch.manual_seed(123)
        model = _model()
        trainer = Trainer(model, optim.Adam(model.parameters()), progress=False)
        return trainer.fit(split.train, epochs=2, batch_size=4,
                           validation=split.validation, seed=9)

    assert run().records == run().records


def test_early_stopping_when_val_loss_stalls(split):
    model = _model()
    # a zero learning rate keeps val_loss constant after the first epoch
    trainer = Trainer(model, optim.SGD(model.parameters(), lr=0.0),
                      patience=2, progress=False)

    history = trainer.fit(split.train, epochs=10, batch_size=4,
                          validation=split.validation)

    assert len(history) == 3
    assert select_best_epoch(history).epoch == 0


def test_best_weights_are_kept_and_checkpointed(split, tmp_path):
    model = _model()
    path = tmp_path / "ckpt" / "best.pth"
    trainer = Trainer(model, optim.Adam(model.parameters(), lr=0.05),
                      progress=False, checkpoint_path=path)

    trainer.fit(split.train, epochs=2, batch_size=4,
                validation=split.validation)

    assert path.exists()
    assert trainer.restore_best()
    saved = torch.load(path)
    for k, v in model.state_dict().items():
        assert torch.equal(v, saved[k])


def test_restored_weights_match_best_epoch_with_min_delta(split):
    model = _model()
    # min_delta this large means no epoch after the first resets patience
    trainer = Trainer(model, optim.Adam(model.parameters(), lr=0.05),
                      min_delta=10.0, progress=False)

    history = trainer.fit(split.train, epochs=4, batch_size=4,
                          validation=split.validation)
    best = select_best_epoch(history)
    trainer.restore_best()
    loss, _ = trainer.evaluate(split.validation, batch_size=4)

    assert len(history) == 4
    assert loss == pytest.approx(best.val_loss, rel=1e-5)


def test_restore_best_before_training_is_a_noop():
    assert Trainer(_model(), progress=False).restore_best() is False


# ---------- cancellation ----------
def test_cancel_before_first_batch_leaves_empty_history(split):
    model = _model()
    trainer = Trainer(model, optim.Adam(model.parameters()), progress=False)
    event = threading.Event()
    event.set()

    history = trainer.fit(split.train, epochs=3, batch_size=4,
                          validation=split.validation, cancel=event)

    assert len(history) == 0
    assert trainer.cancelled


def test_cancel_mid_epoch_keeps_completed_epochs(split):
    model = _model()
    trainer = Trainer(model, optim.Adam(model.parameters()), progress=False)
    # 16 train rows / batch 4 = 4 checks per epoch; stop in the second epoch
    token = CountingToken(cancel_at=6)

    history = trainer.fit(split.train, epochs=5, batch_size=4,
                          validation=split.validation, cancel=token)

    assert len(history) == 1
    assert trainer.cancelled
    assert select_best_epoch(history).epoch == 0


# ---------- divergence ----------
def _poisoned_model():
    model = _model()
    with torch.no_grad():
        model.embedding.weight.fill_(float("nan"))
    return model


def test_non_finite_batches_are_skipped_and_recorded(split):
    model = _poisoned_model()
    trainer = Trainer(model, optim.Adam(model.parameters()), progress=False)

    history = trainer.fit(split.train, epochs=2, batch_size=4,
                          validation=split.validation)

    assert len(history) == 2
    for record in history:
        assert record.diverged
        assert record.skipped_batches == 4
        assert math.isnan(record.train_loss)


def test_strict_mode_raises_after_recording(split):
    model = _poisoned_model()
    trainer = Trainer(model, optim.Adam(model.parameters()),
                      strict=True, progress=False)

    with pytest.raises(DivergenceError) as excinfo:
        trainer.fit(split.train, epochs=3, batch_size=4,
                    validation=split.validation)

    assert excinfo.value.epoch == 0
    assert len(trainer.history) == 1


def test_evaluate_returns_loss_and_accuracy(split):
    trainer = Trainer(_model(), progress=False)

    loss, acc = trainer.evaluate(split.validation, batch_size=3)

    assert math.isfinite(loss)
    assert 0.0 <= acc <= 1.0
