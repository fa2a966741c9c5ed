import pytest
import torch

from polarity.data_setup import TextTokenizer
from polarity.errors import InvalidConfigError
from polarity.model_builder import (
    ClassifierConfig,
    EmbeddingClassifier,
    RecurrentClassifier,
    build_classifier,
    load_pretrained_embeddings
)


def _batch(batch_size=3, max_len=5, vocab=20):
    return torch.randint(0, vocab, (batch_size, max_len))


def test_embedding_variant_outputs_probabilities():
    model = build_classifier(
        ClassifierConfig(vocabulary_size=20, max_len=5, embedding_dim=4)
    )

    probs = model.predict(_batch())

    assert isinstance(model, EmbeddingClassifier)
    assert probs.shape == (3,)
    assert torch.all((probs >= 0) & (probs <= 1))


def test_embedding_variant_flattens_to_max_len_times_dim():
    model = build_classifier(
        ClassifierConfig(vocabulary_size=20, max_len=5, embedding_dim=4)
    )

    assert model.head.in_features == 20


@pytest.mark.parametrize("cell", ["rnn", "lstm", "gru"])
def test_recurrent_variant_summary_is_independent_of_length(cell):
    config = ClassifierConfig(
        vocabulary_size=20, max_len=5, embedding_dim=4,
        kind="recurrent", recurrent_units=6, cell=cell
    )
    model = build_classifier(config)

    short = model.predict(_batch(max_len=5))
    long = model.predict(_batch(max_len=11))

    assert isinstance(model, RecurrentClassifier)
    assert model.head.in_features == 6
    assert short.shape == long.shape == (3,)


def test_recurrent_default_hidden_width_is_32():
    model = build_classifier(
        ClassifierConfig(vocabulary_size=20, max_len=5, kind="recurrent")
    )

    assert model.rnn.hidden_size == 32


def test_forward_returns_logits_and_is_trainable():
    model = build_classifier(
        ClassifierConfig(vocabulary_size=20, max_len=5, embedding_dim=4,
                         dense_units=8)
    )
    logits = model(_batch())
    loss = torch.nn.functional.binary_cross_entropy_with_logits(
        logits, torch.tensor([0.0, 1.0, 1.0])
    )

    loss.backward()

    assert logits.requires_grad
    assert model.embedding.weight.grad is not None


def test_padding_row_gets_no_gradient():
    model = build_classifier(
        ClassifierConfig(vocabulary_size=20, max_len=3, embedding_dim=4)
    )
    model(torch.tensor([[0, 0, 5]])).sum().backward()

    assert torch.all(model.embedding.weight.grad[0] == 0)


def test_predict_restores_training_mode():
    model = build_classifier(ClassifierConfig(vocabulary_size=20, max_len=5))
    model.train()

    model.predict(_batch())

    assert model.training


def test_unknown_kind_raises():
    with pytest.raises(InvalidConfigError):
        build_classifier(
            ClassifierConfig(vocabulary_size=20, max_len=5, kind="cnn")
        )


def test_unknown_cell_raises():
    with pytest.raises(InvalidConfigError):
        build_classifier(
            ClassifierConfig(vocabulary_size=20, max_len=5,
                             kind="recurrent", cell="transformer")
        )


def test_pretrained_embeddings_align_with_vocabulary(tmp_path):
    vocab = TextTokenizer().fit(["good good bad"], max_size=5)
    vectors = tmp_path / "glove.txt"
    vectors.write_text(
        "bad 0.5 0.5 0.5\n"
        "good 1.0 2.0 3.0\n"
        "absent 9 9 9\n"
        "short 1\n",
        encoding="utf-8"
    )

    matrix = load_pretrained_embeddings(vectors, vocab, 3, num_embeddings=5)

    assert matrix.shape == (5, 3)
    assert matrix[vocab.word_to_index["good"]].tolist() == [1.0, 2.0, 3.0]
    assert matrix[vocab.word_to_index["bad"]].tolist() == [0.5, 0.5, 0.5]
    assert matrix[0].tolist() == [0.0, 0.0, 0.0]


def test_frozen_embeddings_are_not_trainable(tmp_path):
    model = build_classifier(
        ClassifierConfig(vocabulary_size=5, max_len=2, embedding_dim=3)
    )

    model.load_embedding_weights(torch.ones(5, 3), freeze=True)

    assert not model.embedding.weight.requires_grad
    assert torch.all(model.embedding.weight == 1)


def test_embedding_shape_mismatch_raises():
    model = build_classifier(
        ClassifierConfig(vocabulary_size=5, max_len=2, embedding_dim=3)
    )

    with pytest.raises(InvalidConfigError):
        model.load_embedding_weights(torch.ones(4, 3))
