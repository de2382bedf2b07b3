import numpy as np
import pytest

from backend.embeddings import EmbeddingError
from backend.pca import PCA_DIM, ProjectionError, fit_projection, load_projection
from runner.ingest.enrich import EMBED_CONTENT_CHARS, embedding_input, enrich


def _boom(*args, **kwargs):
    raise EmbeddingError("request_failed:ConnectionError")


def test_embedding_failure_gives_empty_vector():
    assert enrich("Title", "Body", embedder=_boom) == ([], None)


def test_projection_of_wrong_length_is_omitted():
    embedding, reduced = enrich("Title", "Body", embedder=lambda text: [0.1] * 1536, reducer=lambda v: [0.0] * 64)
    assert len(embedding) == 1536
    assert reduced is None


def test_projection_failure_keeps_embedding():
    def reducer(vector):
        raise ProjectionError("no model")

    embedding, reduced = enrich("Title", "Body", embedder=lambda text: [0.5] * 1536, reducer=reducer)
    assert embedding == [0.5] * 1536
    assert reduced is None


def test_both_vectors_when_everything_works():
    embedding, reduced = enrich(
        "Title", "Body", embedder=lambda text: [1.0] * 1536, reducer=lambda v: [0.25] * PCA_DIM
    )
    assert len(embedding) == 1536
    assert reduced == [0.25] * PCA_DIM


def test_embedding_input_truncates_content():
    text = embedding_input("Headline", "x" * (EMBED_CONTENT_CHARS + 100))
    assert text == "Headline\n\n" + "x" * EMBED_CONTENT_CHARS


def test_fit_projection_reduces_dimension(tmp_path):
    rng = np.random.default_rng(7)
    samples = rng.normal(size=(60, 16))
    projection = fit_projection(samples, n_components=4)
    assert projection.input_dim == 16
    assert len(projection.transform(samples[0])) == 4

    path = tmp_path / "pca.npz"
    projection.save(path)
    loaded = load_projection(path)
    assert np.allclose(loaded.transform(samples[1]), projection.transform(samples[1]))


def test_fit_projection_needs_enough_samples():
    with pytest.raises(ProjectionError):
        fit_projection(np.ones((10, 16)), n_components=4)


def test_transform_rejects_wrong_input_dim():
    projection = fit_projection(np.random.default_rng(1).normal(size=(60, 8)), n_components=2)
    with pytest.raises(ProjectionError):
        projection.transform([0.0] * 5)
