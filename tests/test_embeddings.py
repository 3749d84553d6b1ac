"""Tests for embedding backends."""

import pytest

from repograph.embeddings import (
    EMBEDDING_MODELS,
    HashEmbeddingModel,
    TransformerEmbedder,
    get_embedder,
)


def _dot(a, b):
    # Hash embeddings are unit length, so the dot product is the cosine
    return sum(x * y for x, y in zip(a, b))


class TestHashEmbeddingModel:
    def test_dimension_and_norm(self):
        vec = HashEmbeddingModel(dim=64).embed_text("def parse_file(path): return open(path)")
        assert len(vec) == 64
        assert sum(v * v for v in vec) == pytest.approx(1.0)

    def test_deterministic(self):
        model = HashEmbeddingModel()
        assert model.embed_text("graph manager") == model.embed_text("graph manager")

    def test_empty_text_is_zero_vector(self):
        assert HashEmbeddingModel(dim=8).embed_text("  123 ") == [0.0] * 8

    def test_shared_tokens_are_more_similar(self):
        """Test that keyword overlap shows up as similarity."""
        model = HashEmbeddingModel()
        query = model.embed_text("parse python file")
        close = model.embed_text("def parse_python(file): parse python file contents")
        far = model.embed_text("render html template with jinja")
        assert _dot(query, close) > _dot(query, far)


class TestGetEmbedder:
    def test_hash_by_default(self):
        assert isinstance(get_embedder(), HashEmbeddingModel)
        assert get_embedder("hash").model_key == "hash"

    def test_unknown_model_falls_back(self):
        assert isinstance(get_embedder("no-such-model"), HashEmbeddingModel)

    def test_configured_model_is_used(self):
        from repograph.config_manager import save_embedding_config

        save_embedding_config("minilm")
        embedder = get_embedder()
        # Without torch installed the transformer model degrades to hash
        assert embedder.model_key in ("minilm", "hash")

    def test_transformer_requires_backend(self):
        with pytest.raises(ValueError):
            TransformerEmbedder("hash")

    def test_transformer_construction_is_lazy(self):
        embedder = TransformerEmbedder("minilm")
        assert embedder.dim == EMBEDDING_MODELS["minilm"]["dim"]
        assert embedder._model is None

