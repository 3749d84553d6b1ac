"""Embedding backends for code chunks.

Supported models (configure via ``[embeddings].model`` in ``config.toml``):

========== ====================================== ====== ======================
Key        HuggingFace Model                      Dim    Notes
========== ====================================== ====== ======================
jina-code  jinaai/jina-embeddings-v2-base-code     768   Code-aware
bge-base   BAAI/bge-base-en-v1.5                   768   General-purpose
minilm     sentence-transformers/all-MiniLM-L6-v2  384   Tiny and fast
hash       (none)                                  256   No ML, keyword-level only
========== ====================================== ====== ======================

Transformer models are downloaded once and cached in
``~/.repograph/models``.  ``torch`` and ``transformers`` are optional;
without them every configured model resolves to hash embeddings.
"""

from __future__ import annotations

import logging
import math
import re
from hashlib import blake2b
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, Union

from .config import BASE_DIR, DEFAULT_EMBEDDING_DIM
from .errors import EmbeddingError

logger = logging.getLogger(__name__)

MODEL_CACHE_DIR: Path = BASE_DIR / "models"

_TOKEN_RE = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")


class Embedder(Protocol):
    model_key: str

    def embed_text(self, text: str) -> List[float]: ...


# ===================================================================
# Model Registry
# ===================================================================

EMBEDDING_MODELS: Dict[str, Dict[str, Any]] = {
    "jina-code": {
        "hf_id": "jinaai/jina-embeddings-v2-base-code",
        "dim": 768,
        "max_tokens": 8192,
        "pooling": "mean",
        "trust_remote_code": True,
    },
    "bge-base": {
        "hf_id": "BAAI/bge-base-en-v1.5",
        "dim": 768,
        "max_tokens": 512,
        "pooling": "cls",
        "trust_remote_code": False,
    },
    "minilm": {
        "hf_id": "sentence-transformers/all-MiniLM-L6-v2",
        "dim": 384,
        "max_tokens": 256,
        "pooling": "mean",
        "trust_remote_code": False,
    },
    "hash": {
        "hf_id": None,
        "dim": DEFAULT_EMBEDDING_DIM,
        "max_tokens": None,
        "pooling": None,
        "trust_remote_code": False,
    },
}

DEFAULT_MODEL = "hash"


# ===================================================================
# TransformerEmbedder
# ===================================================================

class TransformerEmbedder:
    """HuggingFace encoder with configurable pooling (``mean`` or ``cls``).

    Weights load lazily on the first call, so constructing one is cheap.
    Failures while loading or encoding surface as :class:`EmbeddingError`.
    """

    def __init__(
        self,
        model_key: str,
        cache_dir: Optional[Path] = None,
        device: str = "cpu",
    ) -> None:
        spec = EMBEDDING_MODELS.get(model_key)
        if spec is None or spec["hf_id"] is None:
            raise ValueError(f"'{model_key}' has no transformer backend")

        self.model_key = model_key
        self.hf_id: str = spec["hf_id"]
        self.dim: int = spec["dim"]
        self.max_length: int = spec["max_tokens"]
        self.pooling: str = spec["pooling"]
        self.trust_remote_code: bool = spec["trust_remote_code"]
        self.cache_dir = cache_dir or MODEL_CACHE_DIR
        self.device = device
        self._model: Any = None
        self._tokenizer: Any = None

    def _load_model(self) -> None:
        if self._model is not None:
            return

        from transformers import AutoModel, AutoTokenizer

        self.cache_dir.mkdir(parents=True, exist_ok=True)
        logger.info("Loading embedding model '%s' (%s)", self.model_key, self.hf_id)
        try:
            self._tokenizer = AutoTokenizer.from_pretrained(
                self.hf_id,
                cache_dir=str(self.cache_dir),
                trust_remote_code=self.trust_remote_code,
            )
            self._model = AutoModel.from_pretrained(
                self.hf_id,
                cache_dir=str(self.cache_dir),
                trust_remote_code=self.trust_remote_code,
            )
            self._model.eval()
            self._model.to(self.device)
        except Exception as exc:
            raise EmbeddingError(
                f"failed to load embedding model '{self.model_key}' ({self.hf_id}): {exc}"
            ) from exc

    def _pool(self, last_hidden_states: Any, attention_mask: Any) -> Any:
        if self.pooling == "cls":
            return last_hidden_states[:, 0]
        mask = attention_mask.unsqueeze(-1).expand(last_hidden_states.size()).float()
        return (last_hidden_states * mask).sum(dim=1) / mask.sum(dim=1).clamp(min=1e-9)

    def _encode(self, texts: List[str]) -> List[List[float]]:
        import torch
        import torch.nn.functional as F

        self._load_model()
        try:
            batch = self._tokenizer(
                texts,
                max_length=self.max_length,
                padding=True,
                truncation=True,
                return_tensors="pt",
            )
            batch = {k: v.to(self.device) for k, v in batch.items()}
            with torch.no_grad():
                outputs = self._model(**batch)
            embeddings = self._pool(outputs.last_hidden_state, batch["attention_mask"])
            embeddings = F.normalize(embeddings, p=2, dim=1)
        except Exception as exc:
            raise EmbeddingError(f"encoding failed: {exc}") from exc
        return embeddings.cpu().tolist()

    def embed_text(self, text: str) -> List[float]:
        return self._encode([text])[0]


# ===================================================================
# HashEmbeddingModel
# ===================================================================

class HashEmbeddingModel:
    """Deterministic token-hashing embedder with no ML dependencies.

    Gives keyword-level similarity only.  It is the default model and
    what tests use.
    """

    model_key = "hash"

    def __init__(self, dim: int = DEFAULT_EMBEDDING_DIM) -> None:
        self.dim = dim

    def embed_text(self, text: str) -> List[float]:
        vec = [0.0] * self.dim
        tokens = _TOKEN_RE.findall(text.lower())
        if not tokens:
            return vec
        for token in tokens:
            digest = blake2b(token.encode("utf-8"), digest_size=8).digest()
            idx = int.from_bytes(digest[:4], "big") % self.dim
            sign = 1.0 if (digest[4] & 1) == 0 else -1.0
            vec[idx] += sign
        return _l2_normalize(vec)


# ===================================================================
# Factory
# ===================================================================

def get_embedder(
    model_key: Optional[str] = None,
    cache_dir: Optional[Path] = None,
    device: str = "cpu",
) -> Union[TransformerEmbedder, HashEmbeddingModel]:
    """Return the configured embedder.

    Resolution order: explicit *model_key*, then ``[embeddings].model``
    from ``config.toml``, then ``"hash"``.  A transformer model without
    ``torch``/``transformers`` installed falls back to hash with a warning.
    """
    if model_key is None:
        from .config_manager import load_embedding_config
        model_key = load_embedding_config().get("model") or DEFAULT_MODEL

    if model_key == "hash":
        return HashEmbeddingModel()

    if model_key not in EMBEDDING_MODELS:
        logger.warning("Unknown embedding model '%s', falling back to hash.", model_key)
        return HashEmbeddingModel()

    try:
        import torch  # noqa: F401
        import transformers  # noqa: F401
    except ImportError:
        logger.warning(
            "Embedding model '%s' requires torch + transformers. "
            "Falling back to hash embeddings.  Install with: "
            "pip install repograph[embeddings]",
            model_key,
        )
        return HashEmbeddingModel()
    return TransformerEmbedder(model_key=model_key, cache_dir=cache_dir, device=device)


# ===================================================================
# Utility
# ===================================================================

def _l2_normalize(vec: List[float]) -> List[float]:
    norm = math.sqrt(sum(v * v for v in vec))
    if norm < 1e-12:
        return vec
    return [v / norm for v in vec]
