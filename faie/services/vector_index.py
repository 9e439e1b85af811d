from __future__ import annotations

import os
import threading
from dataclasses import dataclass, field
from typing import Iterable

import numpy as np
from sqlalchemy import select
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session

from faie.db.models import Embedding
from faie.errors import SinkFailure
from faie.tools.utils import now_ms

INDEX_FILE = "faiss.index"


@dataclass
class VectorMatch:
    feedback_id: int
    score: float
    metadata: dict = field(default_factory=dict)


def _to_f32(vec: Iterable[float]) -> np.ndarray:
    return np.asarray(list(vec), dtype="float32")


def _normalize_rows(X: np.ndarray) -> np.ndarray:
    # cosine similarity => normalize vectors to unit length and use dot product
    norms = np.linalg.norm(X, axis=1, keepdims=True) + 1e-12
    return X / norms


def pack(vec: list[float]) -> bytes:
    return np.asarray(vec, dtype="float32").tobytes()


def unpack(blob: bytes) -> list[float]:
    return np.frombuffer(blob, dtype="float32").tolist()


def build_index(vectors: list[list[float]], ids: list[int]):
    """
    Build an IndexFlatIP (inner product) over L2-normalized vectors => cosine similarity,
    wrapped in an IndexIDMap2 so entries can be replaced by feedback id.
    """
    import faiss

    if not vectors:
        return None

    X = np.vstack([_to_f32(v) for v in vectors])
    X = _normalize_rows(X)
    dim = X.shape[1]

    index = faiss.IndexIDMap2(faiss.IndexFlatIP(dim))
    index.add_with_ids(X, np.asarray(ids, dtype="int64"))
    return index


def search(index, query_vec: list[float], k: int = 5) -> list[tuple[int, float]]:
    """
    Returns list of (feedback_id, similarity) sorted by similarity desc.
    Similarity is cosine similarity in [-1, 1] typically.
    """
    if index is None or index.ntotal == 0:
        return []

    q = _normalize_rows(_to_f32(query_vec).reshape(1, -1))
    scores, idxs = index.search(q, min(k, index.ntotal))

    out: list[tuple[int, float]] = []
    for score, i in zip(scores[0], idxs[0]):
        if i == -1:
            continue
        out.append((int(i), float(score)))
    return out


class VectorIndex:
    """
    faiss index over feedback embeddings. Vectors and their metadata are
    durable in the embeddings table; the faiss file is a cache rebuilt from it.
    """

    def __init__(self, engine: Engine, index_dir: str = "data") -> None:
        self.engine = engine
        self.index_dir = index_dir
        self._index = None
        self._loaded = False
        self._lock = threading.Lock()

    @property
    def index_path(self) -> str:
        return os.path.join(self.index_dir, INDEX_FILE)

    def _save(self) -> None:
        import faiss

        os.makedirs(self.index_dir, exist_ok=True)
        faiss.write_index(self._index, self.index_path)

    def _rebuild_from_db(self) -> None:
        with Session(self.engine) as session:
            rows = session.scalars(select(Embedding)).all()
            vectors = [unpack(r.vector) for r in rows]
            ids = [r.feedback_id for r in rows]
        self._index = build_index(vectors, ids)
        if self._index is not None:
            self._save()

    def _ensure_loaded(self) -> None:
        if self._loaded:
            return
        import faiss

        if os.path.exists(self.index_path):
            self._index = faiss.read_index(self.index_path)
        else:
            self._rebuild_from_db()
        self._loaded = True

    def upsert(self, feedback_id: int, vector: list[float], metadata: dict) -> None:
        if not vector:
            raise SinkFailure(f"empty vector for feedback {feedback_id}")

        with self._lock:
            self._ensure_loaded()
            if self._index is not None and self._index.d != len(vector):
                raise SinkFailure(
                    f"vector dim {len(vector)} does not match index dim {self._index.d}"
                )

            with Session(self.engine) as session:
                row = session.scalar(select(Embedding).filter_by(feedback_id=feedback_id))
                if row is None:
                    row = Embedding(feedback_id=feedback_id)
                    session.add(row)
                row.dim = len(vector)
                row.vector = pack(vector)
                row.metadata_json = metadata
                row.updated_at = now_ms()
                session.commit()

            x = _normalize_rows(_to_f32(vector).reshape(1, -1))
            ids = np.asarray([feedback_id], dtype="int64")
            if self._index is None:
                self._index = build_index([vector], [feedback_id])
            else:
                self._index.remove_ids(ids)
                self._index.add_with_ids(x, ids)
            self._save()

    def query(self, vector: list[float], top_k: int = 5) -> list[VectorMatch]:
        with self._lock:
            self._ensure_loaded()
            hits = search(self._index, vector, k=top_k)

        if not hits:
            return []

        with Session(self.engine) as session:
            rows = session.scalars(
                select(Embedding).where(Embedding.feedback_id.in_([fid for fid, _ in hits]))
            ).all()
            meta = {r.feedback_id: dict(r.metadata_json or {}) for r in rows}

        return [VectorMatch(feedback_id=fid, score=sim, metadata=meta.get(fid, {})) for fid, sim in hits]
