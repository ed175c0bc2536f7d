from dataclasses import dataclass
from typing import List, Sequence

import numpy as np

from ..errors import ConfigurationError
from ..logging_config import get_logger
from ..stores import DocumentStore
from .embedding import EmbeddingClient

logger = get_logger(__name__)

USER_TEMPLATE = """Context from uploaded documents:
{context}

Based on the above context, please answer the following question:
{question}"""


@dataclass(frozen=True)
class RetrievedChunk:
    section_id: int
    document_id: int
    content: str
    similarity: float


def _to_vec(raw) -> np.ndarray:
    if raw is None:
        raw = []
    return np.asarray([float(x) for x in raw], dtype=np.float64).reshape(-1)


def cosine_scores(query: np.ndarray, matrix: np.ndarray) -> np.ndarray:
    """Cosine similarity of `query` against each row of `matrix`."""
    norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(query)
    # Zero vectors score 0 instead of nan
    return (matrix @ query) / np.maximum(norms, 1e-12)


def build_context(chunks: Sequence[RetrievedChunk]) -> str:
    return "\n\n".join(c.content for c in chunks)


def build_grounded_prompt(context: str, question: str) -> str:
    return USER_TEMPLATE.format(context=context, question=question)


class Retriever:
    """Tenant-scoped similarity search over document sections."""

    def __init__(self, documents: DocumentStore, embedder: EmbeddingClient, threshold: float = 0.5, top_k: int = 5):
        self.documents = documents
        self.embedder = embedder
        self.threshold = threshold
        self.top_k = top_k

    async def search(
        self,
        tenant_id: str,
        query: str,
        threshold: float | None = None,
        top_k: int | None = None,
    ) -> List[RetrievedChunk]:
        """Best-first chunks with similarity >= threshold; empty when nothing matches
        or when the embedding service or datastore fails."""
        threshold = self.threshold if threshold is None else threshold
        top_k = self.top_k if top_k is None else top_k
        if not query or not query.strip() or top_k <= 0:
            return []

        try:
            q = _to_vec(await self.embedder.embed(query))
            rows = await self.documents.sections_for_tenant(tenant_id)
        except ConfigurationError:
            raise
        except Exception:
            logger.warning("Retrieval failed for tenant %s, continuing without context", tenant_id, exc_info=True)
            return []

        # Cross-tenant rows are never scored, whatever the store returns
        rows = [r for r in rows if r.tenant_id == tenant_id]
        if not rows:
            logger.info("No document sections for tenant %s", tenant_id)
            return []

        vectors = [_to_vec(r.embedding) for r in rows]
        bad = [r.id for r, v in zip(rows, vectors) if v.size != q.size]
        if bad:
            raise ConfigurationError(
                f"Embedding dimension mismatch: query has {q.size}, sections {bad[:5]} differ"
            )

        scores = cosine_scores(q, np.vstack(vectors))
        order = np.argsort(-scores, kind="stable")
        results: List[RetrievedChunk] = []
        for i in order:
            score = float(scores[i])
            if score < threshold:
                break
            r = rows[i]
            results.append(RetrievedChunk(r.id, r.document_id, r.content, score))
            if len(results) >= top_k:
                break
        logger.info("Found %d matching sections for tenant %s", len(results), tenant_id)
        return results
