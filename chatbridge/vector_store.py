"""
Vector storage for knowledge-base chunks.
"""

import json
import logging
import os
import threading
from typing import List, Sequence

import numpy as np

from .errors import RetrievalError
from .models import RetrievalChunk

logger = logging.getLogger("chatbridge.vector_store")


class ChunkVectorStore:
    """
    Chunk texts and their embeddings kept in memory and mirrored to local files.

    Vectors live in ``vectors.npy`` (one row per chunk) and the texts in
    ``chunks.json`` in the same order.
    """

    def __init__(self, storage_dir: str = "data/rag_store"):
        self.storage_dir = storage_dir
        self.vectors_file = os.path.join(storage_dir, "vectors.npy")
        self.chunks_file = os.path.join(storage_dir, "chunks.json")
        self.vectors = np.zeros((0, 0))
        self.texts: List[str] = []
        self._lock = threading.Lock()

        # Create the storage directory if it doesn't exist
        os.makedirs(storage_dir, exist_ok=True)

        self._load()

    def _load(self):
        """Load vectors and chunk texts from disk."""
        try:
            if os.path.exists(self.vectors_file) and os.path.exists(self.chunks_file):
                self.vectors = np.load(self.vectors_file)
                with open(self.chunks_file, 'r', encoding='utf-8') as f:
                    self.texts = json.load(f)
                logger.info(f"Loaded {len(self.texts)} chunks from disk.")
            else:
                logger.info("No existing chunk storage found. Starting with empty storage.")
        except (OSError, ValueError) as e:
            logger.error(f"Error loading vector store: {e}")
            self.vectors = np.zeros((0, 0))
            self.texts = []

    def _save(self):
        """Save vectors and chunk texts to disk."""
        try:
            np.save(self.vectors_file, self.vectors)
            with open(self.chunks_file, 'w', encoding='utf-8') as f:
                json.dump(self.texts, f)
        except OSError as e:
            raise RetrievalError(f"Could not save vector store to {self.storage_dir}: {e}") from e
        logger.info(f"Saved {len(self.texts)} chunks to disk.")

    def __len__(self) -> int:
        return len(self.texts)

    @property
    def dimension(self) -> int:
        return int(self.vectors.shape[1]) if self.vectors.shape[0] else 0

    def add_chunks(self, chunks: Sequence[RetrievalChunk]) -> int:
        """
        Add chunks and persist the store.

        Chunks whose embedding dimension differs from the stored one are skipped.

        Returns:
            Number of chunks added
        """
        added = 0
        with self._lock:
            for chunk in chunks:
                embedding = np.asarray(chunk.embedding, dtype=float)
                # Dimension is fixed by the first vector stored
                if self.vectors.shape[0] == 0:
                    self.vectors = np.zeros((0, embedding.shape[0]))
                if self.vectors.shape[1] != embedding.shape[0]:
                    logger.error(f"Embedding dimension mismatch: expected {self.vectors.shape[1]}, "
                                 f"got {embedding.shape[0]}")
                    continue
                self.vectors = np.vstack((self.vectors, embedding))
                self.texts.append(chunk.text)
                added += 1
            if added:
                self._save()
        return added

    def find_similar(self, query_embedding: Sequence[float], min_similarity: float) -> List[RetrievalChunk]:
        """
        Find stored chunks whose cosine similarity to the query is strictly above ``min_similarity``.

        Args:
            query_embedding: The embedding vector to search for.
            min_similarity: Exclusive lower bound on similarity.

        Returns:
            Matching chunks, most similar first.
        """
        query = np.asarray(query_embedding, dtype=float)
        with self._lock:
            if self.vectors.shape[0] == 0:
                return []
            if self.vectors.shape[1] != query.shape[0]:
                logger.error(f"Query embedding dimension mismatch: expected {self.vectors.shape[1]}, "
                             f"got {query.shape[0]}")
                return []

            norms = np.linalg.norm(self.vectors, axis=1) * np.linalg.norm(query)
            dots = np.dot(self.vectors, query)
            # Zero vectors are treated as dissimilar to everything
            similarities = np.divide(dots, norms, out=np.zeros_like(dots), where=norms != 0)

            order = np.argsort(-similarities, kind="stable")
            results = []
            for idx in order:
                similarity = float(similarities[idx])
                if similarity <= min_similarity:
                    break
                results.append(RetrievalChunk(
                    text=self.texts[idx],
                    embedding=self.vectors[idx].tolist(),
                    similarity=similarity,
                ))
            return results

    def clear(self):
        """Clear the vector store."""
        with self._lock:
            self.vectors = np.zeros((0, 0))
            self.texts = []
            for path in (self.vectors_file, self.chunks_file):
                if os.path.exists(path):
                    os.remove(path)
        logger.info("Vector store cleared.")
