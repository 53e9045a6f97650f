"""
Retrieval augmentation: chunking, embedding, similarity lookup, and
ingestion of documents into the knowledge base.
"""

import json
import logging
import os
import re
from typing import Any, Dict, List, Optional, Sequence

from pypdf import PdfReader
from pypdf.errors import PdfReadError

from .config import RetrievalConfig
from .errors import EmbeddingError, RetrievalError, UnsupportedDocumentError
from .models import RetrievalChunk
from .ollama_client import EmbeddingProvider
from .vector_store import ChunkVectorStore

logger = logging.getLogger("chatbridge.retrieval")

CONTEXT_TEMPLATE = "Additional context from knowledge base:\n\n{context}\n\nUser question: {prompt}"

SUPPORTED_EXTENSIONS = ("txt", "md", "json", "pdf")


def chunk_text(text: str, size: int, overlap: int, delimiters: Optional[Sequence[str]] = None) -> List[str]:
    """
    Split text into chunks.

    With ``delimiters`` the text is split on any of them and ``overlap`` is
    ignored. Otherwise the text is cut into windows of ``size`` words, each
    starting ``size - overlap`` words after the previous one; the final
    window may be shorter.

    Raises:
        ValueError: If ``size`` is not larger than ``overlap`` in word mode
    """
    if delimiters:
        pattern = "|".join(re.escape(d) for d in delimiters if d)
        if pattern:
            pieces = re.split(pattern, text)
            return [piece.strip() for piece in pieces if piece.strip()]

    if size <= 0 or size <= overlap:
        raise ValueError(f"Chunk size ({size}) must be positive and larger than overlap ({overlap})")
    if overlap < 0:
        raise ValueError(f"Overlap must not be negative, got {overlap}")

    words = text.split()
    chunks = []
    start = 0
    while start < len(words):
        chunks.append(" ".join(words[start:start + size]))
        if start + size >= len(words):
            break
        start += size - overlap
    return chunks


def _json_strings(node: Any) -> List[str]:
    if isinstance(node, str):
        return [node]
    if isinstance(node, list):
        return [s for item in node for s in _json_strings(item)]
    if isinstance(node, dict):
        return [s for value in node.values() for s in _json_strings(value)]
    return []


def _pdf_text(path: str) -> str:
    try:
        reader = PdfReader(path)
        pages = [page.extract_text() or "" for page in reader.pages]
    except PdfReadError as e:
        raise UnsupportedDocumentError(f"{path} is not a readable PDF: {e}") from e
    logger.info(f"Extracted text from {len(pages)} PDF page(s)")
    return "\n".join(pages)


def extract_text(path: str) -> str:
    """
    Read a document as flat text.

    ``.txt`` and ``.md`` files are read as-is; for ``.json`` every string
    value is joined with single spaces; ``.pdf`` pages are joined by newlines.
    """
    extension = os.path.splitext(path)[1].lower().lstrip(".")
    logger.info(f"Parsing file: {path} with extension: {extension}")

    if extension not in SUPPORTED_EXTENSIONS:
        raise UnsupportedDocumentError(
            f"Unsupported file type: {extension or 'none'}. Supported types: "
            + ", ".join(f".{ext}" for ext in SUPPORTED_EXTENSIONS)
        )

    if extension == "pdf":
        return _pdf_text(path)

    with open(path, "r", encoding="utf-8") as f:
        if extension == "json":
            try:
                document = json.load(f)
            except json.JSONDecodeError as e:
                raise UnsupportedDocumentError(f"{path} is not valid JSON: {e}") from e
            return " ".join(_json_strings(document)).strip()
        return f.read()


class RetrievalAugmenter:
    """Grounds prompts in stored knowledge-base chunks."""

    def __init__(self,
                 embedder: EmbeddingProvider,
                 store: ChunkVectorStore,
                 config: Optional[RetrievalConfig] = None):
        self.embedder = embedder
        self.store = store
        self.config = config or RetrievalConfig()

    def chunk(self, text: str, size: int, overlap: int, delimiters: Optional[Sequence[str]] = None) -> List[str]:
        return chunk_text(text, size, overlap, delimiters)

    def embed(self, chunks: Sequence[str]) -> List[RetrievalChunk]:
        """
        Embed each chunk with its own request, in order.

        A chunk whose embedding fails is left out; the others are still returned.
        """
        embedded = []
        for number, text in enumerate(chunks, 1):
            try:
                vector = self.embedder.embed(text)
            except EmbeddingError as e:
                logger.warning(f"Embedding of chunk {number}/{len(chunks)} failed: {e}")
                continue
            embedded.append(RetrievalChunk(text=text, embedding=vector))
            logger.debug(f"Chunk {number}/{len(chunks)} embedded")
        return embedded

    def retrieve(self, query_chunks: Sequence[RetrievalChunk], min_similarity: float) -> List[str]:
        """
        Collect stored chunk texts similar to any query chunk.

        Results from all queries are de-duplicated and ordered by their best
        similarity, highest first.
        """
        best: Dict[str, float] = {}
        for query in query_chunks:
            matches = self.store.find_similar(query.embedding, min_similarity)
            logger.info(f"Found {len(matches)} similar chunks for chunk: {query.text[:50]}...")
            for match in matches:
                if match.similarity > best.get(match.text, float("-inf")):
                    best[match.text] = match.similarity
        return sorted(best, key=lambda text: best[text], reverse=True)

    def enrich(self, prompt: str, min_similarity: Optional[float] = None) -> str:
        """
        Prefix the prompt with knowledge-base context.

        Any failure, or no chunk above the threshold, returns the prompt unchanged.
        """
        threshold = self.config.min_similarity if min_similarity is None else min_similarity
        logger.info("Enriching prompt with knowledge base context")
        try:
            chunks = self.chunk(prompt, self.config.query_chunk_size, self.config.query_overlap)
            query_chunks = self.embed(chunks)
            if chunks and not query_chunks:
                raise RetrievalError("No prompt chunk could be embedded")
            similar = self.retrieve(query_chunks, threshold)
        except (RetrievalError, ValueError) as e:
            logger.warning(f"Retrieval failed, using original prompt: {e}")
            return prompt

        if not similar:
            logger.info("No similar chunks found, using original prompt")
            return prompt

        logger.info(f"Adding {len(similar)} unique chunks as context")
        return CONTEXT_TEMPLATE.format(context="\n\n".join(similar), prompt=prompt)

    def ingest_text(self,
                    text: str,
                    source: str = "text",
                    size: Optional[int] = None,
                    overlap: Optional[int] = None,
                    delimiters: Optional[Sequence[str]] = None) -> int:
        """
        Chunk, embed and store text.

        Returns:
            Number of chunks stored
        """
        size = self.config.chunk_size if size is None else size
        overlap = self.config.overlap if overlap is None else overlap
        if delimiters:
            overlap = 0

        chunks = self.chunk(text, size, overlap, delimiters)
        embedded = self.embed(chunks)
        metadata = {
            "model": getattr(self.embedder, "embedding_model", type(self.embedder).__name__),
            "chunkSize": size,
            "overlap": overlap,
            "separator": ", ".join(delimiters) if delimiters else "whitespace",
            "totalChunks": len(chunks),
            "embeddedChunks": len(embedded),
            "sourceFile": source,
        }
        logger.info(f"Embeddings metadata: {metadata}")
        return self.store.add_chunks(embedded)

    def ingest(self,
               path: str,
               size: Optional[int] = None,
               overlap: Optional[int] = None,
               delimiters: Optional[Sequence[str]] = None) -> int:
        """Extract a document's text and ingest it."""
        return self.ingest_text(extract_text(path), os.path.basename(path), size, overlap, delimiters)
