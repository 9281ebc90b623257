"""Publish the chunk set as a searchable FAISS index.

Layout under ``index_path``::

    CURRENT                      name of the live generation
    generations/<name>/          faiss.index, chunks.jsonl, manifest.json

A publish writes a complete new generation and then replaces ``CURRENT`` in
one rename, so searchers see either the old set or the new one.
"""

import hashlib
import json
import os
import shutil
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional
import logging

import numpy as np

from .faiss_index import FAISSConfig, FAISSIndexManager
from .logging_config import get_audit_logger, log_index_publish
from .models import ChunkRecord

logger = logging.getLogger(__name__)
audit_logger = get_audit_logger("publish")

CURRENT_FILE = "CURRENT"
GENERATIONS_DIR = "generations"
MANIFEST_FILE = "manifest.json"

FRESH = "fresh"
PENDING = "pending"
OVERDUE = "overdue"
UNPUBLISHED = "unpublished"

EmbedFn = Callable[[List[str]], np.ndarray]


def chunk_fingerprint(chunks: List[ChunkRecord]) -> str:
    """Stable digest of chunk ids, text, attributes and source links."""
    digest = hashlib.sha256()
    for chunk in sorted(chunks, key=lambda c: (c.filepath, c.filename, c.page_index, c.chunk_index)):
        digest.update(chunk.chunk_id.encode("utf-8"))
        digest.update(b"\0")
        digest.update(chunk.chunk.encode("utf-8"))
        digest.update(b"\0")
        digest.update(json.dumps(chunk.attributes(), sort_keys=True, ensure_ascii=False).encode("utf-8"))
        digest.update(b"\0")
        digest.update((chunk.file_url or "").encode("utf-8"))
        digest.update(b"\n")
    return digest.hexdigest()


@dataclass
class PublishResult:
    """Outcome of one publish call."""
    published: bool
    fingerprint: str
    chunk_count: int
    generation: Optional[str] = None
    elapsed_ms: float = 0.0

    def as_dict(self) -> Dict[str, Any]:
        return {
            "published": self.published,
            "fingerprint": self.fingerprint[:12],
            "chunk_count": self.chunk_count,
            "generation": self.generation,
            "elapsed_ms": round(self.elapsed_ms, 1),
        }


class IndexPublisher(ABC):
    """Exposes the chunk set for search."""

    @abstractmethod
    def publish(self, chunks: List[ChunkRecord], force: bool = False) -> PublishResult:
        """Make ``chunks`` the searchable set."""

    @abstractmethod
    def freshness(self, chunks: List[ChunkRecord], now: Optional[datetime] = None) -> str:
        """How far the published index is behind ``chunks``."""

    @abstractmethod
    def search(self, query: str, k: int = 10, filter_spec: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        """Ranked hits for ``query``."""


class FaissIndexPublisher(IndexPublisher):
    """Generation-directory FAISS publisher with a manifest per generation."""

    def __init__(
        self,
        index_path: str,
        embed_fn: EmbedFn,
        target_lag_seconds: int = 3600,
        faiss_config: Optional[FAISSConfig] = None,
    ):
        self.index_path = Path(index_path)
        self.embed_fn = embed_fn
        self.target_lag_seconds = target_lag_seconds
        self.faiss_config = faiss_config or FAISSConfig()

    # -- layout -----------------------------------------------------------

    def current_generation(self) -> Optional[str]:
        pointer = self.index_path / CURRENT_FILE
        if not pointer.exists():
            return None
        name = pointer.read_text(encoding="utf-8").strip()
        return name or None

    def _generation_dir(self, name: str) -> Path:
        return self.index_path / GENERATIONS_DIR / name

    def manifest(self) -> Optional[Dict[str, Any]]:
        """Manifest of the live generation, or None before the first publish."""
        name = self.current_generation()
        if name is None:
            return None
        path = self._generation_dir(name) / MANIFEST_FILE
        if not path.exists():
            return None
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)

    def _flip(self, name: str) -> None:
        tmp = self.index_path / f"{CURRENT_FILE}.tmp"
        tmp.write_text(name + "\n", encoding="utf-8")
        os.replace(tmp, self.index_path / CURRENT_FILE)

    def _prune(self, keep: List[str]) -> None:
        root = self.index_path / GENERATIONS_DIR
        for child in root.iterdir():
            if child.is_dir() and child.name not in keep:
                shutil.rmtree(child)
                logger.info(f"Removed old index generation {child.name}")

    # -- operations -------------------------------------------------------

    def publish(self, chunks: List[ChunkRecord], force: bool = False) -> PublishResult:
        start_time = time.time()
        fingerprint = chunk_fingerprint(chunks)
        previous = self.current_generation()
        manifest = self.manifest()

        if not force and manifest is not None and manifest.get("fingerprint") == fingerprint:
            logger.info("Chunk set unchanged since last publish, nothing to do")
            return PublishResult(
                published=False,
                fingerprint=fingerprint,
                chunk_count=len(chunks),
                generation=previous,
                elapsed_ms=(time.time() - start_time) * 1000,
            )

        published_at = datetime.now(timezone.utc)
        name = f"{published_at.strftime('%Y%m%dT%H%M%S%f')}-{fingerprint[:12]}"
        generation_dir = self._generation_dir(name)

        texts = [chunk.chunk for chunk in chunks]
        embeddings = self.embed_fn(texts)
        records = [
            {
                "chunk_id": chunk.chunk_id,
                "chunk": chunk.chunk,
                "file_url": chunk.file_url,
                "attributes": chunk.attributes(),
            }
            for chunk in chunks
        ]

        manager = FAISSIndexManager(generation_dir, self.faiss_config)
        manager.index = manager.create_index(embeddings.shape[1])
        manager.add_embeddings(embeddings, records)
        manager.save_index()

        with open(generation_dir / MANIFEST_FILE, "w", encoding="utf-8") as f:
            json.dump(
                {
                    "fingerprint": fingerprint,
                    "published_at": published_at.isoformat(),
                    "chunk_count": len(chunks),
                    "target_lag_seconds": self.target_lag_seconds,
                    "index": manager.get_stats(),
                },
                f,
                indent=2,
            )

        self._flip(name)
        # Keep the previous generation for searches that opened it before the flip
        self._prune([name] + ([previous] if previous else []))

        result = PublishResult(
            published=True,
            fingerprint=fingerprint,
            chunk_count=len(chunks),
            generation=name,
            elapsed_ms=(time.time() - start_time) * 1000,
        )
        log_index_publish(
            audit_logger,
            index_path=str(self.index_path),
            chunk_count=len(chunks),
            fingerprint=fingerprint,
            generation=name,
            publish_time_ms=result.elapsed_ms,
        )
        return result

    def freshness(self, chunks: List[ChunkRecord], now: Optional[datetime] = None) -> str:
        manifest = self.manifest()
        if manifest is None:
            return UNPUBLISHED
        if manifest["fingerprint"] == chunk_fingerprint(chunks):
            return FRESH

        now = now or datetime.now(timezone.utc)
        published_at = datetime.fromisoformat(manifest["published_at"])
        age = (now - published_at).total_seconds()
        return PENDING if age <= self.target_lag_seconds else OVERDUE

    def publish_if_due(self, chunks: List[ChunkRecord], now: Optional[datetime] = None) -> Optional[PublishResult]:
        """Publish only when the index is unpublished or behind by more than the target lag."""
        state = self.freshness(chunks, now)
        if state in (FRESH, PENDING):
            logger.info(f"Index is {state}, not publishing")
            return None
        return self.publish(chunks)

    def search(self, query: str, k: int = 10, filter_spec: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        name = self.current_generation()
        if name is None:
            return []

        manager = FAISSIndexManager(self._generation_dir(name), self.faiss_config)
        if not manager.load_index():
            return []

        query_embedding = self.embed_fn([query])
        hits = manager.search(query_embedding[0], k=k, filter_spec=filter_spec)
        return [
            {
                "chunk_id": record["chunk_id"],
                "score": score,
                "chunk": record["chunk"],
                "file_url": record.get("file_url"),
                **record["attributes"],
            }
            for record, score in hits
        ]
