"""FAISS index over chunk embeddings, with a JSON-lines sidecar of filterable attributes."""

import json
import os
import logging
from pathlib import Path
from typing import List, Dict, Any, Optional, Tuple
import numpy as np
from dotenv import load_dotenv

import faiss

# Load environment variables
load_dotenv()

logger = logging.getLogger(__name__)

INDEX_FILE = "faiss.index"
RECORDS_FILE = "chunks.jsonl"


class FAISSConfig:
    """Configuration for FAISS index."""
    def __init__(self, index_type: Optional[str] = None):
        self.index_type = (index_type or os.getenv("FAISS_INDEX", "HNSW")).upper()
        self.hnsw_m = 16  # Number of bidirectional links for HNSW
        self.hnsw_ef_construction = 200  # Size of dynamic candidate list for HNSW
        self.hnsw_ef_search = 100  # Size of dynamic candidate list for search


def _normalize(vectors: np.ndarray) -> np.ndarray:
    norms = np.linalg.norm(vectors, axis=-1, keepdims=True)
    norms[norms == 0] = 1.0
    return (vectors / norms).astype(np.float32)


def matches_filter(attributes: Dict[str, Any], filter_spec: Optional[Dict[str, Any]]) -> bool:
    """
    Evaluate a search filter against a chunk's attributes.

    Supports {"@eq": {attr: value}}, {"@contains": {attr: value}} (substring,
    or membership for list values), and {"@and"|"@or": [...]}, {"@not": {...}}.
    """
    if not filter_spec:
        return True

    for operator, operand in filter_spec.items():
        if operator == "@eq":
            if any(attributes.get(key) != value for key, value in operand.items()):
                return False
        elif operator == "@contains":
            for key, value in operand.items():
                actual = attributes.get(key)
                if actual is None:
                    return False
                if isinstance(actual, list):
                    if value not in actual:
                        return False
                elif str(value) not in str(actual):
                    return False
        elif operator == "@and":
            if not all(matches_filter(attributes, sub) for sub in operand):
                return False
        elif operator == "@or":
            if not any(matches_filter(attributes, sub) for sub in operand):
                return False
        elif operator == "@not":
            if matches_filter(attributes, operand):
                return False
        else:
            raise ValueError(f"Unsupported filter operator: {operator}")
    return True


class FAISSIndexManager:
    """Manages FAISS index operations for one index generation."""

    def __init__(self, index_path: Path, config: Optional[FAISSConfig] = None):
        self.index_path = index_path
        self.config = config or FAISSConfig()
        self.index: Optional[faiss.Index] = None
        self.records: List[Dict[str, Any]] = []  # Row i describes FAISS id i

    def create_index(self, dimensions: int) -> faiss.Index:
        """Create a new inner-product FAISS index (cosine on normalized vectors)."""
        if self.config.index_type == "HNSW":
            index = faiss.IndexHNSWFlat(dimensions, self.config.hnsw_m, faiss.METRIC_INNER_PRODUCT)
            index.hnsw.efConstruction = self.config.hnsw_ef_construction
            index.hnsw.efSearch = self.config.hnsw_ef_search

            logger.info(f"Created HNSW index with dimensions={dimensions}, M={self.config.hnsw_m}")
        else:
            index = faiss.IndexFlatIP(dimensions)
            logger.info(f"Created flat index with dimensions={dimensions}")

        return index

    def add_embeddings(self, embeddings: np.ndarray, records: List[Dict[str, Any]]) -> None:
        """Add embeddings with their chunk records to the index."""
        if len(embeddings) != len(records):
            raise ValueError("Number of embeddings must match number of records")

        if self.index is None:
            self.index = self.create_index(embeddings.shape[1])

        if len(records):
            self.index.add(_normalize(embeddings))
        self.records.extend(records)

        logger.info(f"Added {len(records)} embeddings to FAISS index")

    def load_index(self) -> bool:
        """Load an index generation from disk."""
        index_file = self.index_path / INDEX_FILE
        records_file = self.index_path / RECORDS_FILE

        if not index_file.exists() or not records_file.exists():
            logger.info(f"No FAISS index found at {self.index_path}")
            return False

        self.index = faiss.read_index(str(index_file))
        with open(records_file, "r", encoding="utf-8") as f:
            self.records = [json.loads(line) for line in f if line.strip()]

        logger.info(f"Loaded FAISS index with {self.index.ntotal} vectors")
        return True

    def save_index(self) -> None:
        """Save index and records to disk."""
        if self.index is None:
            raise ValueError("No index to save")

        self.index_path.mkdir(parents=True, exist_ok=True)
        faiss.write_index(self.index, str(self.index_path / INDEX_FILE))

        with open(self.index_path / RECORDS_FILE, "w", encoding="utf-8") as f:
            for record in self.records:
                f.write(json.dumps(record, ensure_ascii=False, sort_keys=True) + "\n")

        logger.info(f"Saved FAISS index with {self.index.ntotal} vectors to {self.index_path}")

    def search(
        self,
        query_embedding: np.ndarray,
        k: int = 10,
        filter_spec: Optional[Dict[str, Any]] = None
    ) -> List[Tuple[Dict[str, Any], float]]:
        """Search the index; filters are applied to the attribute sidecar."""
        if self.index is None:
            raise ValueError("No index loaded")
        if self.index.ntotal == 0:
            return []

        # Ensure query is 2D
        if query_embedding.ndim == 1:
            query_embedding = query_embedding.reshape(1, -1)

        # Filtered searches rank everything, then drop non-matching rows
        candidates = self.index.ntotal if filter_spec else min(k, self.index.ntotal)
        scores, indices = self.index.search(_normalize(query_embedding), candidates)

        results = []
        for score, idx in zip(scores[0], indices[0]):
            if idx == -1:  # -1 means not found
                continue
            record = self.records[idx]
            if not matches_filter(record["attributes"], filter_spec):
                continue
            results.append((record, float(score)))
            if len(results) >= k:
                break

        return results

    def get_stats(self) -> Dict[str, Any]:
        """Get index statistics."""
        if self.index is None:
            return {"total_vectors": 0, "index_type": "None"}

        return {
            "total_vectors": self.index.ntotal,
            "index_type": str(type(self.index).__name__),
            "dimensions": self.index.d if hasattr(self.index, 'd') else None,
            "mapped_chunks": len(self.records)
        }
