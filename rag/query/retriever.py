"""
Retriever - Búsqueda semántica por tenant sobre índices FAISS.

Este módulo:
1. Resuelve el namespace del tenant (organization id) a su índice FAISS
2. Busca los chunks más cercanos a la query con sentence-transformers
3. Retorna snippets rankeados con su título de origen

Cada tenant tiene su propio índice en ``<store>/<namespace>/``. El índice lo
construye un proceso externo; acá solo se consulta.
"""

import logging
import pickle
import re
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

import faiss
import numpy as np

DEFAULT_EMBEDDING_MODEL = "all-MiniLM-L6-v2"
DEFAULT_SEARCH_LIMIT = 5

_NAMESPACE_RE = re.compile(r"^[A-Za-z0-9_\-]{1,128}$")

logger = logging.getLogger(__name__)


class NamespaceError(ValueError):
    """Violación de aislamiento entre tenants. Nunca se degrada a fallback."""


def validate_namespace(namespace: str) -> str:
    """Verifica que el namespace sea un organization id utilizable como clave."""
    if not isinstance(namespace, str) or not _NAMESPACE_RE.match(namespace):
        raise NamespaceError(f"Namespace inválido: {namespace!r}")
    return namespace


@dataclass(frozen=True)
class KnowledgeEntry:
    """Fragmento recuperado de la base de conocimiento."""

    content: str
    title: Optional[str] = None
    score: float = 0.0


@dataclass
class SearchResult:
    """Resultado de una búsqueda en el namespace de un tenant."""

    namespace: str
    entries: List[KnowledgeEntry] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.entries

    @property
    def text(self) -> str:
        """Contenido de todos los snippets concatenado."""
        return "\n\n".join(e.content for e in self.entries)

    @property
    def titles(self) -> List[str]:
        """Títulos de origen sin duplicados, en orden de ranking."""
        seen: List[str] = []
        for e in self.entries:
            if e.title and e.title not in seen:
                seen.append(e.title)
        return seen

    def build_context(self) -> str:
        """Contexto etiquetado por fuente para el sintetizador."""
        if self.is_empty:
            return ""
        return (
            f"Found results in {', '.join(self.titles)}. "
            f"Here is the context: \n\n{self.text}"
        )


@dataclass
class _NamespaceIndex:
    index: faiss.Index
    chunks: List[Dict]


class KnowledgeRetriever:
    """Recupera snippets de la base de conocimiento de un tenant."""

    def __init__(
        self,
        store_dir: str | Path,
        model_name: str = None,
        model=None,
        default_limit: int = DEFAULT_SEARCH_LIMIT,
    ):
        """
        Inicializa el retriever.

        Args:
            store_dir: Directorio raíz con un subdirectorio por namespace
            model_name: Modelo de sentence-transformers (default: all-MiniLM-L6-v2)
            model: Encoder ya cargado (cualquier objeto con ``encode``)
            default_limit: Cantidad de resultados si no se pasa ``limit``
        """
        self.store_dir = Path(store_dir)
        self.model_name = model_name or DEFAULT_EMBEDDING_MODEL
        self._model = model
        self.default_limit = default_limit

        self._cache: Dict[str, _NamespaceIndex] = {}
        self._lock = threading.Lock()
        self._model_lock = threading.Lock()

    @property
    def model(self):
        """Carga el modelo de embeddings la primera vez que se necesita."""
        if self._model is None:
            with self._model_lock:
                if self._model is None:
                    from sentence_transformers import SentenceTransformer

                    logger.info(f"Cargando modelo de embeddings: {self.model_name}")
                    self._model = SentenceTransformer(self.model_name)
        return self._model

    # Index loading

    def _load_namespace(self, namespace: str) -> Optional[_NamespaceIndex]:
        """Carga (y cachea) el índice de un namespace. None si no tiene contenido."""
        with self._lock:
            cached = self._cache.get(namespace)
            if cached is not None:
                return cached

            ns_dir = self.store_dir / namespace
            index_path = ns_dir / "faiss.index"
            chunks_path = ns_dir / "chunks.pkl"

            if not index_path.exists() or not chunks_path.exists():
                logger.info(f"Namespace '{namespace}' sin contenido indexado")
                return None

            index = faiss.read_index(str(index_path))
            with open(chunks_path, "rb") as f:
                chunks = pickle.load(f)

            if len(chunks) != index.ntotal:
                logger.warning(
                    f"[{namespace}] Número de chunks ({len(chunks)}) "
                    f"no coincide con vectores en índice ({index.ntotal})"
                )

            loaded = _NamespaceIndex(index=index, chunks=chunks)
            self._cache[namespace] = loaded
            logger.info(f"[{namespace}] índice cargado ({index.ntotal} vectores)")
            return loaded

    def invalidate(self, namespace: str) -> None:
        """Descarta el índice cacheado de un namespace (p. ej. tras reindexar)."""
        with self._lock:
            self._cache.pop(namespace, None)

    # Search

    def search(
        self, namespace: str, query: str, limit: Optional[int] = None
    ) -> SearchResult:
        """
        Busca en el namespace del tenant los snippets más relevantes.

        Args:
            namespace: Organization id del tenant (autenticado, nunca del usuario)
            query: Consulta en texto libre (no vacía)
            limit: Máximo de resultados (default: ``default_limit``)

        Returns:
            SearchResult (vacío si el namespace no tiene contenido)

        Raises:
            NamespaceError: namespace inválido o chunk de otro tenant en el índice
            ValueError: query vacía
        """
        validate_namespace(namespace)
        if not query or not query.strip():
            raise ValueError("La query de búsqueda está vacía")

        limit = limit or self.default_limit
        loaded = self._load_namespace(namespace)
        if loaded is None or loaded.index.ntotal == 0:
            return SearchResult(namespace=namespace)

        query_embedding = self.model.encode([query], convert_to_numpy=True)
        query_embedding = np.asarray(query_embedding, dtype=np.float32)

        distances, indices = loaded.index.search(query_embedding, limit)

        entries: List[KnowledgeEntry] = []
        for distance, idx in zip(distances[0], indices[0]):
            # idx == -1: el índice tiene menos vectores que ``limit``
            if idx == -1 or idx >= len(loaded.chunks):
                continue

            chunk = loaded.chunks[idx]
            metadata = chunk.get("metadata", {})
            owner = metadata.get("namespace")
            if owner != namespace:
                logger.error(
                    f"Chunk {idx} del índice '{namespace}' pertenece a '{owner}'"
                )
                raise NamespaceError(
                    f"El índice de '{namespace}' contiene datos de otro tenant"
                )

            entries.append(
                KnowledgeEntry(
                    content=chunk.get("text", ""),
                    title=metadata.get("title"),
                    score=float(distance),
                )
            )

        logger.info(f"[{namespace}] search '{query[:40]}' → {len(entries)} resultados")
        return SearchResult(namespace=namespace, entries=entries)
