"""
In-process requirement graph store.

Implements the same merge semantics as the Neo4j store with dictionaries.
Used for tests, dry runs and single-process deployments without a database.
"""

import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional, Sequence

from reqgraph.graph_db.base import (
    SECONDARY_EDGE_TYPES,
    SECONDARY_LINKS,
    GraphStoreFactory,
    RequirementGraphStore,
    derive_relationships,
    primitive_properties,
    secondary_records,
)
from reqgraph.graph_db.scoring import SearchWeights, rank
from reqgraph.models import (
    RelationshipStats,
    RelationshipType,
    Requirement,
    SearchFilters,
    SearchResult,
    normalize_application_name,
)
from reqgraph.utils.errors import PersistenceError
from reqgraph.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class _Node:
    properties: dict[str, Any]
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: Optional[datetime] = None


class InMemoryRequirementStore(RequirementGraphStore):
    """Dictionary-backed store with idempotent merges."""

    def __init__(self, weights: Optional[SearchWeights] = None) -> None:
        self.weights = weights or SearchWeights()
        self._lock = threading.Lock()
        self._applications: dict[str, _Node] = {}
        self._requirements: dict[str, _Node] = {}
        self._embeddings: dict[str, list[float]] = {}
        # (label, key) -> node
        self._secondary: dict[tuple[str, str], _Node] = {}
        # (source, edge type, target label, target key)
        self._edges: set[tuple[str, str, str, str]] = set()

    async def initialize(self) -> None:
        logger.debug("In-memory graph store ready")

    async def close(self) -> None:
        pass

    # =========================================================================
    # Writes
    # =========================================================================

    async def upsert_application(self, name: str, attributes: Optional[dict[str, Any]] = None) -> str:
        key = normalize_application_name(name or "")
        if not key:
            raise PersistenceError("Cannot store an application without a name")

        properties = {**primitive_properties(attributes or {}), "name": name.strip(), "nameKey": key}
        with self._lock:
            node = self._applications.get(key)
            if node is None:
                self._applications[key] = _Node(properties)
            else:
                node.properties.update(properties)
                node.updated_at = datetime.now(timezone.utc)
        return key

    async def upsert_requirement(
        self,
        application_id: str,
        requirement: Requirement,
        embedding: Optional[Sequence[float]] = None,
    ) -> str:
        identifier = requirement.identifier.strip()
        if not identifier:
            raise PersistenceError("Cannot store a requirement without an identifier")

        properties = requirement.to_graph_properties()
        properties["identifier"] = identifier

        with self._lock:
            if application_id not in self._applications:
                raise PersistenceError(
                    f"Application '{application_id}' does not exist",
                    {"identifier": identifier},
                )

            node = self._requirements.get(identifier)
            if node is None:
                self._requirements[identifier] = _Node({**properties, "version": 1})
            else:
                node.properties.update(properties)
                node.properties["version"] = node.properties.get("version", 0) + 1
                node.updated_at = datetime.now(timezone.utc)

            if embedding is not None:
                self._embeddings[identifier] = [float(value) for value in embedding]

            self._edges.add((application_id, "HAS_REQUIREMENT", "Requirement", identifier))
            self._edges = {
                edge for edge in self._edges
                if not (edge[0] == identifier and edge[1] in SECONDARY_EDGE_TYPES)
            }

            for (label, edge_type, key_field), records in secondary_records(requirement).items():
                for record in records:
                    key = record[key_field]
                    secondary = self._secondary.setdefault((label, key), _Node({}))
                    secondary.properties.update(record)
                    self._edges.add((identifier, edge_type, label, key))

        return identifier

    async def create_relationships(self, requirements: Sequence[Requirement]) -> RelationshipStats:
        stats = RelationshipStats()

        for requirement in requirements:
            source = requirement.identifier.strip()
            for relationship_type, target in derive_relationships(requirement):
                with self._lock:
                    missing = [i for i in (source, target) if i not in self._requirements]
                    if not missing:
                        self._edges.add((source, relationship_type.value, "Requirement", target))

                if missing:
                    message = f"{source} -[{relationship_type.value}]-> {target}: missing {', '.join(missing)}"
                    logger.warning("Skipping relationship with missing node", extra={"edge": message})
                    stats.failed += 1
                    stats.errors.append(message)
                else:
                    stats.created += 1

        return stats

    async def clear(self) -> None:
        with self._lock:
            self._applications.clear()
            self._requirements.clear()
            self._embeddings.clear()
            self._secondary.clear()
            self._edges.clear()

    # =========================================================================
    # Reads
    # =========================================================================

    def _build_requirement(self, identifier: str, with_secondary: bool = False) -> Requirement:
        data: dict[str, Any] = dict(self._requirements[identifier].properties)
        if with_secondary:
            for label, edge_type, _ in SECONDARY_LINKS[:3]:
                data[label.lower() + "s"] = [
                    dict(self._secondary[(label, key)].properties)
                    for source, edge, target_label, key in sorted(self._edges)
                    if source == identifier and edge == edge_type and target_label == label
                ]
        return Requirement.from_graph_properties(data)

    async def search(
        self,
        query_embedding: Sequence[float],
        query_text: str = "",
        filters: Optional[SearchFilters] = None,
        limit: int = 10,
        min_similarity: Optional[float] = None,
    ) -> list[SearchResult]:
        with self._lock:
            candidates = [
                (self._build_requirement(identifier), self._embeddings.get(identifier))
                for identifier in self._requirements
            ]
        return rank(
            candidates,
            query_embedding,
            query_text=query_text,
            filters=filters,
            limit=limit,
            min_similarity=min_similarity,
            weights=self.weights,
        )

    async def get_requirement(self, identifier: str) -> Optional[Requirement]:
        with self._lock:
            if identifier not in self._requirements:
                return None
            requirement = self._build_requirement(identifier, with_secondary=True)
            embedding = self._embeddings.get(identifier)
        return requirement.model_copy(update={"embedding": embedding})

    async def get_relationships(self, identifier: str) -> list[tuple[RelationshipType, str]]:
        types = {t.value for t in RelationshipType}
        with self._lock:
            return sorted(
                (RelationshipType(edge), target)
                for source, edge, label, target in self._edges
                if source == identifier and edge in types
            )

    async def get_application_requirements(self, application_id: str) -> list[str]:
        """Identifiers linked to an application."""
        with self._lock:
            return sorted(
                target for source, edge, _, target in self._edges
                if source == application_id and edge == "HAS_REQUIREMENT"
            )

    async def get_statistics(self) -> dict[str, Any]:
        with self._lock:
            relationships: dict[str, int] = {}
            for _, edge, _, _ in self._edges:
                relationships[edge] = relationships.get(edge, 0) + 1
            nodes = {"Application": len(self._applications), "Requirement": len(self._requirements)}
            for label, _ in self._secondary:
                nodes[label] = nodes.get(label, 0) + 1
            return {
                "nodes": nodes,
                "relationships": relationships,
                "requirements_with_embeddings": len(self._embeddings),
            }


GraphStoreFactory.register("memory", InMemoryRequirementStore)
