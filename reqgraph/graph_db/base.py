"""
Abstract interface for the requirements graph store.

Nodes are keyed by natural identifiers (normalized application name,
requirement identifier, description text of secondary entities) so every
write is an idempotent merge that is safe to repeat.
"""

from abc import ABC, abstractmethod
from typing import Any, Optional, Sequence

from reqgraph.models import (
    RelationshipStats,
    RelationshipType,
    Requirement,
    RequirementGraph,
    SearchFilters,
    SearchResult,
)
from reqgraph.utils.errors import PersistenceError
from reqgraph.utils.logging import get_logger, log_performance

logger = get_logger(__name__)

# (node label, edge type from the requirement, key property)
SECONDARY_LINKS: list[tuple[str, str, str]] = [
    ("Risk", "HAS_RISK", "description"),
    ("Constraint", "HAS_CONSTRAINT", "description"),
    ("Assumption", "HAS_ASSUMPTION", "description"),
    ("Person", "AUTHORED_BY", "name"),
    ("Person", "INVOLVES_STAKEHOLDER", "name"),
]
SECONDARY_EDGE_TYPES: tuple[str, ...] = tuple(dict.fromkeys(edge for _, edge, _ in SECONDARY_LINKS))


def primitive_properties(values: dict[str, Any]) -> dict[str, Any]:
    """Keep only values a graph property can hold."""
    result: dict[str, Any] = {}
    for key, value in values.items():
        if value is None or isinstance(value, (str, int, float, bool)):
            result[key] = value
        elif isinstance(value, (list, tuple)) and all(
            isinstance(item, (str, int, float, bool)) for item in value
        ):
            result[key] = list(value)
        else:
            result[key] = str(value)
    return result


def secondary_records(requirement: Requirement) -> dict[tuple[str, str, str], list[dict[str, Any]]]:
    """
    Content-addressed secondary nodes of a requirement, grouped by link.

    Records with an empty key are dropped; None attributes are left out so
    merging never erases what another requirement wrote on a shared node.
    """

    def clean(records: list[dict[str, Any]], key: str) -> list[dict[str, Any]]:
        seen: dict[str, dict[str, Any]] = {}
        for record in records:
            value = str(record.get(key) or "").strip()
            if value and value not in seen:
                seen[value] = {k: v for k, v in {**record, key: value}.items() if v is not None}
        return list(seen.values())

    people = [{"name": requirement.author}] if requirement.author else []
    sources = {
        "HAS_RISK": [risk.model_dump() for risk in requirement.risks],
        "HAS_CONSTRAINT": [constraint.model_dump() for constraint in requirement.constraints],
        "HAS_ASSUMPTION": [assumption.model_dump() for assumption in requirement.assumptions],
        "AUTHORED_BY": people,
        "INVOLVES_STAKEHOLDER": [{"name": name} for name in requirement.involved_stakeholders],
    }
    return {link: clean(sources[link[1]], link[2]) for link in SECONDARY_LINKS}


def derive_relationships(requirement: Requirement) -> list[tuple[RelationshipType, str]]:
    """
    Directed requirement-to-requirement edges declared by a requirement.

    Related identifiers already covered by a more specific relation do not
    get an extra RELATED_TO edge. Self references are ignored.
    """
    source = requirement.identifier
    edges: list[tuple[RelationshipType, str]] = []
    covered: set[str] = set()

    specific = [
        (RelationshipType.DEPENDS_ON, requirement.dependencies.depends_on),
        (RelationshipType.CONFLICTS_WITH, requirement.dependencies.conflicts),
        (RelationshipType.EXTENDS, requirement.dependencies.extends),
    ]
    for relationship_type, targets in specific:
        for target in dict.fromkeys(t.strip() for t in targets):
            if target and target != source:
                edges.append((relationship_type, target))
                covered.add(target)

    for target in dict.fromkeys(t.strip() for t in requirement.related_requirements):
        if target and target != source and target not in covered:
            edges.append((RelationshipType.RELATED_TO, target))

    return edges


class RequirementGraphStore(ABC):
    """
    Abstract base class for requirement graph stores.

    Implementations must make every write an idempotent merge keyed by
    natural identifiers, so concurrent or repeated jobs need no locking.
    """

    async def __aenter__(self) -> "RequirementGraphStore":
        await self.initialize()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    @abstractmethod
    async def initialize(self) -> None:
        """Connect and create constraints and indexes."""
        pass

    @abstractmethod
    async def close(self) -> None:
        """Release connections."""
        pass

    # =========================================================================
    # Writes
    # =========================================================================

    @abstractmethod
    async def upsert_application(self, name: str, attributes: Optional[dict[str, Any]] = None) -> str:
        """
        Create or update an application keyed by its normalized name.

        Returns:
            The application id (its normalized name)

        Raises:
            PersistenceError: If the name is empty or the write fails
        """
        pass

    @abstractmethod
    async def upsert_requirement(
        self,
        application_id: str,
        requirement: Requirement,
        embedding: Optional[Sequence[float]] = None,
    ) -> str:
        """
        Create or update a requirement keyed by identifier.

        On update the version increments. Typed edges to secondary nodes
        are replaced; the secondary nodes themselves are kept.

        Returns:
            The requirement identifier

        Raises:
            PersistenceError: If the identifier is empty, the application
                does not exist or the write fails
        """
        pass

    @abstractmethod
    async def create_relationships(self, requirements: Sequence[Requirement]) -> RelationshipStats:
        """
        Create requirement-to-requirement edges. Each edge is attempted on
        its own; a missing target only fails that edge.
        """
        pass

    @abstractmethod
    async def clear(self) -> None:
        """Delete everything this store wrote."""
        pass

    # =========================================================================
    # Reads
    # =========================================================================

    @abstractmethod
    async def search(
        self,
        query_embedding: Sequence[float],
        query_text: str = "",
        filters: Optional[SearchFilters] = None,
        limit: int = 10,
        min_similarity: Optional[float] = None,
    ) -> list[SearchResult]:
        """
        Hybrid search: weighted cosine similarity plus keyword boost.

        Args:
            query_embedding: Embedding of the query
            query_text: Literal text matched against category, name, tags, description
            filters: Equality filters applied before scoring
            limit: Maximum number of results
            min_similarity: Score floor; keyword matches are always kept

        Returns:
            Results ordered by combined score, highest first
        """
        pass

    @abstractmethod
    async def get_requirement(self, identifier: str) -> Optional[Requirement]:
        """Fetch a requirement with its risks, constraints and assumptions."""
        pass

    @abstractmethod
    async def get_relationships(self, identifier: str) -> list[tuple[RelationshipType, str]]:
        """Outgoing requirement-to-requirement edges of a requirement."""
        pass

    @abstractmethod
    async def get_statistics(self) -> dict[str, Any]:
        """Node and edge counts."""
        pass

    # =========================================================================
    # Composite
    # =========================================================================

    @log_performance
    async def store_graph(
        self,
        graph: RequirementGraph,
        embeddings: Optional[Sequence[Optional[Sequence[float]]]] = None,
    ) -> tuple[str, RelationshipStats]:
        """
        Persist a whole extraction result.

        Args:
            graph: Application and its requirements
            embeddings: Embeddings aligned by index with ``graph.requirements``

        Returns:
            Application id and relationship statistics
        """
        if embeddings is not None and len(embeddings) != len(graph.requirements):
            raise PersistenceError(
                "Embeddings are not aligned with requirements",
                {"requirements": len(graph.requirements), "embeddings": len(embeddings)},
            )

        application = graph.application
        attributes = dict(application.attributes)
        if application.description:
            attributes["description"] = application.description
        application_id = await self.upsert_application(application.name, attributes)

        for index, requirement in enumerate(graph.requirements):
            embedding = embeddings[index] if embeddings is not None else requirement.embedding
            await self.upsert_requirement(application_id, requirement, embedding)

        stats = await self.create_relationships(graph.requirements)
        logger.info(
            "Stored requirement graph",
            extra={
                "application": application_id,
                "requirements": len(graph.requirements),
                "relationships_created": stats.created,
                "relationships_failed": stats.failed,
            },
        )
        return application_id, stats


class GraphStoreFactory:
    """Factory for creating graph store instances."""

    _stores: dict[str, type[RequirementGraphStore]] = {}

    @classmethod
    def register(cls, store_type: str, store_class: type[RequirementGraphStore]) -> None:
        """
        Register a graph store implementation.

        Args:
            store_type: Store type identifier
            store_class: Store class
        """
        cls._stores[store_type] = store_class
        logger.debug(f"Registered graph store type: {store_type}")

    @classmethod
    def create(cls, store_type: str, **kwargs: Any) -> RequirementGraphStore:
        """
        Create a graph store instance.

        Raises:
            ValueError: If the store type is not registered
        """
        if store_type not in cls._stores:
            raise ValueError(
                f"Unknown graph store type: {store_type}. "
                f"Available types: {list(cls._stores.keys())}"
            )
        return cls._stores[store_type](**kwargs)

    @classmethod
    def available(cls) -> list[str]:
        return list(cls._stores.keys())
