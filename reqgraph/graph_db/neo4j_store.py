"""
Neo4j implementation of the requirement graph store.

All writes are MERGE statements keyed by natural identifiers. A requirement
upsert runs as one managed write transaction.
"""

import re
from typing import Any, Optional, Sequence

from neo4j import AsyncDriver, AsyncGraphDatabase, AsyncManagedTransaction
from neo4j.exceptions import DriverError, Neo4jError

from reqgraph.config import Settings, get_settings
from reqgraph.graph_db.base import (
    SECONDARY_EDGE_TYPES,
    SECONDARY_LINKS,
    GraphStoreFactory,
    RequirementGraphStore,
    derive_relationships,
    primitive_properties,
    secondary_records,
)
from reqgraph.graph_db.scoring import SearchWeights
from reqgraph.models import (
    RelationshipStats,
    RelationshipType,
    Requirement,
    SearchFilters,
    SearchResult,
    normalize_application_name,
)
from reqgraph.utils.errors import (
    ConfigurationError,
    GraphConnectionError,
    GraphDatabaseError,
    GraphDatabaseNotInitializedError,
    GraphQueryError,
    PersistenceError,
)
from reqgraph.utils.logging import get_logger, log_performance

logger = get_logger(__name__)

_DRIVER_ERRORS = (Neo4jError, DriverError)
_FUNCTION_NAME = re.compile(r"^[A-Za-z_][\w.]*$")

SCHEMA_STATEMENTS = [
    "CREATE CONSTRAINT requirement_identifier IF NOT EXISTS "
    "FOR (r:Requirement) REQUIRE r.identifier IS UNIQUE",
    "CREATE CONSTRAINT application_name_key IF NOT EXISTS "
    "FOR (a:Application) REQUIRE a.nameKey IS UNIQUE",
    "CREATE CONSTRAINT risk_description IF NOT EXISTS "
    "FOR (n:Risk) REQUIRE n.description IS UNIQUE",
    "CREATE CONSTRAINT constraint_description IF NOT EXISTS "
    "FOR (n:Constraint) REQUIRE n.description IS UNIQUE",
    "CREATE CONSTRAINT assumption_description IF NOT EXISTS "
    "FOR (n:Assumption) REQUIRE n.description IS UNIQUE",
    "CREATE CONSTRAINT person_name IF NOT EXISTS FOR (n:Person) REQUIRE n.name IS UNIQUE",
    "CREATE INDEX requirement_type IF NOT EXISTS FOR (r:Requirement) ON (r.requirementType)",
    "CREATE INDEX requirement_priority IF NOT EXISTS FOR (r:Requirement) ON (r.priority)",
    "CREATE INDEX requirement_status IF NOT EXISTS FOR (r:Requirement) ON (r.status)",
    "CREATE INDEX requirement_category IF NOT EXISTS FOR (r:Requirement) ON (r.category)",
]

UPSERT_APPLICATION = """
MERGE (a:Application {nameKey: $nameKey})
ON CREATE SET a.createdAt = datetime()
SET a += $attributes, a.name = $name, a.updatedAt = datetime()
RETURN a.nameKey AS id
"""

UPSERT_REQUIREMENT = f"""
MATCH (a:Application {{nameKey: $applicationId}})
MERGE (r:Requirement {{identifier: $identifier}})
ON CREATE SET r.version = 1, r.createdAt = datetime()
ON MATCH SET r.version = coalesce(r.version, 0) + 1
SET r += $properties, r.updatedAt = datetime()
MERGE (a)-[:HAS_REQUIREMENT]->(r)
WITH r
OPTIONAL MATCH (r)-[old:{'|'.join(SECONDARY_EDGE_TYPES)}]->()
WITH r, collect(old) AS stale
FOREACH (edge IN stale | DELETE edge)
RETURN r.identifier AS identifier, r.version AS version
"""

LINK_SECONDARY = """
MATCH (r:Requirement {{identifier: $identifier}})
UNWIND $items AS item
MERGE (n:{label} {{{key}: item.{key}}})
SET n += item
MERGE (r)-[:{edge}]->(n)
"""

CREATE_RELATIONSHIP = """
MATCH (s:Requirement {{identifier: $source}})
MATCH (t:Requirement {{identifier: $target}})
MERGE (s)-[rel:{edge}]->(t)
RETURN type(rel) AS type
"""

GET_REQUIREMENT = """
MATCH (r:Requirement {identifier: $identifier})
OPTIONAL MATCH (r)-[:HAS_RISK]->(risk:Risk)
WITH r, collect(risk {.*}) AS risks
OPTIONAL MATCH (r)-[:HAS_CONSTRAINT]->(c:Constraint)
WITH r, risks, collect(c {.*}) AS constraints
OPTIONAL MATCH (r)-[:HAS_ASSUMPTION]->(s:Assumption)
RETURN r {.*} AS properties, risks, constraints, collect(s {.*}) AS assumptions
"""

GET_RELATIONSHIPS = """
MATCH (r:Requirement {identifier: $identifier})-[rel:DEPENDS_ON|CONFLICTS_WITH|EXTENDS|RELATED_TO]->(t:Requirement)
RETURN type(rel) AS type, t.identifier AS target
ORDER BY type, target
"""

SEARCH_TEMPLATE = """
MATCH (r:Requirement)
WHERE {where}
WITH r, {similarity_function}(r.embedding, $queryEmbedding) AS similarity
WITH r, similarity, reduce(best = 0.0, boost IN [
    CASE WHEN $queryText <> '' AND toLower(coalesce(r.category, '')) CONTAINS $queryText
         THEN $categoryBoost ELSE 0.0 END,
    CASE WHEN $queryText <> '' AND toLower(coalesce(r.name, '')) CONTAINS $queryText
         THEN $nameBoost ELSE 0.0 END,
    CASE WHEN $queryText <> '' AND any(tag IN coalesce(r.tags, []) WHERE toLower(tag) CONTAINS $queryText)
         THEN $tagBoost ELSE 0.0 END,
    CASE WHEN $queryText <> '' AND toLower(coalesce(r.description, '')) CONTAINS $queryText
         THEN $descriptionBoost ELSE 0.0 END
] | CASE WHEN boost > best THEN boost ELSE best END) AS keywordBoost
WITH r, similarity, keywordBoost,
     $similarityWeight * similarity + $keywordWeight * keywordBoost AS score
WHERE $minSimilarity IS NULL OR score >= $minSimilarity OR keywordBoost > 0
RETURN r {{.*}} AS properties, similarity, keywordBoost, score
ORDER BY score DESC
LIMIT $limit
"""

STORE_LABELS = ["Application", "Requirement", "Risk", "Constraint", "Assumption", "Person"]


class Neo4jRequirementStore(RequirementGraphStore):
    """
    Requirement graph store backed by Neo4j.

    Application ids are normalized names and requirement ids are their
    identifiers, so callers never depend on database-internal ids.
    """

    def __init__(
        self,
        uri: Optional[str] = None,
        username: Optional[str] = None,
        password: Optional[str] = None,
        database: Optional[str] = None,
        similarity_function: Optional[str] = None,
        weights: Optional[SearchWeights] = None,
        driver: Optional[AsyncDriver] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        """
        Initialize the store.

        Args:
            uri: Neo4j connection URI
            username: Neo4j username
            password: Neo4j password
            database: Neo4j database name
            similarity_function: Cypher cosine function used by search
            weights: Hybrid search weights
            driver: Preconfigured async driver
            settings: Settings used for anything not given explicitly
        """
        self.settings = settings or get_settings()
        self.uri = uri or self.settings.neo4j_uri
        self.username = username or self.settings.neo4j_username
        self.password = password or self.settings.neo4j_password
        self.database = database or self.settings.neo4j_database
        self.similarity_function = similarity_function or self.settings.neo4j_similarity_function
        self.weights = weights or SearchWeights.from_settings(self.settings)

        if not _FUNCTION_NAME.match(self.similarity_function):
            raise ConfigurationError(f"Invalid similarity function: {self.similarity_function}")

        self._driver = driver
        self._initialized = False

    async def initialize(self) -> None:
        """Connect, verify the connection and create constraints and indexes."""
        if self._initialized:
            return

        try:
            if self._driver is None:
                logger.info(f"Connecting to Neo4j at {self.uri}")
                self._driver = AsyncGraphDatabase.driver(self.uri, auth=(self.username, self.password))

            async with self._session() as session:
                result = await session.run("RETURN 1")
                await result.single()

            await self._create_schema()
            self._initialized = True
            logger.info("Neo4j requirement store initialized")

        except _DRIVER_ERRORS as e:
            logger.error(f"Failed to connect to Neo4j: {e}")
            raise GraphConnectionError(f"Failed to connect to Neo4j: {str(e)}", {"uri": self.uri})

    async def close(self) -> None:
        if self._driver:
            await self._driver.close()
            self._driver = None
            self._initialized = False
            logger.info("Neo4j connection closed")

    def _ensure_initialized(self) -> None:
        if not self._initialized or not self._driver:
            raise GraphDatabaseNotInitializedError(
                "Neo4j store not initialized. Call initialize() first."
            )

    def _session(self):
        return self._driver.session(database=self.database)

    async def _create_schema(self) -> None:
        async with self._session() as session:
            for statement in SCHEMA_STATEMENTS:
                try:
                    await session.run(statement)
                except Neo4jError as e:
                    logger.warning(f"Schema statement failed: {e}", extra={"statement": statement})

    # =========================================================================
    # Writes
    # =========================================================================

    async def upsert_application(self, name: str, attributes: Optional[dict[str, Any]] = None) -> str:
        self._ensure_initialized()
        key = normalize_application_name(name or "")
        if not key:
            raise PersistenceError("Cannot store an application without a name")

        try:
            async with self._session() as session:
                result = await session.run(
                    UPSERT_APPLICATION,
                    nameKey=key,
                    name=name.strip(),
                    attributes=primitive_properties(attributes or {}),
                )
                record = await result.single()
        except _DRIVER_ERRORS as e:
            logger.error(f"Failed to upsert application: {e}")
            raise GraphDatabaseError(f"Failed to upsert application: {str(e)}", {"application": key})

        return record["id"] if record else key

    async def upsert_requirement(
        self,
        application_id: str,
        requirement: Requirement,
        embedding: Optional[Sequence[float]] = None,
    ) -> str:
        self._ensure_initialized()
        identifier = requirement.identifier.strip()
        if not identifier:
            raise PersistenceError("Cannot store a requirement without an identifier")

        properties = requirement.to_graph_properties()
        properties["identifier"] = identifier
        if embedding is not None:
            properties["embedding"] = [float(value) for value in embedding]

        try:
            async with self._session() as session:
                version = await session.execute_write(
                    self._upsert_requirement_tx,
                    application_id,
                    identifier,
                    properties,
                    secondary_records(requirement),
                )
        except _DRIVER_ERRORS as e:
            logger.error(f"Failed to upsert requirement: {e}")
            raise GraphDatabaseError(
                f"Failed to upsert requirement: {str(e)}", {"identifier": identifier}
            )

        logger.debug("Upserted requirement", extra={"identifier": identifier, "version": version})
        return identifier

    @staticmethod
    async def _upsert_requirement_tx(
        tx: AsyncManagedTransaction,
        application_id: str,
        identifier: str,
        properties: dict[str, Any],
        secondary: dict[tuple[str, str, str], list[dict[str, Any]]],
    ) -> int:
        result = await tx.run(
            UPSERT_REQUIREMENT,
            applicationId=application_id,
            identifier=identifier,
            properties=properties,
        )
        record = await result.single()
        if record is None:
            raise PersistenceError(
                f"Application '{application_id}' does not exist",
                {"identifier": identifier},
            )

        for (label, edge, key), items in secondary.items():
            if items:
                query = LINK_SECONDARY.format(label=label, key=key, edge=edge)
                await tx.run(query, identifier=identifier, items=items)

        return record["version"]

    async def create_relationships(self, requirements: Sequence[Requirement]) -> RelationshipStats:
        self._ensure_initialized()
        stats = RelationshipStats()

        async with self._session() as session:
            for requirement in requirements:
                source = requirement.identifier.strip()
                for relationship_type, target in derive_relationships(requirement):
                    label = f"{source} -[{relationship_type.value}]-> {target}"
                    try:
                        result = await session.run(
                            CREATE_RELATIONSHIP.format(edge=relationship_type.value),
                            source=source,
                            target=target,
                        )
                        record = await result.single()
                    except _DRIVER_ERRORS as e:
                        logger.warning(f"Failed to create relationship {label}: {e}")
                        stats.failed += 1
                        stats.errors.append(f"{label}: {e}")
                        continue

                    if record is None:
                        logger.warning("Skipping relationship with missing node", extra={"edge": label})
                        stats.failed += 1
                        stats.errors.append(f"{label}: missing node")
                    else:
                        stats.created += 1

        return stats

    async def clear(self) -> None:
        self._ensure_initialized()
        labels = " OR ".join(f"n:{label}" for label in STORE_LABELS)
        try:
            async with self._session() as session:
                await session.run(f"MATCH (n) WHERE {labels} DETACH DELETE n")
            logger.warning("Cleared requirement graph")
        except _DRIVER_ERRORS as e:
            raise GraphDatabaseError(f"Failed to clear graph: {str(e)}")

    # =========================================================================
    # Reads
    # =========================================================================

    @log_performance
    async def search(
        self,
        query_embedding: Sequence[float],
        query_text: str = "",
        filters: Optional[SearchFilters] = None,
        limit: int = 10,
        min_similarity: Optional[float] = None,
    ) -> list[SearchResult]:
        self._ensure_initialized()
        query, parameters = self.build_search_query(
            query_embedding, query_text, filters, limit, min_similarity
        )

        try:
            async with self._session() as session:
                result = await session.run(query, **parameters)
                records = await result.data()
        except _DRIVER_ERRORS as e:
            logger.error(f"Search failed: {e}")
            raise GraphQueryError(f"Search failed: {str(e)}")

        results = []
        for record in records:
            properties = dict(record["properties"])
            properties.pop("embedding", None)
            results.append(
                SearchResult(
                    requirement=Requirement.from_graph_properties(properties),
                    similarity=record["similarity"],
                    keyword_boost=record["keywordBoost"],
                    score=record["score"],
                )
            )
        return results

    def build_search_query(
        self,
        query_embedding: Sequence[float],
        query_text: str = "",
        filters: Optional[SearchFilters] = None,
        limit: int = 10,
        min_similarity: Optional[float] = None,
    ) -> tuple[str, dict[str, Any]]:
        """Cypher text and parameters for a hybrid search."""
        where = ["r.embedding IS NOT NULL"]
        parameters: dict[str, Any] = {
            "queryEmbedding": [float(value) for value in query_embedding],
            "queryText": query_text.strip().lower(),
            "minSimilarity": min_similarity,
            "limit": limit,
            **self.weights.as_parameters(),
        }

        if filters:
            if filters.requirement_type:
                where.append("r.requirementType = $requirementType")
                parameters["requirementType"] = filters.requirement_type.value
            if filters.priority:
                where.append("r.priority = $priority")
                parameters["priority"] = filters.priority.value
            if filters.status:
                where.append("r.status = $status")
                parameters["status"] = filters.status.value

        query = SEARCH_TEMPLATE.format(
            where=" AND ".join(where),
            similarity_function=self.similarity_function,
        )
        return query, parameters

    async def get_requirement(self, identifier: str) -> Optional[Requirement]:
        self._ensure_initialized()
        try:
            async with self._session() as session:
                result = await session.run(GET_REQUIREMENT, identifier=identifier)
                record = await result.single()
        except _DRIVER_ERRORS as e:
            raise GraphQueryError(f"Failed to get requirement: {str(e)}", {"identifier": identifier})

        if record is None:
            return None
        data = dict(record["properties"])
        data["risks"] = record["risks"]
        data["constraints"] = record["constraints"]
        data["assumptions"] = record["assumptions"]
        return Requirement.from_graph_properties(data)

    async def get_relationships(self, identifier: str) -> list[tuple[RelationshipType, str]]:
        self._ensure_initialized()
        try:
            async with self._session() as session:
                result = await session.run(GET_RELATIONSHIPS, identifier=identifier)
                records = await result.data()
        except _DRIVER_ERRORS as e:
            raise GraphQueryError(f"Failed to get relationships: {str(e)}", {"identifier": identifier})
        return [(RelationshipType(record["type"]), record["target"]) for record in records]

    async def get_statistics(self) -> dict[str, Any]:
        self._ensure_initialized()
        nodes: dict[str, int] = {}
        try:
            async with self._session() as session:
                for label in STORE_LABELS:
                    result = await session.run(f"MATCH (n:{label}) RETURN count(n) AS count")
                    record = await result.single()
                    nodes[label] = record["count"] if record else 0

                result = await session.run(
                    "MATCH (r:Requirement) WHERE r.embedding IS NOT NULL RETURN count(r) AS count"
                )
                record = await result.single()
                with_embeddings = record["count"] if record else 0

                result = await session.run(
                    "MATCH ()-[rel]->() RETURN type(rel) AS type, count(rel) AS count"
                )
                relationships = {row["type"]: row["count"] for row in await result.data()}
        except _DRIVER_ERRORS as e:
            raise GraphQueryError(f"Failed to get statistics: {str(e)}")

        return {
            "nodes": nodes,
            "relationships": relationships,
            "requirements_with_embeddings": with_embeddings,
        }


GraphStoreFactory.register("neo4j", Neo4jRequirementStore)


def create_graph_store(settings: Optional[Settings] = None) -> RequirementGraphStore:
    """Create the graph store selected by ``graph_backend``."""
    settings = settings or get_settings()
    if settings.graph_backend == "memory":
        return GraphStoreFactory.create("memory", weights=SearchWeights.from_settings(settings))
    return GraphStoreFactory.create("neo4j", settings=settings)
