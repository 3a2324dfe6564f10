"""
Tests for the in-memory graph store and hybrid search scoring.
"""

import pytest
import pytest_asyncio

from reqgraph.graph_db.base import derive_relationships
from reqgraph.graph_db.memory_store import InMemoryRequirementStore
from reqgraph.graph_db.scoring import SearchWeights, combined_score, keyword_boost, rank
from reqgraph.models import (
    Application,
    RelationshipType,
    Requirement,
    RequirementGraph,
    RequirementType,
    SearchFilters,
)
from reqgraph.utils.errors import PersistenceError


def requirement(identifier: str, name: str, **kwargs) -> Requirement:
    return Requirement(identifier=identifier, name=name, **kwargs)


class TestUpserts:
    @pytest.mark.asyncio
    async def test_application_merge_is_case_insensitive(self, memory_store):
        """Test that application names merge regardless of case."""
        first = await memory_store.upsert_application("Web Shop", {"owner": "alice"})
        second = await memory_store.upsert_application("  web   SHOP ", {"owner": "bob"})

        assert first == second == "web shop"
        stats = await memory_store.get_statistics()
        assert stats["nodes"]["Application"] == 1

    @pytest.mark.asyncio
    async def test_upsert_requirement_is_idempotent(self, memory_store):
        """Test upserting the same requirement twice."""
        app_id = await memory_store.upsert_application("Web Shop")

        await memory_store.upsert_requirement(app_id, requirement("FR-001", "Login", description="v1"))
        await memory_store.upsert_requirement(
            app_id, requirement("FR-001", "Login", description="v2", priority="could")
        )

        stored = await memory_store.get_requirement("FR-001")
        assert stored.description == "v2"
        assert stored.priority.value == "could"
        assert stored.version == 2
        assert (await memory_store.get_statistics())["nodes"]["Requirement"] == 1
        assert await memory_store.get_application_requirements(app_id) == ["FR-001"]

    @pytest.mark.asyncio
    async def test_secondary_entities_are_rederived(self, memory_store):
        """Test that risks and constraints follow the latest upsert."""
        app_id = await memory_store.upsert_application("Web Shop")
        await memory_store.upsert_requirement(
            app_id,
            requirement("FR-001", "Login", risks=[{"description": "Brute force"}], author="Alice"),
        )
        await memory_store.upsert_requirement(
            app_id, requirement("FR-002", "Logout", risks=[{"description": "Brute force"}])
        )

        await memory_store.upsert_requirement(
            app_id, requirement("FR-001", "Login", risks=[{"description": "Session fixation"}])
        )

        login = await memory_store.get_requirement("FR-001")
        logout = await memory_store.get_requirement("FR-002")
        assert [r.description for r in login.risks] == ["Session fixation"]
        assert [r.description for r in logout.risks] == ["Brute force"]

        stats = await memory_store.get_statistics()
        # shared and orphaned secondary nodes are kept
        assert stats["nodes"]["Risk"] == 2
        assert stats["nodes"]["Person"] == 1
        assert "AUTHORED_BY" not in stats["relationships"]

    @pytest.mark.asyncio
    async def test_unknown_application(self, memory_store):
        """Test upserting into an application that does not exist."""
        with pytest.raises(PersistenceError):
            await memory_store.upsert_requirement("nope", requirement("FR-001", "Login"))

    @pytest.mark.asyncio
    async def test_missing_identifier_is_fatal(self, memory_store):
        """Test upserting a requirement without an identifier."""
        app_id = await memory_store.upsert_application("Web Shop")
        with pytest.raises(PersistenceError):
            await memory_store.upsert_requirement(app_id, requirement("", "Login"))

    @pytest.mark.asyncio
    async def test_empty_application_name(self, memory_store):
        """Test creating an application without a name."""
        with pytest.raises(PersistenceError):
            await memory_store.upsert_application("   ")


class TestRelationships:
    def test_related_fallback_skips_covered_targets(self):
        """Test that related links skip targets already linked."""
        edges = derive_relationships(
            requirement(
                "FR-001",
                "Login",
                dependencies={"depends_on": ["FR-002"], "extends": ["FR-003"]},
                related_requirements=["FR-002", "FR-004", "FR-001"],
            )
        )

        assert edges == [
            (RelationshipType.DEPENDS_ON, "FR-002"),
            (RelationshipType.EXTENDS, "FR-003"),
            (RelationshipType.RELATED_TO, "FR-004"),
        ]

    @pytest.mark.asyncio
    async def test_missing_target_fails_single_edge(self, memory_store):
        """Test that a missing target only fails its own edge."""
        app_id = await memory_store.upsert_application("Web Shop")
        login = requirement("FR-001", "Login", dependencies={"depends_on": ["FR-002", "FR-404"]})
        logout = requirement("FR-002", "Logout", dependencies={"conflicts": ["FR-001"]})
        for item in (login, logout):
            await memory_store.upsert_requirement(app_id, item)

        stats = await memory_store.create_relationships([login, logout])

        assert stats.created == 2
        assert stats.failed == 1
        assert "FR-404" in stats.errors[0]
        assert await memory_store.get_relationships("FR-002") == [(RelationshipType.CONFLICTS_WITH, "FR-001")]

    @pytest.mark.asyncio
    async def test_store_graph_checks_alignment(self, memory_store):
        """Test that embeddings must match the requirements."""
        graph = RequirementGraph(
            application=Application(name="Web Shop"),
            requirements=[requirement("FR-001", "Login")],
        )

        with pytest.raises(PersistenceError, match="not aligned"):
            await memory_store.store_graph(graph, embeddings=[])


class TestScoring:
    def test_keyword_boost_takes_highest_tier(self):
        """Test that only the best keyword match counts."""
        weights = SearchWeights()
        item = requirement(
            "SEC-001",
            "Security audit",
            description="security review",
            category="Security",
            tags=["security"],
        )

        assert keyword_boost(item, "SECURITY", weights) == 0.3
        assert keyword_boost(item, "audit", weights) == 0.2
        assert keyword_boost(item, "review", weights) == 0.1
        assert keyword_boost(item, "", weights) == 0.0

    def test_combined_score(self):
        """Test the combined similarity and keyword score."""
        assert combined_score(0.5, 0.3, SearchWeights()) == pytest.approx(0.7 * 0.5 + 1.5 * 0.3)

    def test_configurable_weights(self):
        """Test search with custom weights."""
        weights = SearchWeights(similarity=1.0, keyword=0.0)
        assert combined_score(0.5, 0.3, weights) == pytest.approx(0.5)

    def test_candidates_without_embedding_are_skipped(self):
        """Test that requirements without embeddings are not scored."""
        results = rank([(requirement("FR-001", "Login"), None)], [1.0, 0.0])
        assert results == []


class TestSearch:
    @pytest_asyncio.fixture
    async def populated_store(self):
        store = InMemoryRequirementStore()
        app_id = await store.upsert_application("Web Shop")
        items = [
            (requirement("SEC-001", "Encrypt data", category="Security", requirement_type="security"), [1.0, 0.0]),
            (requirement("PERF-001", "Fast pages", category="Performance", requirement_type="performance"), [1.0, 0.0]),
            (requirement("FR-001", "Unrelated", category="General"), [0.0, 1.0]),
        ]
        for item, embedding in items:
            await store.upsert_requirement(app_id, item, embedding)
        return store

    @pytest.mark.asyncio
    async def test_keyword_breaks_similarity_tie(self, populated_store):
        """Test that a keyword match ranks first on equal similarity."""
        results = await populated_store.search([1.0, 0.0], "security")

        assert [r.requirement.identifier for r in results[:2]] == ["SEC-001", "PERF-001"]
        assert results[0].similarity == pytest.approx(results[1].similarity)
        assert results[0].score > results[1].score
        assert results[0].keyword_boost == 0.3

    @pytest.mark.asyncio
    async def test_filters_and_limit(self, populated_store):
        """Test search filters and result limit."""
        results = await populated_store.search(
            [1.0, 0.0], filters=SearchFilters(requirement_type=RequirementType.PERFORMANCE)
        )
        assert [r.requirement.identifier for r in results] == ["PERF-001"]

        results = await populated_store.search([1.0, 0.0], limit=1)
        assert len(results) == 1

    @pytest.mark.asyncio
    async def test_min_similarity_never_suppresses_keyword_matches(self, populated_store):
        """Test that keyword matches survive the similarity threshold."""
        results = await populated_store.search([0.0, 1.0], "encrypt", min_similarity=0.5)

        identifiers = [r.requirement.identifier for r in results]
        # FR-001 passes the floor on similarity, SEC-001 on its name match
        assert identifiers == ["FR-001", "SEC-001"]

    @pytest.mark.asyncio
    async def test_clear(self, populated_store):
        """Test clearing the store."""
        await populated_store.clear()
        assert await populated_store.search([1.0, 0.0]) == []
