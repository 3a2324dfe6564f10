"""
Tests for requirement records, boundary coercion and the job state machine.
"""

import pytest

from reqgraph.models import (
    Application,
    ExtractionJob,
    ExtractionJobInput,
    JobStatus,
    Priority,
    Requirement,
    RequirementStatus,
    RequirementType,
    SearchFilters,
    normalize_application_name,
)
from reqgraph.utils.errors import InvalidJobTransitionError


class TestRequirementCoercion:
    def test_defaults(self):
        """Test requirement defaults."""
        requirement = Requirement(name="Login")

        assert requirement.requirement_type == RequirementType.FUNCTIONAL
        assert requirement.priority == Priority.SHOULD
        assert requirement.status == RequirementStatus.DRAFT
        assert requirement.version == 1
        assert requirement.source == "document"

    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("critical", Priority.MUST),
            ("High", Priority.MUST),
            ("medium", Priority.SHOULD),
            ("low", Priority.COULD),
            ("won't", Priority.WONT),
            ("whenever", Priority.SHOULD),
        ],
    )
    def test_priority_synonyms(self, raw, expected):
        """Test priority synonyms."""
        assert Requirement(name="x", priority=raw).priority == expected

    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("Non_Functional", RequirementType.NON_FUNCTIONAL),
            ("nfr", RequirementType.NON_FUNCTIONAL),
            ("SECURITY", RequirementType.SECURITY),
            ("legal", RequirementType.OTHER),
            (None, RequirementType.FUNCTIONAL),
        ],
    )
    def test_type_synonyms(self, raw, expected):
        """Test requirement type synonyms."""
        assert Requirement(name="x", requirementType=raw).requirement_type == expected

    def test_list_fields_accept_strings(self):
        """Test list fields given as strings."""
        requirement = Requirement.model_validate(
            {
                "name": "x",
                "tags": "auth; login, auth",
                "acceptanceCriteria": '["Given a user", "When they log in"]',
                "involvedStakeholders": "Product Owner",
            }
        )

        assert requirement.tags == ["auth", "login"]
        assert requirement.acceptance_criteria == ["Given a user", "When they log in"]
        assert requirement.involved_stakeholders == ["Product Owner"]

    def test_flat_dependency_keys_are_folded(self):
        """Test that top-level dependency keys are folded in."""
        requirement = Requirement.model_validate(
            {"name": "x", "dependsOn": "FR-001,FR-002", "conflicts": "FR-009", "extends": None}
        )

        assert requirement.dependencies.depends_on == ["FR-001", "FR-002"]
        assert requirement.dependencies.conflicts == ["FR-009"]
        assert requirement.dependencies.extends == []

    def test_sub_records_from_strings(self):
        """Test risks and constraints given as strings."""
        requirement = Requirement.model_validate(
            {
                "name": "x",
                "risks": '[{"description": "Data loss", "severity": "high"}]',
                "assumptions": "Users have email",
            }
        )

        assert requirement.risks[0].description == "Data loss"
        assert requirement.risks[0].severity == "high"
        assert requirement.assumptions[0].description == "Users have email"

    def test_graph_properties_round_trip(self):
        """Test converting to graph properties and back."""
        requirement = Requirement.model_validate(
            {
                "identifier": "SEC-001",
                "name": "Encrypt data",
                "requirementType": "security",
                "priority": "must",
                "tags": ["crypto"],
                "dependsOn": ["FR-001"],
                "relatedRequirements": ["FR-002"],
            }
        )

        properties = requirement.to_graph_properties()
        assert properties["requirementType"] == "security"
        assert properties["dependsOn"] == ["FR-001"]
        assert "embedding" not in properties
        assert "version" not in properties
        assert all(not isinstance(value, dict) for value in properties.values())

        rebuilt = Requirement.from_graph_properties(properties)
        assert rebuilt.identifier == "SEC-001"
        assert rebuilt.dependencies.depends_on == ["FR-001"]
        assert rebuilt.related_requirements == ["FR-002"]

    def test_embedding_text(self):
        """Test the text sent for embedding."""
        assert Requirement(name="Login", description="Users log in").embedding_text == "Login: Users log in"


class TestApplication:
    def test_name_key_is_case_and_space_insensitive(self):
        """Test the application name key."""
        assert Application(name="  Web   Shop ").name_key == "web shop"
        assert normalize_application_name("WEB SHOP") == "web shop"


class TestSearchFilters:
    def test_matches(self):
        """Test search filter matching."""
        requirement = Requirement(name="x", requirementType="security", priority="must")

        assert SearchFilters().matches(requirement)
        assert SearchFilters(requirement_type=RequirementType.SECURITY).matches(requirement)
        assert not SearchFilters(priority=Priority.COULD).matches(requirement)


class TestExtractionJob:
    @pytest.fixture
    def job(self):
        return ExtractionJob(input=ExtractionJobInput(document_paths=["a.md"], project_name="Shop"))

    def test_happy_path(self, job):
        """Test a job moving through every status."""
        assert job.status == JobStatus.PENDING

        job.transition_to(JobStatus.PROCESSING)
        assert job.started_at is not None

        job.transition_to(JobStatus.COMPLETED)
        assert job.is_terminal
        assert job.completed_at is not None

    def test_pending_can_fail(self, job):
        """Test failing a pending job."""
        job.transition_to(JobStatus.FAILED)
        assert job.status == JobStatus.FAILED

    @pytest.mark.parametrize("terminal", [JobStatus.COMPLETED, JobStatus.FAILED])
    def test_terminal_states_are_final(self, job, terminal):
        """Test that finished jobs cannot change status."""
        job.transition_to(JobStatus.PROCESSING)
        job.transition_to(terminal)

        for target in JobStatus:
            with pytest.raises(InvalidJobTransitionError):
                job.transition_to(target)

    def test_cannot_skip_processing(self, job):
        """Test completing a job that never started."""
        with pytest.raises(InvalidJobTransitionError):
            job.transition_to(JobStatus.COMPLETED)

    def test_input_requires_documents(self):
        """Test that job input needs at least one document."""
        with pytest.raises(ValueError):
            ExtractionJobInput(document_paths=[], project_name="Shop")
