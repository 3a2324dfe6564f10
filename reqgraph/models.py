"""
Core data models for the requirements graph pipeline.

Records flowing through the pipeline are typed pydantic models. Generic
dictionaries only appear at the boundaries: decoded model output on the way
in (camelCase keys, loosely typed values) and graph properties on the way out.
"""

import json
import re
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from reqgraph.utils.errors import InvalidJobTransitionError


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# Enums
# =============================================================================


class RequirementType(str, Enum):
    """IREB requirement types. OTHER covers anything the model invents."""

    FUNCTIONAL = "functional"
    NON_FUNCTIONAL = "non-functional"
    SECURITY = "security"
    PERFORMANCE = "performance"
    BUSINESS = "business"
    USABILITY = "usability"
    OTHER = "other"


class Priority(str, Enum):
    """MoSCoW priority."""

    MUST = "must"
    SHOULD = "should"
    COULD = "could"
    WONT = "wont"


class RequirementStatus(str, Enum):
    """Lifecycle status of a requirement."""

    DRAFT = "draft"
    PROPOSED = "proposed"
    APPROVED = "approved"
    IMPLEMENTED = "implemented"
    VERIFIED = "verified"
    REJECTED = "rejected"
    OBSOLETE = "obsolete"


class JobStatus(str, Enum):
    """Status of an extraction job."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class ResponseFormat(str, Enum):
    """Serialization used in prompts and expected in model responses."""

    TOON = "toon"
    JSON = "json"


class RelationshipType(str, Enum):
    """Directed edges between requirements."""

    DEPENDS_ON = "DEPENDS_ON"
    CONFLICTS_WITH = "CONFLICTS_WITH"
    EXTENDS = "EXTENDS"
    RELATED_TO = "RELATED_TO"


_TYPE_SYNONYMS = {
    "nonfunctional": RequirementType.NON_FUNCTIONAL,
    "non-functional": RequirementType.NON_FUNCTIONAL,
    "nfr": RequirementType.NON_FUNCTIONAL,
    "quality": RequirementType.NON_FUNCTIONAL,
    "fr": RequirementType.FUNCTIONAL,
    "ux": RequirementType.USABILITY,
    "sec": RequirementType.SECURITY,
    "perf": RequirementType.PERFORMANCE,
}

_PRIORITY_SYNONYMS = {
    "critical": Priority.MUST,
    "high": Priority.MUST,
    "must have": Priority.MUST,
    "medium": Priority.SHOULD,
    "should have": Priority.SHOULD,
    "low": Priority.COULD,
    "could have": Priority.COULD,
    "won't": Priority.WONT,
    "wont have": Priority.WONT,
    "won't have": Priority.WONT,
}

_BOOL_STRINGS = {"true", "false", "yes", "no", "1", "0", "on", "off"}


# =============================================================================
# Boundary coercion helpers
# =============================================================================


def _maybe_json(value: Any) -> Any:
    """Decode a string holding a JSON array or object, else return it unchanged."""
    if isinstance(value, str):
        stripped = value.strip()
        if stripped[:1] in ("[", "{"):
            try:
                return json.loads(stripped)
            except json.JSONDecodeError:
                return value
    return value


def _string_list(value: Any, separators: str = ",;") -> list[str]:
    """Coerce None, JSON strings, delimited strings or lists into a list of strings."""
    value = _maybe_json(value)
    if value is None:
        return []
    if isinstance(value, str):
        parts = re.split(f"[{re.escape(separators)}]", value)
    elif isinstance(value, (list, tuple, set)):
        parts = [str(item) for item in value if item is not None]
    else:
        parts = [str(value)]
    return [part.strip() for part in parts if part and part.strip()]


def _record_list(value: Any) -> list[Any]:
    """Coerce sub-record input into a list of dicts."""
    value = _maybe_json(value)
    if value is None or value == "":
        return []
    if isinstance(value, (str, dict)):
        value = [value]
    return [{"description": item} if isinstance(item, str) else item for item in value]


def _enum_key(value: Any) -> str:
    return re.sub(r"[\s_]+", "-", str(value).strip().lower())


def normalize_application_name(name: str) -> str:
    """Case-insensitive, whitespace-collapsed identity key of an application."""
    return " ".join(name.split()).casefold()


# =============================================================================
# Requirement Models
# =============================================================================


class BoundaryModel(BaseModel):
    """Base for records exchanged with models and the graph (camelCase keys)."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        coerce_numbers_to_str=True,
        str_strip_whitespace=True,
        extra="ignore",
    )


class Risk(BoundaryModel):
    """A risk attached to a requirement."""

    description: str = Field(..., min_length=1)
    severity: Optional[str] = None
    probability: Optional[str] = None
    impact: Optional[str] = None
    mitigation: Optional[str] = None


class Constraint(BoundaryModel):
    """A constraint attached to a requirement."""

    description: str = Field(..., min_length=1)
    type: Optional[str] = None


class Assumption(BoundaryModel):
    """An assumption attached to a requirement."""

    description: str = Field(..., min_length=1)
    validated: Optional[bool] = None

    @field_validator("validated", mode="before")
    @classmethod
    def lenient_bool(cls, v: Any) -> Any:
        if isinstance(v, str) and v.strip().lower() not in _BOOL_STRINGS:
            return None
        return v


class RequirementDependencies(BoundaryModel):
    """Identifier lists describing how a requirement relates to others."""

    depends_on: list[str] = Field(default_factory=list)
    conflicts: list[str] = Field(default_factory=list)
    extends: list[str] = Field(default_factory=list)

    @field_validator("depends_on", "conflicts", "extends", mode="before")
    @classmethod
    def coerce_identifiers(cls, v: Any) -> list[str]:
        return _string_list(v)


class Requirement(BoundaryModel):
    """A single extracted requirement."""

    identifier: str = Field("", description="Unique key, e.g. FR-001")
    name: str = Field(..., min_length=1, description="Short requirement title")
    description: str = Field("", description="Full requirement statement")
    requirement_type: RequirementType = RequirementType.FUNCTIONAL
    priority: Priority = Priority.SHOULD
    category: str = ""
    tags: list[str] = Field(default_factory=list)
    status: RequirementStatus = RequirementStatus.DRAFT
    version: int = Field(1, ge=1)
    rationale: Optional[str] = None
    acceptance_criteria: list[str] = Field(default_factory=list)

    # Provenance
    source: str = "document"
    source_document: Optional[str] = None
    author: Optional[str] = None
    involved_stakeholders: list[str] = Field(default_factory=list)

    risks: list[Risk] = Field(default_factory=list)
    constraints: list[Constraint] = Field(default_factory=list)
    assumptions: list[Assumption] = Field(default_factory=list)
    related_requirements: list[str] = Field(default_factory=list)
    dependencies: RequirementDependencies = Field(default_factory=RequirementDependencies)

    embedding: Optional[list[float]] = None

    @model_validator(mode="before")
    @classmethod
    def fold_flat_dependencies(cls, data: Any) -> Any:
        """Accept dependsOn/conflicts/extends as top-level keys (flat TOON rows)."""
        if not isinstance(data, dict):
            return data
        flat_keys = {
            "dependsOn": "depends_on",
            "depends_on": "depends_on",
            "conflicts": "conflicts",
            "extends": "extends",
        }
        if not any(key in data for key in flat_keys):
            return data

        data = dict(data)
        raw = _maybe_json(data.get("dependencies"))
        dependencies = dict(raw) if isinstance(raw, dict) else {}
        for key, target in flat_keys.items():
            if key in data:
                value = data.pop(key)
                if value not in (None, "", []) and not dependencies.get(target):
                    dependencies[target] = value
        data["dependencies"] = dependencies
        return data

    @field_validator("requirement_type", mode="before")
    @classmethod
    def coerce_type(cls, v: Any) -> Any:
        if v is None or v == "":
            return RequirementType.FUNCTIONAL
        if isinstance(v, RequirementType):
            return v
        key = _enum_key(v)
        if key in _TYPE_SYNONYMS:
            return _TYPE_SYNONYMS[key]
        try:
            return RequirementType(key)
        except ValueError:
            return RequirementType.OTHER

    @field_validator("priority", mode="before")
    @classmethod
    def coerce_priority(cls, v: Any) -> Any:
        if v is None or v == "" or isinstance(v, Priority):
            return v or Priority.SHOULD
        key = str(v).strip().lower()
        if key in _PRIORITY_SYNONYMS:
            return _PRIORITY_SYNONYMS[key]
        try:
            return Priority(key)
        except ValueError:
            return Priority.SHOULD

    @field_validator("status", mode="before")
    @classmethod
    def coerce_status(cls, v: Any) -> Any:
        if isinstance(v, RequirementStatus):
            return v
        try:
            return RequirementStatus(str(v).strip().lower())
        except ValueError:
            return RequirementStatus.DRAFT

    @field_validator("identifier", "description", "category", "source", mode="before")
    @classmethod
    def none_to_empty(cls, v: Any) -> Any:
        return "" if v is None else v

    @field_validator("source", mode="after")
    @classmethod
    def default_source(cls, v: str) -> str:
        return v or "document"

    @field_validator("version", mode="before")
    @classmethod
    def default_version(cls, v: Any) -> Any:
        return 1 if v is None or v == "" else v

    @field_validator("tags", "involved_stakeholders", "related_requirements", mode="before")
    @classmethod
    def coerce_string_lists(cls, v: Any) -> list[str]:
        return _string_list(v)

    @field_validator("acceptance_criteria", mode="before")
    @classmethod
    def coerce_criteria(cls, v: Any) -> list[str]:
        return _string_list(v, separators=";\n")

    @field_validator("tags", mode="after")
    @classmethod
    def unique_tags(cls, v: list[str]) -> list[str]:
        return list(dict.fromkeys(v))

    @field_validator("risks", "constraints", "assumptions", mode="before")
    @classmethod
    def coerce_records(cls, v: Any) -> list[Any]:
        return _record_list(v)

    @field_validator("dependencies", mode="before")
    @classmethod
    def coerce_dependencies(cls, v: Any) -> Any:
        v = _maybe_json(v)
        return v if isinstance(v, (dict, RequirementDependencies)) else {}

    @property
    def embedding_text(self) -> str:
        """Text sent to the embedding model."""
        return f"{self.name}: {self.description}"

    def to_graph_properties(self) -> dict[str, Any]:
        """
        Flatten into primitive graph properties.

        Version, embedding and sub-records are excluded: the store owns the
        version counter and writes the rest separately.
        """
        return {
            "identifier": self.identifier,
            "name": self.name,
            "description": self.description,
            "requirementType": self.requirement_type.value,
            "priority": self.priority.value,
            "category": self.category,
            "tags": list(self.tags),
            "status": self.status.value,
            "rationale": self.rationale,
            "acceptanceCriteria": list(self.acceptance_criteria),
            "source": self.source,
            "sourceDocument": self.source_document,
            "author": self.author,
            "involvedStakeholders": list(self.involved_stakeholders),
            "relatedRequirements": list(self.related_requirements),
            "dependsOn": list(self.dependencies.depends_on),
            "conflicts": list(self.dependencies.conflicts),
            "extends": list(self.dependencies.extends),
        }

    @classmethod
    def from_graph_properties(cls, properties: dict[str, Any]) -> "Requirement":
        """Rebuild a requirement from stored node properties."""
        return cls.model_validate(dict(properties))


class Application(BaseModel):
    """A named grouping of requirements."""

    name: str = Field(..., min_length=1)
    description: Optional[str] = None
    attributes: dict[str, Any] = Field(default_factory=dict)

    @property
    def name_key(self) -> str:
        """Identity key used for idempotent merges."""
        return normalize_application_name(self.name)


class RequirementGraph(BaseModel):
    """Requirements extracted for one application."""

    application: Application
    requirements: list[Requirement] = Field(default_factory=list)


# =============================================================================
# Pipeline Models
# =============================================================================


class Chunk(BaseModel):
    """A token-bounded slice of a document. Never persisted."""

    index: int = Field(..., ge=0)
    text: str
    token_count: int = Field(..., ge=0)
    start_token: int = Field(..., ge=0)
    end_token: int = Field(..., ge=0)
    total_chunks: int = Field(1, ge=1)


class ExtractedDocument(BaseModel):
    """Raw text extracted from one input file."""

    path: str
    text: str
    format: str
    mime_type: Optional[str] = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def filename(self) -> str:
        return re.split(r"[\\/]", self.path)[-1]


class DocumentFailure(BaseModel):
    """A document whose text could not be extracted."""

    path: str
    error: str


class GenerationResponse(BaseModel):
    """Output of one generation call."""

    text: str
    model: str
    prompt_tokens: int = 0
    completion_tokens: int = 0
    duration_seconds: float = 0.0


class ChunkResult(BaseModel):
    """Outcome of processing one chunk: either requirements or an error."""

    chunk_index: int
    succeeded: bool
    requirements: list[Requirement] = Field(default_factory=list)
    response_format: Optional[str] = None
    error: Optional[str] = None
    error_kind: Optional[str] = Field(None, description="'generation' or 'parse'")

    @classmethod
    def success(
        cls,
        chunk_index: int,
        requirements: list[Requirement],
        response_format: Optional[str] = None,
    ) -> "ChunkResult":
        return cls(
            chunk_index=chunk_index,
            succeeded=True,
            requirements=requirements,
            response_format=response_format,
        )

    @classmethod
    def failure(cls, chunk_index: int, error: str, error_kind: str) -> "ChunkResult":
        return cls(chunk_index=chunk_index, succeeded=False, error=error, error_kind=error_kind)


class TokenStats(BaseModel):
    """Token usage accumulated over one extraction."""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0
    chunks_processed: int = 0
    format: str = ResponseFormat.TOON.value
    model: Optional[str] = None

    def add(self, response: GenerationResponse) -> None:
        """Accumulate usage from one generation response."""
        self.prompt_tokens += response.prompt_tokens
        self.completion_tokens += response.completion_tokens
        self.total_tokens = self.prompt_tokens + self.completion_tokens
        self.chunks_processed += 1


class RelationshipStats(BaseModel):
    """Counts of requirement-to-requirement edges written."""

    created: int = 0
    failed: int = 0
    errors: list[str] = Field(default_factory=list)


class ExtractionResult(BaseModel):
    """Everything one extraction run produced."""

    graph: RequirementGraph
    succeeded: list[ChunkResult] = Field(default_factory=list)
    failed: list[ChunkResult] = Field(default_factory=list)
    token_stats: TokenStats = Field(default_factory=TokenStats)
    timings: dict[str, float] = Field(default_factory=dict)
    persisted: bool = False
    application_id: Optional[str] = None
    relationship_stats: Optional[RelationshipStats] = None

    @property
    def requirements(self) -> list[Requirement]:
        return self.graph.requirements


class SearchFilters(BaseModel):
    """Equality filters applied before scoring."""

    requirement_type: Optional[RequirementType] = None
    priority: Optional[Priority] = None
    status: Optional[RequirementStatus] = None

    def matches(self, requirement: Requirement) -> bool:
        if self.requirement_type and requirement.requirement_type != self.requirement_type:
            return False
        if self.priority and requirement.priority != self.priority:
            return False
        if self.status and requirement.status != self.status:
            return False
        return True


class SearchResult(BaseModel):
    """A ranked hybrid search hit."""

    requirement: Requirement
    similarity: float
    keyword_boost: float
    score: float


# =============================================================================
# Job Models
# =============================================================================


class ExtractionOptions(BaseModel):
    """Per-job extraction options."""

    token_sync_limit: Optional[int] = Field(None, gt=0)
    persist: bool = True
    response_format: ResponseFormat = ResponseFormat.TOON
    temperature: Optional[float] = Field(None, ge=0.0, le=2.0)
    max_tokens: Optional[int] = Field(None, gt=0)


class ExtractionJobInput(BaseModel):
    """What a job was asked to do."""

    document_paths: list[str] = Field(..., min_length=1)
    project_name: str = Field(..., min_length=1)
    model: Optional[str] = None
    options: ExtractionOptions = Field(default_factory=ExtractionOptions)


_ALLOWED_TRANSITIONS: dict[JobStatus, set[JobStatus]] = {
    JobStatus.PENDING: {JobStatus.PROCESSING, JobStatus.FAILED},
    JobStatus.PROCESSING: {JobStatus.COMPLETED, JobStatus.FAILED},
    JobStatus.COMPLETED: set(),
    JobStatus.FAILED: set(),
}


class ExtractionJob(BaseModel):
    """An extraction job and its lifecycle."""

    id: str = Field(default_factory=lambda: str(uuid4()))
    status: JobStatus = JobStatus.PENDING
    input: ExtractionJobInput
    result: Optional[RequirementGraph] = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    error_message: Optional[str] = None
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in (JobStatus.COMPLETED, JobStatus.FAILED)

    def transition_to(self, target: JobStatus) -> None:
        """Move to ``target``, enforcing the one-directional state machine."""
        if target not in _ALLOWED_TRANSITIONS[self.status]:
            raise InvalidJobTransitionError(self.id, self.status.value, target.value)
        now = _utcnow()
        self.status = target
        self.updated_at = now
        if target == JobStatus.PROCESSING:
            self.started_at = now
        elif target in (JobStatus.COMPLETED, JobStatus.FAILED):
            self.completed_at = now
