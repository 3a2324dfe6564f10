"""
Prompt templates for requirement extraction.
"""

import json
from typing import Any, Optional

from reqgraph.models import ResponseFormat
from reqgraph.toon.codec import ToonCodec

SYSTEM_PROMPT = """You are an expert requirements engineer working to the IREB standard.

Your task is to extract structured software and business requirements from documents.

Rules:
1. Extract EVERY requirement the text describes. If the document describes 8 requirements, extract exactly 8.
2. requirementType is one of: functional, non-functional, security, performance, business, usability.
3. priority uses MoSCoW: must, should, could, wont.
4. category is NEVER empty. Use a short domain category such as "User Management" or "Security & Compliance".
5. identifier is unique and prefixed by type: FR-001, NFR-001, SEC-001, PERF-001, UX-001, BUS-001.
6. Reply ONLY with the requested code block, without explanations outside of it."""

REQUIREMENT_FIELDS = [
    "identifier",
    "name",
    "description",
    "requirementType",
    "priority",
    "category",
    "tags",
    "rationale",
    "acceptanceCriteria",
    "author",
    "involvedStakeholders",
    "relatedRequirements",
    "risks",
    "constraints",
    "assumptions",
]

_EXAMPLE_REQUIREMENTS: list[dict[str, Any]] = [
    {
        "identifier": "FR-001",
        "name": "User login",
        "description": "Users can log in with email and password",
        "requirementType": "functional",
        "priority": "must",
        "category": "User Management",
        "tags": ["authentication", "login"],
        "rationale": "Personalized features need an identified user",
        "acceptanceCriteria": ["Valid credentials open the dashboard"],
        "author": "Product Owner",
        "involvedStakeholders": ["End User", "Security Officer"],
        "relatedRequirements": ["SEC-001"],
        "risks": [
            {
                "description": "Credential stuffing attacks",
                "severity": "high",
                "probability": "medium",
                "impact": "Account takeover",
                "mitigation": "Rate limiting",
            }
        ],
        "constraints": [{"description": "Must use the corporate identity provider", "type": "technical"}],
        "assumptions": [{"description": "Users have a verified email address", "validated": False}],
    },
    {
        "identifier": "SEC-001",
        "name": "Password hashing",
        "description": "Passwords are stored hashed with a memory-hard algorithm",
        "requirementType": "security",
        "priority": "must",
        "category": "Security & Compliance",
        "tags": ["security", "passwords"],
        "rationale": None,
        "acceptanceCriteria": [],
        "author": None,
        "involvedStakeholders": ["Security Officer"],
        "relatedRequirements": [],
        "risks": [],
        "constraints": [],
        "assumptions": [],
    },
]

_EXAMPLE_RELATIONSHIPS = [
    {"type": "DEPENDS_ON", "source": "FR-001", "target": "SEC-001"},
]


def toon_example(codec: Optional[ToonCodec] = None) -> str:
    """Example response in TOON, generated with the codec the parser decodes with."""
    codec = codec or ToonCodec()
    return codec.encode(
        {"requirements": _EXAMPLE_REQUIREMENTS, "relationships": _EXAMPLE_RELATIONSHIPS}
    )


def json_example() -> str:
    """Example response in JSON."""
    example = [dict(r) for r in _EXAMPLE_REQUIREMENTS]
    example[0]["dependencies"] = {"dependsOn": ["SEC-001"], "conflicts": [], "extends": []}
    return json.dumps({"requirements": example}, indent=2)


def _format_instructions(response_format: ResponseFormat) -> str:
    if response_format == ResponseFormat.JSON:
        return f"""Reply with a ```json code block holding an object with a "requirements" array.

Example:
```json
{json_example()}
```"""

    return f"""Reply in TOON format inside a ```toon code block.

TOON rules:
- A table starts with a header: name[N]{{field1,field2,...}}: where N is the exact number of rows
- Each row is indented by two spaces and holds comma-separated values in header order
- Quote a value with double quotes if it contains a comma, a quote or a newline; double embedded quotes
- Lists and nested objects (tags, risks, constraints, assumptions, ...) are JSON inside quotes
- Leave a value empty when it is unknown
- Put dependencies in a separate relationships table with type DEPENDS_ON, CONFLICTS_WITH or EXTENDS

Requirement fields: {",".join(REQUIREMENT_FIELDS)}

Example:
```toon
{toon_example()}
```"""


def build_extraction_prompt(
    text: str,
    project_name: Optional[str] = None,
    response_format: ResponseFormat = ResponseFormat.TOON,
    chunk_index: Optional[int] = None,
    total_chunks: Optional[int] = None,
) -> str:
    """
    Build the user prompt for one extraction call.

    Args:
        text: Document text (or one chunk of it)
        project_name: Application the requirements belong to
        response_format: Format the model is asked to reply in
        chunk_index: Zero-based position of the chunk, if chunked
        total_chunks: Number of chunks, if chunked

    Returns:
        Prompt text
    """
    parts = ["Analyze the following text and extract all requirements."]
    if project_name:
        parts.append(f"Project: {project_name}")
    parts.append(_format_instructions(response_format))
    parts.append(f"TEXT TO ANALYZE:\n\n{text}")

    if total_chunks and total_chunks > 1 and chunk_index is not None:
        parts.append(
            f"NOTE: This is chunk {chunk_index + 1} of {total_chunks} of a larger document. "
            "Extract only the requirements stated in this chunk."
        )

    return "\n\n".join(parts)
