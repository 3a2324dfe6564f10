"""
Parsing of free-form model output into requirements.

Models are asked for a fenced TOON block but do not always comply, so the
parser tries, in order: a ```toon block, a ```json block, any untagged
fenced block, a bare JSON object or array, and finally the whole response
as TOON. Parsing never raises; a response that cannot be read yields an
empty result with the error recorded.
"""

import json
import re
from typing import Any, Iterator, Optional

from pydantic import BaseModel, Field, ValidationError

from reqgraph.extraction.validator import type_for_identifier
from reqgraph.models import Requirement, ResponseFormat
from reqgraph.toon.codec import ToonCodec
from reqgraph.utils.errors import ParseError
from reqgraph.utils.logging import get_logger

logger = get_logger(__name__)

_FENCED_BLOCK = re.compile(r"```[ \t]*([\w+-]*)[^\n]*\n(.*?)```", re.DOTALL)
_JSON_OBJECT = re.compile(r"\{.*\}", re.DOTALL)
_JSON_ARRAY = re.compile(r"\[.*\]", re.DOTALL)

# Keys used by older prompts and by models that shorten field names
_FIELD_ALIASES = {
    "id": "identifier",
    "type": "requirementType",
    "requirement_type": "requirementType",
    "title": "name",
}

_RELATION_TARGETS = {
    "DEPENDS_ON": "depends_on",
    "DEPENDSON": "depends_on",
    "CONFLICTS_WITH": "conflicts",
    "CONFLICTS": "conflicts",
    "EXTENDS": "extends",
    "RELATED_TO": "related",
}


class ParsedResponse(BaseModel):
    """Requirements read from one model response."""

    requirements: list[Requirement] = Field(default_factory=list)
    format: Optional[str] = None
    skipped: int = 0
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.error is None


class ResponseParser:
    """Extract and decode requirements from model responses."""

    def __init__(self, codec: Optional[ToonCodec] = None) -> None:
        self.codec = codec or ToonCodec()

    def parse(self, response: str) -> ParsedResponse:
        """
        Parse a model response.

        Args:
            response: Raw model output

        Returns:
            Parsed requirements, or an empty result carrying the error
        """
        try:
            response_format, records, relationships = self._decode(response or "")
        except ParseError as e:
            logger.warning(
                "Could not parse model response",
                extra={"error": str(e), "response_length": len(response or "")},
            )
            return ParsedResponse(error=str(e))

        requirements, skipped = self._build_requirements(records)
        self._apply_relationships(requirements, relationships)

        logger.debug(
            "Parsed model response",
            extra={"format": response_format, "requirements": len(requirements), "skipped": skipped},
        )
        return ParsedResponse(requirements=requirements, format=response_format, skipped=skipped)

    # ------------------------------------------------------------------ decode

    def _candidates(self, response: str) -> Iterator[tuple[str, str]]:
        blocks = [(tag.lower(), body) for tag, body in _FENCED_BLOCK.findall(response)]

        for tag, body in blocks:
            if tag == ResponseFormat.TOON.value:
                yield ResponseFormat.TOON.value, body
        for tag, body in blocks:
            if tag == ResponseFormat.JSON.value:
                yield ResponseFormat.JSON.value, body
        for tag, body in blocks:
            if not tag:
                yield ResponseFormat.TOON.value, body
                yield ResponseFormat.JSON.value, body

        for pattern in (_JSON_OBJECT, _JSON_ARRAY):
            match = pattern.search(response)
            if match:
                yield ResponseFormat.JSON.value, match.group()

        yield ResponseFormat.TOON.value, response

    def _decode(self, response: str) -> tuple[str, list[Any], list[Any]]:
        errors: list[str] = []
        for response_format, body in self._candidates(response):
            try:
                if response_format == ResponseFormat.TOON.value:
                    return (response_format, *self._decode_toon(body))
                return (response_format, *self._decode_json(body))
            except ParseError as e:
                errors.append(f"{response_format}: {e.message}")

        raise ParseError("No parseable requirements in response", {"attempts": errors})

    def _decode_toon(self, body: str) -> tuple[list[Any], list[Any]]:
        tables = self.codec.decode(body, lenient=True)
        if "requirements" not in tables:
            raise ParseError("no requirements table")
        return tables["requirements"], tables.get("relationships", [])

    @staticmethod
    def _decode_json(body: str) -> tuple[list[Any], list[Any]]:
        try:
            data = json.loads(body)
        except json.JSONDecodeError as e:
            raise ParseError(f"invalid JSON: {e.msg}")

        if isinstance(data, list):
            if data and not any(isinstance(item, dict) for item in data):
                raise ParseError("JSON array holds no records")
            return data, []
        if isinstance(data, dict) and isinstance(data.get("requirements"), list):
            relationships = data.get("relationships")
            return data["requirements"], relationships if isinstance(relationships, list) else []
        raise ParseError("JSON has no requirements list")

    # ----------------------------------------------------------- conversion

    def _build_requirements(self, records: list[Any]) -> tuple[list[Requirement], int]:
        requirements: list[Requirement] = []
        skipped = 0

        for position, raw in enumerate(records):
            if not isinstance(raw, dict):
                skipped += 1
                continue

            record = self._normalize_keys(raw)
            identifier = str(record.get("identifier") or "").strip()
            if not identifier:
                logger.debug("Skipping requirement without identifier", extra={"row": position})
                skipped += 1
                continue

            if not record.get("requirementType"):
                guessed = type_for_identifier(identifier)
                if guessed:
                    record["requirementType"] = guessed.value

            try:
                requirements.append(Requirement.model_validate(record))
            except ValidationError as e:
                logger.warning(
                    "Skipping invalid requirement",
                    extra={"identifier": identifier, "error": str(e.errors()[:3])},
                )
                skipped += 1

        return requirements, skipped

    @staticmethod
    def _normalize_keys(raw: dict[str, Any]) -> dict[str, Any]:
        record = dict(raw)
        for alias, field in _FIELD_ALIASES.items():
            if alias in record and field not in record:
                record[field] = record.pop(alias)
        return record

    @staticmethod
    def _apply_relationships(requirements: list[Requirement], relationships: list[Any]) -> None:
        """Fold rows of a relationships table into the source requirement."""
        by_identifier = {r.identifier.strip(): r for r in requirements}

        for row in relationships:
            if not isinstance(row, dict):
                continue
            relation = str(row.get("type") or "").strip().upper().replace(" ", "_")
            source = by_identifier.get(str(row.get("source") or "").strip())
            target = str(row.get("target") or "").strip()
            kind = _RELATION_TARGETS.get(relation)
            if source is None or not target or kind is None:
                logger.debug("Ignoring relationship row", extra={"relationship": row})
                continue

            if kind == "related":
                targets = source.related_requirements
            else:
                targets = getattr(source.dependencies, kind)
            if target not in targets:
                targets.append(target)
