"""
Tests for parsing model responses into requirements.
"""

import json

import pytest

from reqgraph.extraction.parser import ResponseParser
from reqgraph.models import Priority, RequirementType

TOON_RESPONSE = """Here are the extracted requirements:

```toon
requirements[2]{identifier,name,description,requirementType,priority,category,tags,dependsOn}:
  FR-001,User login,"Users log in with email, password",functional,high,User Management,"auth,login",
  SEC-001,Password hashing,Passwords are hashed with bcrypt,security,must,Security & Compliance,security,FR-001

relationships[1]{type,source,target}:
  RELATED_TO,FR-001,SEC-001
```
"""


@pytest.fixture
def parser():
    return ResponseParser()


class TestResponseParser:
    def test_toon_block(self, parser):
        """Test parsing a fenced TOON block."""
        parsed = parser.parse(TOON_RESPONSE)

        assert parsed.succeeded
        assert parsed.format == "toon"
        assert [r.identifier for r in parsed.requirements] == ["FR-001", "SEC-001"]

        login, hashing = parsed.requirements
        assert login.description == "Users log in with email, password"
        assert login.priority == Priority.MUST
        assert login.tags == ["auth", "login"]
        assert login.related_requirements == ["SEC-001"]
        assert hashing.requirement_type == RequirementType.SECURITY
        assert hashing.dependencies.depends_on == ["FR-001"]

    def test_json_block(self, parser):
        """Test parsing a fenced JSON block."""
        payload = {
            "requirements": [
                {"id": "FR-001", "title": "Export", "type": "functional", "priority": "could"},
                {"identifier": "PERF-001", "name": "Fast search", "requirementType": "performance"},
            ]
        }
        parsed = parser.parse(f"```json\n{json.dumps(payload)}\n```")

        assert parsed.format == "json"
        assert [r.identifier for r in parsed.requirements] == ["FR-001", "PERF-001"]
        assert parsed.requirements[0].name == "Export"
        assert parsed.requirements[1].requirement_type == RequirementType.PERFORMANCE

    def test_bare_json_array(self, parser):
        """Test parsing an unfenced JSON array."""
        response = 'Result: [{"identifier": "FR-009", "name": "Audit trail"}] done.'
        parsed = parser.parse(response)

        assert parsed.format == "json"
        assert parsed.requirements[0].identifier == "FR-009"

    def test_unfenced_toon(self, parser):
        """Test parsing TOON without a fence."""
        response = "requirements[1]{identifier,name}:\n  FR-001,Login"
        parsed = parser.parse(response)

        assert parsed.succeeded
        assert parsed.requirements[0].name == "Login"

    def test_type_guessed_from_identifier(self, parser):
        """Test the type taken from the identifier prefix."""
        parsed = parser.parse("```toon\nrequirements[1]{identifier,name}:\n  SEC-004,Encrypt backups\n```")
        assert parsed.requirements[0].requirement_type == RequirementType.SECURITY

    def test_rows_without_identifier_or_name_are_skipped(self, parser):
        """Test that incomplete rows are skipped."""
        response = "```toon\nrequirements[3]{identifier,name}:\n  ,No id\n  FR-002,\n  FR-003,Kept\n```"
        parsed = parser.parse(response)

        assert [r.identifier for r in parsed.requirements] == ["FR-003"]
        assert parsed.skipped == 2

    def test_malformed_rows_dropped_individually(self, parser):
        """Test that bad rows are dropped one by one."""
        response = "```toon\nrequirements[3]{identifier,name}:\n  FR-001,A\n  FR-002,B,extra\n  FR-003,C\n```"
        parsed = parser.parse(response)

        assert [r.identifier for r in parsed.requirements] == ["FR-001", "FR-003"]

    def test_unparseable_response_never_raises(self, parser):
        """Test parsing a response that is not TOON or JSON."""
        parsed = parser.parse("I could not find any requirements in this text.")

        assert not parsed.succeeded
        assert parsed.requirements == []
        assert "No parseable requirements" in parsed.error

    def test_empty_response(self, parser):
        """Test parsing an empty response."""
        parsed = parser.parse("")
        assert not parsed.succeeded
