"""
Cleaning of extracted requirements: identifier normalization,
deduplication and category inference.
"""

import re
from typing import Iterable, Optional

from reqgraph.models import Requirement, RequirementType
from reqgraph.utils.logging import get_logger

logger = get_logger(__name__)

TYPE_PREFIXES: dict[RequirementType, str] = {
    RequirementType.FUNCTIONAL: "FR",
    RequirementType.NON_FUNCTIONAL: "NFR",
    RequirementType.SECURITY: "SEC",
    RequirementType.PERFORMANCE: "PERF",
    RequirementType.USABILITY: "UX",
    RequirementType.BUSINESS: "BUS",
}
DEFAULT_PREFIX = "REQ"

TYPE_CATEGORIES: dict[RequirementType, str] = {
    RequirementType.SECURITY: "Security & Compliance",
    RequirementType.PERFORMANCE: "Performance & Scalability",
    RequirementType.USABILITY: "User Experience",
}

# Checked in order against the lowercased name; first match wins.
KEYWORD_CATEGORIES: list[tuple[tuple[str, ...], str]] = [
    (("user", "profile", "auth", "login"), "User Management"),
    (("payment", "order", "cart"), "E-Commerce"),
    (("search", "recommendation", "personalization"), "Search & Recommendations"),
    (("data", "backup", "recovery"), "Data Management"),
    (("integration", "api"), "Integration"),
]
DEFAULT_CATEGORY = "General"

_NUMERIC_SUFFIX = re.compile(r"(\d+)$")


def prefix_for(requirement_type: RequirementType) -> str:
    return TYPE_PREFIXES.get(requirement_type, DEFAULT_PREFIX)


def type_for_identifier(identifier: str) -> Optional[RequirementType]:
    """Guess the type from an identifier prefix such as ``SEC-004``."""
    prefix = re.split(r"[-_\s]", identifier.strip().upper(), maxsplit=1)[0]
    for requirement_type, known in TYPE_PREFIXES.items():
        if prefix == known:
            return requirement_type
    return None


class RequirementValidator:
    """Turn raw parsed requirements into a clean, deduplicated list."""

    def infer_category(self, requirement: Requirement) -> str:
        """Category from the requirement type, then from keywords in the name."""
        if requirement.requirement_type in TYPE_CATEGORIES:
            return TYPE_CATEGORIES[requirement.requirement_type]

        name = requirement.name.lower()
        for keywords, category in KEYWORD_CATEGORIES:
            if any(keyword in name for keyword in keywords):
                return category
        return DEFAULT_CATEGORY

    def normalize_identifier(self, identifier: str, requirement_type: RequirementType) -> str:
        """Re-prefix the numeric suffix by type: ``REQ-7`` (security) -> ``SEC-007``."""
        identifier = identifier.strip()
        match = _NUMERIC_SUFFIX.search(identifier)
        if not match:
            return identifier
        return f"{prefix_for(requirement_type)}-{int(match.group(1)):03d}"

    def clean(self, requirements: Iterable[Requirement]) -> list[Requirement]:
        """
        Normalize, deduplicate and complete requirements, keeping input order.

        Duplicates are detected on the trimmed raw identifier before it is
        renumbered, then once more on the normalized one so that two raw
        ids mapping to the same normalized id cannot both survive. The
        first occurrence wins and later ones are discarded.
        """
        seen_raw: set[str] = set()
        seen: set[str] = set()
        renamed: dict[str, str] = {}
        cleaned: list[Requirement] = []

        for requirement in requirements:
            raw_identifier = requirement.identifier.strip()
            if not raw_identifier:
                logger.debug(
                    "Skipping requirement without identifier",
                    extra={"requirement_name": requirement.name},
                )
                continue

            if raw_identifier in seen_raw:
                logger.debug(
                    "Skipping duplicate requirement (by identifier)",
                    extra={"identifier": raw_identifier},
                )
                continue
            seen_raw.add(raw_identifier)

            identifier = self.normalize_identifier(raw_identifier, requirement.requirement_type)
            renamed.setdefault(raw_identifier, identifier)
            if identifier in seen:
                logger.debug(
                    "Skipping duplicate requirement (by normalized identifier)",
                    extra={"identifier": identifier, "original_identifier": raw_identifier},
                )
                continue
            seen.add(identifier)

            updates: dict = {}
            if identifier != requirement.identifier:
                updates["identifier"] = identifier
            if not requirement.category.strip():
                updates["category"] = self.infer_category(requirement)
            cleaned.append(requirement.model_copy(update=updates) if updates else requirement)

        cleaned = [self._rename_references(requirement, renamed) for requirement in cleaned]

        logger.debug(
            "Validated requirements",
            extra={"requirements": len(cleaned)},
        )
        return cleaned

    @staticmethod
    def _rename_references(requirement: Requirement, renamed: dict[str, str]) -> Requirement:
        """Point relation lists at normalized identifiers."""

        def rename(identifiers: list[str]) -> list[str]:
            result = [renamed.get(i.strip(), i.strip()) for i in identifiers]
            return [i for i in dict.fromkeys(result) if i and i != requirement.identifier]

        dependencies = requirement.dependencies.model_copy(
            update={
                "depends_on": rename(requirement.dependencies.depends_on),
                "conflicts": rename(requirement.dependencies.conflicts),
                "extends": rename(requirement.dependencies.extends),
            }
        )
        return requirement.model_copy(
            update={
                "related_requirements": rename(requirement.related_requirements),
                "dependencies": dependencies,
            }
        )
