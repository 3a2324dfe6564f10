"""
Hybrid search scoring: weighted cosine similarity plus a keyword boost.

The weights are empirical and configurable. The keyword boost is the
highest tier the query text matches (category, name, tag, description).
"""

from dataclasses import dataclass
from typing import Iterable, Optional, Sequence

from reqgraph.config import Settings
from reqgraph.llm.embedder import cosine_similarity
from reqgraph.models import Requirement, SearchFilters, SearchResult


@dataclass(frozen=True)
class SearchWeights:
    """Weights of the hybrid score."""

    similarity: float = 0.7
    keyword: float = 1.5
    category: float = 0.3
    name: float = 0.2
    tag: float = 0.15
    description: float = 0.1

    @classmethod
    def from_settings(cls, settings: Settings) -> "SearchWeights":
        return cls(
            similarity=settings.search_similarity_weight,
            keyword=settings.search_keyword_weight,
            category=settings.boost_category,
            name=settings.boost_name,
            tag=settings.boost_tag,
            description=settings.boost_description,
        )

    def as_parameters(self) -> dict[str, float]:
        """Query parameters for the Cypher search."""
        return {
            "similarityWeight": self.similarity,
            "keywordWeight": self.keyword,
            "categoryBoost": self.category,
            "nameBoost": self.name,
            "tagBoost": self.tag,
            "descriptionBoost": self.description,
        }


def keyword_boost(requirement: Requirement, query_text: str, weights: SearchWeights) -> float:
    """Highest matching tier for a case-insensitive substring match, else 0."""
    query = query_text.strip().lower()
    if not query:
        return 0.0

    matches = []
    if query in requirement.category.lower():
        matches.append(weights.category)
    if query in requirement.name.lower():
        matches.append(weights.name)
    if any(query in tag.lower() for tag in requirement.tags):
        matches.append(weights.tag)
    if query in requirement.description.lower():
        matches.append(weights.description)
    return max(matches, default=0.0)


def combined_score(similarity: float, boost: float, weights: SearchWeights) -> float:
    return weights.similarity * similarity + weights.keyword * boost


def rank(
    candidates: Iterable[tuple[Requirement, Optional[Sequence[float]]]],
    query_embedding: Sequence[float],
    query_text: str = "",
    filters: Optional[SearchFilters] = None,
    limit: int = 10,
    min_similarity: Optional[float] = None,
    weights: Optional[SearchWeights] = None,
) -> list[SearchResult]:
    """
    Score, filter and order candidate requirements.

    Candidates without an embedding are not searchable. With
    ``min_similarity`` set, a row survives if its score reaches the floor
    or it matched a keyword.
    """
    weights = weights or SearchWeights()
    results: list[SearchResult] = []

    for requirement, embedding in candidates:
        if filters and not filters.matches(requirement):
            continue
        if embedding is None:
            continue

        similarity = cosine_similarity(embedding, query_embedding)
        boost = keyword_boost(requirement, query_text, weights)
        score = combined_score(similarity, boost, weights)
        if min_similarity is not None and score < min_similarity and boost == 0:
            continue

        results.append(
            SearchResult(requirement=requirement, similarity=similarity, keyword_boost=boost, score=score)
        )

    results.sort(key=lambda result: result.score, reverse=True)
    return results[:limit]
