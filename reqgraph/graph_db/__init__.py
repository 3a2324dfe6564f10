"""
Graph persistence for requirements.

Importing this package registers the available store types with the
factory.
"""

from reqgraph.graph_db.base import GraphStoreFactory, RequirementGraphStore
from reqgraph.graph_db.memory_store import InMemoryRequirementStore
from reqgraph.graph_db.neo4j_store import Neo4jRequirementStore, create_graph_store
from reqgraph.graph_db.scoring import SearchWeights

__all__ = [
    "GraphStoreFactory",
    "InMemoryRequirementStore",
    "Neo4jRequirementStore",
    "RequirementGraphStore",
    "SearchWeights",
    "create_graph_store",
]
