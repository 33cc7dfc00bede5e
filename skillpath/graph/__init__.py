"""
Graph: skill/prerequisite topology.
"""

from skillpath.graph.skill_graph import SkillGraph
from skillpath.graph.stores import GraphStore, InMemoryGraphStore

__all__ = ["SkillGraph", "GraphStore", "InMemoryGraphStore"]
