"""Knowledge graph construction."""

from .builder import (
    BrokenReference,
    GraphBuild,
    GraphBuilder,
    GraphChanges,
    Node,
    Relationship,
    diff_builds,
)
from .relationships import Classifier, TypePairClassifier

__all__ = [
    "BrokenReference",
    "Classifier",
    "GraphBuild",
    "GraphBuilder",
    "GraphChanges",
    "Node",
    "Relationship",
    "TypePairClassifier",
    "diff_builds",
]
