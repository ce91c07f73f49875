"""Agent passes that create or grow the backlog.

- InitializerAgent: new project from a description (initializer.py)
- FeatureAdderAgent / FeatureAtomizerAgent: add tasks to an existing
  project (feature_adder.py)
"""

from .feature_adder import VALID_TARGETS, FeatureAdderAgent, FeatureAtomizerAgent
from .initializer import InitializerAgent

__all__ = [
    "InitializerAgent",
    "FeatureAdderAgent",
    "FeatureAtomizerAgent",
    "VALID_TARGETS",
]
