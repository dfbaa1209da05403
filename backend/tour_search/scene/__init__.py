"""Scene graph discovery and element classification."""

from .classifier import ClassificationRule, TypeClassifier
from .host import HostAccessError, read_field
from .readiness import DEFAULT_PROBES, ReadinessProbe, wait_until_ready
from .walker import SceneWalker, WalkedNode

__all__ = [
    "ClassificationRule",
    "DEFAULT_PROBES",
    "HostAccessError",
    "ReadinessProbe",
    "SceneWalker",
    "TypeClassifier",
    "WalkedNode",
    "read_field",
    "wait_until_ready",
]
