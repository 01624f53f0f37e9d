"""Agent profile models and loader exports."""

from .loader import AgentProfile, ProfileLoadError, ProfileLoader, load_profiles
from .models import ArtifactKind, RoleClass

__all__ = [
    "AgentProfile",
    "ArtifactKind",
    "ProfileLoadError",
    "ProfileLoader",
    "RoleClass",
    "load_profiles",
]
