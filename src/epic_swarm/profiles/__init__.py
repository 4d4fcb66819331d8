"""Worker profile models and loader exports."""

from .loader import ProfileLoadError, ProfileLoader, WorkerProfile, load_profiles
from .models import ChecklistItem
from .prompt import DEFAULT_PROFILE, build_worker_prompt

__all__ = [
    "ChecklistItem",
    "DEFAULT_PROFILE",
    "ProfileLoadError",
    "ProfileLoader",
    "WorkerProfile",
    "build_worker_prompt",
    "load_profiles",
]
