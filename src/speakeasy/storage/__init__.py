"""
Storage ports for learner preferences.
"""

from speakeasy.storage.preferences import (
    InMemoryPreferenceStore,
    JsonPreferenceStore,
    PreferenceStore,
)

__all__ = [
    "InMemoryPreferenceStore",
    "JsonPreferenceStore",
    "PreferenceStore",
]
