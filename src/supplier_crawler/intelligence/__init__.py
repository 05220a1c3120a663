"""
Site Intelligence Package.

Selector knowledge for the target marketplace: ordered fallback candidates
per field, with hit statistics.
"""

from .selector_library import (
    FieldSpec,
    SelectorCandidates,
    SelectorLibrary,
)

__all__ = [
    "FieldSpec",
    "SelectorCandidates",
    "SelectorLibrary",
]
