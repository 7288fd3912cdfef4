"""
Cache Layer - Content-Addressed Narrative Store

Submodules:
    narrative_cache.py → Key derivation, file-based and in-memory stores
"""

from narrative_generation.cache.narrative_cache import (
    NarrativeCacheProtocol,
    FileNarrativeCache,
    InMemoryNarrativeCache,
    make_cache_key,
)

__all__ = [
    "NarrativeCacheProtocol",
    "FileNarrativeCache",
    "InMemoryNarrativeCache",
    "make_cache_key",
]
