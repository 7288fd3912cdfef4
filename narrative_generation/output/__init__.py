"""
Output Layer - Per-Domain Narrative Slots

Submodules:
    output_slots.py → Slot protocol, in-memory and file-backed slots
"""

from narrative_generation.output.output_slots import (
    OutputSlots,
    InMemoryOutputSlots,
    FileOutputSlots,
    NarrativeMetadata,
)

__all__ = [
    "OutputSlots",
    "InMemoryOutputSlots",
    "FileOutputSlots",
    "NarrativeMetadata",
]
