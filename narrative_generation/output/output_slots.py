"""
Output Slots - Where Finished Narratives Go

The scheduler writes each accepted or flagged narrative to the slot of
its domain. Report rendering picks the slots up from there; this module
does not render anything.

Architecture:
    OutputSlots (Protocol)
    ├── InMemoryOutputSlots → dict of domain → narrative
    └── FileOutputSlots     → one ``<domain>.md`` file per domain
"""

import os
import tempfile
import threading
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Dict, Optional, Protocol, Union, runtime_checkable

from loguru import logger

from narrative_generation.core.models import TaskResult


@dataclass(frozen=True)
class NarrativeMetadata:
    """Provenance written alongside a narrative."""

    model_id: Optional[str] = None
    quality_score: Optional[float] = None
    low_confidence: bool = False
    from_cache: bool = False
    generated_at: datetime = field(default_factory=datetime.now)

    @classmethod
    def from_result(cls, result: TaskResult) -> "NarrativeMetadata":
        return cls(
            model_id=result.model_id,
            quality_score=result.quality_score,
            low_confidence=result.low_confidence,
            from_cache=result.from_cache,
        )

    def as_comment(self) -> str:
        """Single-line HTML comment header for rendered documents."""
        quality = f"{self.quality_score:.0f}" if self.quality_score is not None else "N/A"
        parts = [
            f"Generated: {self.generated_at:%Y-%m-%d %H:%M:%S}",
            f"Model: {self.model_id or 'unknown'}",
            f"Quality: {quality}",
        ]
        if self.low_confidence:
            parts.append("Low confidence: yes")
        return f"<!-- {' | '.join(parts)} -->"


@runtime_checkable
class OutputSlots(Protocol):
    """Destination for finished narratives, keyed by domain."""

    def write(self, domain_key: str, text: str, metadata: NarrativeMetadata) -> None:
        ...


class InMemoryOutputSlots:
    """Thread-safe dict of domain → (text, metadata)."""

    def __init__(self):
        self._slots: Dict[str, str] = {}
        self._metadata: Dict[str, NarrativeMetadata] = {}
        self._lock = threading.Lock()

    def write(self, domain_key: str, text: str, metadata: NarrativeMetadata) -> None:
        with self._lock:
            self._slots[domain_key] = text
            self._metadata[domain_key] = metadata

    def read(self, domain_key: str) -> Optional[str]:
        with self._lock:
            return self._slots.get(domain_key)

    def metadata(self, domain_key: str) -> Optional[NarrativeMetadata]:
        with self._lock:
            return self._metadata.get(domain_key)

    @property
    def slots(self) -> Dict[str, str]:
        with self._lock:
            return dict(self._slots)


class FileOutputSlots:
    """
    One Markdown file per domain.

    Each file holds a metadata comment, a blank line and the narrative.
    Files are written to a temporary name and renamed into place, so a
    reader never sees a half-written narrative.

    Example:
        >>> slots = FileOutputSlots("generated_narratives")
        >>> slots.write("memory", text, NarrativeMetadata(model_id="qwen3:8b"))
        >>> slots.read("memory") == text
        True
    """

    def __init__(self, directory: Union[str, Path]):
        self._directory = Path(directory)
        self._directory.mkdir(parents=True, exist_ok=True)

    def path_for(self, domain_key: str) -> Path:
        return self._directory / f"{domain_key}.md"

    def write(self, domain_key: str, text: str, metadata: NarrativeMetadata) -> None:
        target = self.path_for(domain_key)
        content = f"{metadata.as_comment()}\n\n{text.strip()}\n"

        fd, tmp_name = tempfile.mkstemp(dir=self._directory, prefix=f".{domain_key}-")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(content)
            os.replace(tmp_name, target)
        except OSError:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise

        logger.info(f"Narrative written | Domain: {domain_key} | Path: {target}")

    def read(self, domain_key: str) -> Optional[str]:
        """Narrative text of a slot without its metadata header."""
        path = self.path_for(domain_key)
        if not path.exists():
            return None
        content = path.read_text(encoding="utf-8")
        if content.startswith("<!--"):
            _, _, content = content.partition("-->")
        return content.strip()

    @property
    def directory(self) -> Path:
        return self._directory
