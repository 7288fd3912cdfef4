"""
Tests for narrative output slots.
"""

from datetime import datetime

from narrative_generation.core.enums import TaskOutcome, TaskState
from narrative_generation.core.models import TaskResult, ValidationResult
from narrative_generation.output.output_slots import (
    FileOutputSlots,
    InMemoryOutputSlots,
    NarrativeMetadata,
    OutputSlots,
)


WHEN = datetime(2025, 3, 14, 9, 30, 0)


class TestNarrativeMetadata:
    """Provenance header."""

    def test_comment_format(self):
        metadata = NarrativeMetadata(model_id="qwen3:8b", quality_score=86.4, generated_at=WHEN)

        assert metadata.as_comment() == (
            "<!-- Generated: 2025-03-14 09:30:00 | Model: qwen3:8b | Quality: 86 -->"
        )

    def test_low_confidence_and_missing_values(self):
        metadata = NarrativeMetadata(low_confidence=True, generated_at=WHEN)

        comment = metadata.as_comment()

        assert "Model: unknown" in comment
        assert "Quality: N/A" in comment
        assert comment.endswith("Low confidence: yes -->")

    def test_from_result(self):
        result = TaskResult(
            task_id="memory",
            domain_key="memory",
            outcome=TaskOutcome.FLAGGED,
            final_state=TaskState.EXHAUSTED,
            text="Narrative.",
            model_id="model-a",
            validation=ValidationResult(passed=False, quality_score=55.0),
        )

        metadata = NarrativeMetadata.from_result(result)

        assert metadata.model_id == "model-a"
        assert metadata.quality_score == 55.0
        assert metadata.low_confidence is True


class TestInMemoryOutputSlots:
    def test_write_and_read(self):
        slots = InMemoryOutputSlots()
        slots.write("memory", "Narrative.", NarrativeMetadata(model_id="model-a"))

        assert isinstance(slots, OutputSlots)
        assert slots.read("memory") == "Narrative."
        assert slots.metadata("memory").model_id == "model-a"
        assert slots.read("executive") is None
        assert slots.slots == {"memory": "Narrative."}


class TestFileOutputSlots:
    """One Markdown file per domain."""

    def test_file_has_header_then_narrative(self, tmp_path):
        slots = FileOutputSlots(tmp_path / "out")
        slots.write("memory", "  Narrative text.\n", NarrativeMetadata(generated_at=WHEN))

        content = slots.path_for("memory").read_text(encoding="utf-8")

        header, blank, body = content.split("\n", 2)
        assert header.startswith("<!-- Generated: 2025-03-14")
        assert blank == ""
        assert body == "Narrative text.\n"
        assert slots.read("memory") == "Narrative text."

    def test_rewrite_replaces_previous_narrative(self, tmp_path):
        slots = FileOutputSlots(tmp_path)
        slots.write("memory", "First.", NarrativeMetadata())
        slots.write("memory", "Second.", NarrativeMetadata())

        assert slots.read("memory") == "Second."
        assert [p.name for p in tmp_path.iterdir()] == ["memory.md"]

    def test_missing_slot_reads_none(self, tmp_path):
        assert FileOutputSlots(tmp_path).read("executive") is None
