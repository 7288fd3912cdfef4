"""
Generation Layer - Prompt Building and the Generation Orchestrator

Submodules:
    prompt_builder.py → Prompt templates, template stores, prompt assembly
    orchestrator.py   → Per-task retry / fallback / validation state machine

Dependencies:
    This layer depends on: core, clients, selection, validation, cache, telemetry
    This layer is used by: scheduling, pipeline
"""

from narrative_generation.generation.prompt_builder import (
    PromptBuilder,
    PromptTemplate,
    PromptTemplateStore,
    InMemoryPromptTemplateStore,
    DirectoryPromptTemplateStore,
    canonical_keyword,
    keyword_for_domain,
    sanitize_system_prompt,
    expand_includes,
)
from narrative_generation.generation.orchestrator import GenerationOrchestrator

__all__ = [
    "PromptBuilder",
    "PromptTemplate",
    "PromptTemplateStore",
    "InMemoryPromptTemplateStore",
    "DirectoryPromptTemplateStore",
    "canonical_keyword",
    "keyword_for_domain",
    "sanitize_system_prompt",
    "expand_includes",
    "GenerationOrchestrator",
]
