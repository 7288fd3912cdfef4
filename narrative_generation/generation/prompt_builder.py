"""
Prompt Builder - Narrative Generation Prompts

This module finds the prompt template for a domain keyword and turns a
GenerationTask into the system and user messages sent to a backend.

Prompts are assembled so that:
    1. The template is the system message, with chain-of-thought
       directions removed (local models otherwise echo their reasoning)
    2. The domain text is fenced by begin/end markers
    3. A fixed style directive asks for one clinical paragraph without
       test names or raw scores

Template Ids:
    A template id is the canonical keyword plus a short digest of the
    template text (``promem@3f2a9c1b``). The id is part of the cache key,
    so editing a template invalidates its cached narratives.

Pipeline Position:
    Scheduler → Orchestrator → [PromptBuilder] → BackendAdapter
                                ^^^^^^^^^^^^^^^
                                You are here
"""

import hashlib
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Protocol, Union, runtime_checkable

import yaml
from loguru import logger

from narrative_generation.core.constants import (
    DOMAIN_KEYWORDS,
    DOMAIN_TEXT_BEGIN,
    DOMAIN_TEXT_END,
    STYLE_DIRECTIVE,
    SYNTHESIS_DOMAIN_KEY,
    SYNTHESIS_KEYWORD,
)
from narrative_generation.core.exceptions import PromptTemplateError
from narrative_generation.core.models import GenerationPrompt, GenerationTask
from narrative_generation.core.text_utils import strip_think_blocks


# =============================================================================
# STAGE 1: DEFAULT TEMPLATES
# =============================================================================
# Used when no prompts directory is configured.

DOMAIN_TEMPLATE = """You are a board-certified clinical neuropsychologist writing the {name} \
section of a neuropsychological evaluation report.

Write one cohesive paragraph that interprets the patient's performance in this domain:
- Describe relative strengths and weaknesses in plain clinical language
- Characterize performance with descriptive ranges rather than numbers
- Note functional implications for daily life, school or work
- Do not speculate beyond the provided data
"""

SYNTHESIS_TEMPLATE = """You are a board-certified clinical neuropsychologist writing the \
Summary of Results section of a neuropsychological evaluation report.

You are given the individual domain narratives. Integrate them into one cohesive paragraph:
- Open with overall cognitive functioning
- Highlight the most salient strengths and weaknesses across domains
- Connect findings across domains where they explain each other
- Do not repeat every detail from the domain narratives
"""

_FRONT_MATTER_RE = re.compile(r"(?s)^\s*---\s*\n(.*?)\n---\s*\n?(.*)$")
_INCLUDE_RE = re.compile(r"\{\{@([^}]+)\}\}")
_TARGET_LINE_RE = re.compile(r"(?m)^\s*@\s*\S+\.qmd\s*$\n?")
_COT_PREAMBLE_RE = re.compile(r"(?is)Before writing.*?<summary>.*?</summary>\s*")
_COT_ANALYSIS_RE = re.compile(
    r"(?is)<neurocognitive_assessment_analysis>.*?</neurocognitive_assessment_analysis>"
)


# =============================================================================
# STAGE 2: TEXT HELPERS
# =============================================================================


def canonical_keyword(keyword: str) -> str:
    """Drop everything but letters and digits, lowercased (``pro.sirf`` == ``prosirf``)."""
    return re.sub(r"[^A-Za-z0-9]+", "", keyword or "").lower()


def sanitize_system_prompt(text: str) -> str:
    """Remove chain-of-thought directions and target-file routing lines."""
    text = _COT_PREAMBLE_RE.sub("", text)
    text = _COT_ANALYSIS_RE.sub("", text)
    text = _TARGET_LINE_RE.sub("", text)
    return text.strip()


def expand_includes(text: str, base_dir: Union[str, Path]) -> str:
    """
    Replace ``{{@relative/path}}`` references with the file's content.

    Missing files are dropped with a warning.
    """
    base = Path(base_dir)

    def _replace(match: "re.Match[str]") -> str:
        relative = match.group(1).strip()
        path = base / relative
        if path.is_file():
            return path.read_text(encoding="utf-8")
        logger.warning(f"Prompt include not found | Path: {path}")
        return ""

    return _INCLUDE_RE.sub(_replace, text)


def keyword_for_domain(domain_key: str) -> str:
    """Prompt keyword for a domain key; unknown keys are used as-is."""
    if domain_key == SYNTHESIS_DOMAIN_KEY:
        return SYNTHESIS_KEYWORD
    return DOMAIN_KEYWORDS.get(domain_key, domain_key)


# =============================================================================
# STAGE 3: PROMPT TEMPLATES AND STORES
# =============================================================================


@dataclass(frozen=True)
class PromptTemplate:
    """A system prompt registered under a domain keyword."""

    keyword: str
    text: str
    name: str = ""
    source: Optional[str] = None

    @property
    def digest(self) -> str:
        return hashlib.sha256(self.text.encode("utf-8")).hexdigest()[:8]

    @property
    def template_id(self) -> str:
        return f"{canonical_keyword(self.keyword)}@{self.digest}"


@runtime_checkable
class PromptTemplateStore(Protocol):
    """
    Source of prompt templates.

    Required Methods:
        template_for(keyword) → PromptTemplate (raises PromptTemplateError)
        keywords()            → Canonical keywords available
    """

    def template_for(self, keyword: str) -> PromptTemplate:
        ...

    def keywords(self) -> List[str]:
        ...


class InMemoryPromptTemplateStore:
    """
    Templates supplied programmatically.

    Example:
        >>> store = InMemoryPromptTemplateStore({"promem": "You are ..."})
        >>> store.template_for("pro.mem").template_id
        'promem@...'
    """

    def __init__(self, templates: Mapping[str, str]):
        self._templates: Dict[str, PromptTemplate] = {}
        for keyword, text in templates.items():
            key = canonical_keyword(keyword)
            self._templates[key] = PromptTemplate(keyword=key, text=text)

    @classmethod
    def with_defaults(cls) -> "InMemoryPromptTemplateStore":
        """Generic templates for every known domain plus the synthesis section."""
        templates = {
            keyword: DOMAIN_TEMPLATE.format(name=domain.replace("_", " ").title())
            for domain, keyword in DOMAIN_KEYWORDS.items()
        }
        templates[SYNTHESIS_KEYWORD] = SYNTHESIS_TEMPLATE
        return cls(templates)

    def template_for(self, keyword: str) -> PromptTemplate:
        try:
            return self._templates[canonical_keyword(keyword)]
        except KeyError:
            raise PromptTemplateError(keyword) from None

    def keywords(self) -> List[str]:
        return sorted(self._templates)


class DirectoryPromptTemplateStore:
    """
    Templates read from a directory of ``.md``, ``.txt`` or ``.qmd`` files.

    What it does:
        Reads every template file once. A file may start with YAML front
        matter declaring ``keyword`` (and optionally ``name``); otherwise
        the file stem is the keyword. ``{{@path}}`` includes are expanded
        relative to the directory.

    Raises:
        PromptTemplateError: Directory missing, malformed front matter, or
            two files declaring the same keyword
    """

    PATTERNS = ("*.md", "*.txt", "*.qmd")

    def __init__(self, directory: Union[str, Path]):
        self._directory = Path(directory)
        if not self._directory.is_dir():
            raise PromptTemplateError(
                str(directory), f"Prompts directory not found: {self._directory}"
            )

        self._templates: Dict[str, PromptTemplate] = {}
        for pattern in self.PATTERNS:
            for path in sorted(self._directory.glob(pattern)):
                template = self._load(path)
                key = canonical_keyword(template.keyword)
                if key in self._templates:
                    raise PromptTemplateError(
                        template.keyword,
                        f"Duplicate prompt keyword '{key}' in {path.name} "
                        f"and {Path(self._templates[key].source).name}",
                    )
                self._templates[key] = template

        logger.info(
            f"Prompt templates loaded | Directory: {self._directory} | "
            f"Count: {len(self._templates)}"
        )

    def _load(self, path: Path) -> PromptTemplate:
        raw = path.read_text(encoding="utf-8")
        keyword, name, body = path.stem, path.stem, raw

        match = _FRONT_MATTER_RE.match(raw)
        if match:
            try:
                front = yaml.safe_load(match.group(1)) or {}
            except yaml.YAMLError as e:
                raise PromptTemplateError(path.stem, f"Malformed front matter in {path.name}: {e}")
            if not isinstance(front, dict):
                raise PromptTemplateError(
                    path.stem, f"Front matter in {path.name} is not a mapping"
                )
            keyword = str(front.get("keyword") or path.stem)
            name = str(front.get("name") or keyword)
            body = match.group(2)

        body = expand_includes(body, self._directory)
        return PromptTemplate(
            keyword=canonical_keyword(keyword), text=body, name=name, source=str(path)
        )

    def template_for(self, keyword: str) -> PromptTemplate:
        try:
            return self._templates[canonical_keyword(keyword)]
        except KeyError:
            raise PromptTemplateError(keyword) from None

    def keywords(self) -> List[str]:
        return sorted(self._templates)


# =============================================================================
# STAGE 4: PROMPT BUILDER
# =============================================================================


class PromptBuilder:
    """
    Builds backend prompts for generation tasks.

    What it does:
        Resolves the task's template from its template id, sanitizes it
        into the system message and wraps the task input into the user
        message.

    Example:
        >>> builder = PromptBuilder(InMemoryPromptTemplateStore.with_defaults())
        >>> template_id = builder.template_id_for("memory")
        >>> prompt = builder.build(task)
    """

    def __init__(self, store: PromptTemplateStore):
        self._store = store

    def template_for_domain(self, domain_key: str) -> PromptTemplate:
        return self._store.template_for(keyword_for_domain(domain_key))

    def template_id_for(self, domain_key: str) -> str:
        """Template id to put on a task for this domain."""
        return self.template_for_domain(domain_key).template_id

    def build(self, task: GenerationTask) -> GenerationPrompt:
        """
        Build the prompt for a task.

        Raises:
            PromptTemplateError: If the task's template cannot be found
        """
        keyword = (
            task.prompt_template_id.split("@", 1)[0]
            if task.prompt_template_id
            else keyword_for_domain(task.domain_key)
        )
        template = self._store.template_for(keyword)

        user = "\n".join(
            [
                STYLE_DIRECTIVE,
                "",
                DOMAIN_TEXT_BEGIN,
                strip_think_blocks(task.input_text),
                DOMAIN_TEXT_END,
            ]
        )
        return GenerationPrompt(system=sanitize_system_prompt(template.text), user=user)

    @property
    def store(self) -> PromptTemplateStore:
        return self._store
