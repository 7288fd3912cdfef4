"""
Constants for Narrative Generation

This module defines constant values used throughout the orchestrator.
Constants are:
    1. Centralized for easy modification
    2. Type-hinted for IDE support
    3. Documented with usage context

Constant Categories:
    DEFAULT_TIER_MODELS   → Candidate model ids per tier, in priority order
    DOMAIN_KEYWORDS       → Domain key → prompt keyword mapping
    VALIDATION_PATTERNS   → Test names, clinical markers, score regexes
    PROMPT_MARKERS        → Delimiters wrapping domain text in prompts
"""

from typing import Dict, List, Tuple


# =============================================================================
# STAGE 1: DEFAULT CANDIDATE MODELS
# =============================================================================
# Ordered by priority within each tier. Latest recommended local models come
# first, proven fallbacks after them. Ids follow Ollama naming.

DEFAULT_TIER_MODELS: Dict[str, List[str]] = {
    # -------------------------------------------------------------------------
    # 1.1 Single-domain narratives (~4-8B)
    # -------------------------------------------------------------------------
    "domain": [
        "gemma3:4b-it-qat",
        "qwen3:4b-instruct-2507-q4_K_M",
        "llama3.2:3b-instruct-q4_K_M",
        "mistral:7b-instruct-v0.3-q4_K_M",
        "qwen3:8b-q4_K_M",
        "phi3:medium-128k-q4_K_M",
        "llama3:8b-instruct-q4_K_M",
    ],
    # -------------------------------------------------------------------------
    # 1.2 Cross-domain synthesis (~8-14B)
    # -------------------------------------------------------------------------
    "synthesis": [
        "gemma3:12b-it-qat",
        "qwen3:8b-q8_0",
        "llama3:8b-instruct-q8_0",
        "mixtral:8x7b-instruct-q4_K_M",
        "qwen3:14b-q4_K_M",
        "solar:10.7b-instruct-q4_K_M",
    ],
    # -------------------------------------------------------------------------
    # 1.3 Comprehensive synthesis (20B+)
    # -------------------------------------------------------------------------
    "large": [
        "gemma3:27b-it-qat",
        "gpt-oss:20b",
        "qwen3:30b-a3b-instruct-2507-q4_K_M",
        "command-r:35b-v0.1-q4_K_M",
        "qwen3:32b-q4_K_M",
        "yi:34b-chat-q4_K_M",
    ],
}

# Hosted providers: cheapest adequate model first.
HOSTED_TIER_MODELS: Dict[str, Dict[str, List[str]]] = {
    "openai": {
        "domain": ["gpt-4o-mini", "gpt-4.1-mini"],
        "synthesis": ["gpt-4.1-mini", "gpt-4o"],
        "large": ["gpt-4o", "gpt-4.1"],
    },
    "gemini": {
        "domain": ["gemini-1.5-flash", "gemini-2.0-flash"],
        "synthesis": ["gemini-2.0-flash", "gemini-1.5-pro"],
        "large": ["gemini-1.5-pro"],
    },
}

# Declared context sizes for model families; anything unlisted uses the default.
MODEL_CONTEXT_LIMITS: Dict[str, int] = {
    "gemma3": 128000,
    "qwen3": 32768,
    "llama3.2": 128000,
    "llama3": 8192,
    "mistral": 32768,
    "phi3": 128000,
    "mixtral": 32768,
    "solar": 4096,
    "gpt-oss": 128000,
    "command-r": 128000,
    "yi": 4096,
}
DEFAULT_CONTEXT_LIMIT = 8192

CHARS_PER_TOKEN = 4
"""Rough GPT-style estimate used when a backend does not report usage."""


# =============================================================================
# STAGE 2: DOMAIN KEYWORDS
# =============================================================================
# Domain key (output slot) → keyword of the prompt template for that domain.

DOMAIN_KEYWORDS: Dict[str, str] = {
    "iq": "proiq",
    "academics": "proacad",
    "verbal": "proverb",
    "spatial": "provis",
    "memory": "promem",
    "executive": "proexe",
    "motor": "promot",
    "social": "prosoc",
    "adhd": "proadhd",
    "emotion": "proemo",
    "adaptive": "proadapt",
    "daily_living": "prodl",
    "validity": "provalid",
}

SYNTHESIS_DOMAIN_KEY = "sirf"
SYNTHESIS_KEYWORD = "instsirf"


# =============================================================================
# STAGE 3: VALIDATION PATTERNS
# =============================================================================

TEST_NAMES: Tuple[str, ...] = (
    "WAIS",
    "WISC",
    "WPPSI",
    "WIAT",
    "KTEA",
    "NEPSY",
    "D-KEFS",
    "CVLT",
    "ROCFT",
    "Rey",
    "Trail Making",
    "BASC",
    "BRIEF",
    "Conners",
    "CAARS",
    "CEFI",
    "NAB",
    "RBANS",
)

CLINICAL_TERMS: Tuple[str, ...] = (
    "cognitive",
    "functioning",
    "ability",
    "skills",
    "performance",
    "difficulties",
    "challenges",
    "strengths",
    "weaknesses",
)

PERCENTILE_PATTERN = r"\d+(?:st|nd|rd|th)\s*percentile"
SCORE_VALUE_PATTERN = r"(?:T-score|standard score|scaled score|raw score)\s*(?:of|=|:)?\s*\d+"
THINK_BLOCK_PATTERN = r"(?is)<think>.*?</think>"


# =============================================================================
# STAGE 4: PROMPT MARKERS
# =============================================================================

DOMAIN_TEXT_BEGIN = "=== TARGET DOMAIN TEXT BEGIN ==="
DOMAIN_TEXT_END = "=== TARGET DOMAIN TEXT END ==="
DEPENDENCY_TEXT_BEGIN = "=== DOMAIN NARRATIVE BEGIN: {domain} ==="
DEPENDENCY_TEXT_END = "=== DOMAIN NARRATIVE END: {domain} ==="

STYLE_DIRECTIVE = (
    "Use the following patient/domain text to produce a single-paragraph clinical summary.\n"
    "Avoid test names and raw/standard/T/Scaled scores; sparingly use percentiles only if extreme."
)
