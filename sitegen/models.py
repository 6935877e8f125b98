import os
from enum import Enum
from functools import lru_cache

from pydantic import BaseModel


class ModelTier(str, Enum):
    FAST = "fast"
    BALANCED = "balanced"
    CODE_FOCUSED = "code-focused"
    COMPLEX = "complex"
    REASONING = "reasoning"


class ModelConfig(BaseModel):
    model: str
    name: str
    provider: str
    description: str
    temperature: float = 0.7


_DEFAULT_CONFIGS: dict[ModelTier, ModelConfig] = {
    ModelTier.FAST: ModelConfig(
        model="moonshotai/kimi-k2-thinking",
        name="Kimi K2 Thinking",
        provider="moonshot",
        description="Fast and efficient for speed-critical tasks",
    ),
    ModelTier.BALANCED: ModelConfig(
        model="anthropic/claude-haiku-4.5",
        name="Claude Haiku 4.5",
        provider="anthropic",
        description="Fast and efficient for most coding tasks",
    ),
    ModelTier.CODE_FOCUSED: ModelConfig(
        model="google/gemini-3-pro-preview",
        name="Gemini 3 Pro",
        provider="google",
        description="Specialized for coding tasks",
    ),
    ModelTier.COMPLEX: ModelConfig(
        model="openai/gpt-5.1-codex",
        name="GPT-5.1 Codex",
        provider="openai",
        description="OpenAI's flagship model for complex tasks",
    ),
    ModelTier.REASONING: ModelConfig(
        model="xai/grok-4-fast-reasoning",
        name="Grok 4 Fast",
        provider="xai",
        description="Fast reasoning model",
    ),
}

DEFAULT_TIER = ModelTier.BALANCED

COMPLEXITY_KEYWORDS: tuple[str, ...] = (
    "advanced",
    "complex",
    "sophisticated",
    "enterprise",
    "architecture",
    "performance",
    "optimization",
    "scalability",
    "authentication",
    "authorization",
    "database",
    "api",
    "integration",
    "deployment",
    "security",
    "testing",
)
CODING_KEYWORDS: tuple[str, ...] = ("refactor", "optimize", "debug", "fix bug", "improve code")
SPEED_KEYWORDS: tuple[str, ...] = ("quick", "fast", "simple", "basic", "prototype")

LONG_PROMPT_CHARS = 500
VERY_LONG_PROMPT_CHARS = 1000


@lru_cache(maxsize=1)
def get_model_configs() -> dict[ModelTier, ModelConfig]:
    """Tier table, built once per process.

    A tier's model id can be overridden with SITEGEN_MODEL_<TIER>, e.g.
    SITEGEN_MODEL_CODE_FOCUSED=openai/gpt-5-mini.
    """
    configs: dict[ModelTier, ModelConfig] = {}
    for tier, config in _DEFAULT_CONFIGS.items():
        override = os.getenv("SITEGEN_MODEL_" + tier.name)
        if override and override.strip():
            config = config.model_copy(update={"model": override.strip()})
        configs[tier] = config
    return configs


def _matches(text: str, keywords: tuple[str, ...]) -> bool:
    return any(keyword in text for keyword in keywords)


def select_model(prompt: str, framework: str | None = None) -> ModelTier:
    """Pick a tier from the prompt text alone.

    Stages run in a fixed order and later stages overwrite earlier picks, so
    complexity signals always win. Angular requests that look complex are
    pinned to the default tier before any other stage runs.
    """
    lowered = prompt.lower()
    length = len(prompt)
    tier = DEFAULT_TIER

    is_complex = _matches(lowered, COMPLEXITY_KEYWORDS)
    is_very_long = length > VERY_LONG_PROMPT_CHARS

    if framework == "angular" and (is_complex or length > LONG_PROMPT_CHARS):
        return DEFAULT_TIER

    if _matches(lowered, CODING_KEYWORDS) and not is_very_long:
        tier = ModelTier.CODE_FOCUSED

    if _matches(lowered, SPEED_KEYWORDS) and not is_complex:
        tier = ModelTier.FAST

    # complex and very long tasks stay on the balanced model
    if is_complex or is_very_long:
        tier = ModelTier.BALANCED

    return tier


def parse_tier(requested: str | None) -> ModelTier | None:
    """Map a tier name or a configured model id to its tier; None for "auto" or unknown values."""
    if not requested:
        return None
    value = requested.strip()
    if value.lower() == "auto":
        return None
    for tier in ModelTier:
        if value.lower() in {tier.value, tier.name.lower()}:
            return tier
    for tier, config in get_model_configs().items():
        if config.model == value:
            return tier
    return None


def resolve_model(
    requested: str | None, prompt: str, framework: str | None = None
) -> ModelTier:
    """Honour an explicit, recognised tier; otherwise run automatic selection."""
    explicit = parse_tier(requested)
    if explicit is not None:
        return explicit
    return select_model(prompt, framework)
