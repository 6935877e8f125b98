import pytest

from sitegen.frameworks import Framework
from sitegen.models import (
    COMPLEXITY_KEYWORDS,
    ModelTier,
    get_model_configs,
    parse_tier,
    resolve_model,
    select_model,
)


FRAMEWORKS = [None] + [f.value for f in Framework]


@pytest.mark.parametrize("keyword", COMPLEXITY_KEYWORDS)
@pytest.mark.parametrize("framework", FRAMEWORKS)
def test_complexity_keyword_never_selects_fast(keyword, framework):
    prompt = f"Quick simple prototype with {keyword} support"
    assert select_model(prompt, framework) != ModelTier.FAST


@pytest.mark.parametrize("framework", ["nextjs", "react", "vue", "svelte", None])
def test_very_long_prompt_selects_balanced(framework):
    prompt = "quick fix bug " + "x" * 1000
    assert len(prompt) > 1000
    assert select_model(prompt, framework) == ModelTier.BALANCED


def test_very_long_angular_prompt_is_pinned_to_balanced():
    assert select_model("quick " + "x" * 1200, "angular") == ModelTier.BALANCED


def test_angular_complex_prompt_returns_default_even_with_speed_keywords():
    prompt = "Quick basic enterprise dashboard"
    assert select_model(prompt, "angular") == ModelTier.BALANCED


def test_angular_long_prompt_returns_default():
    prompt = "Make a quick form " + "y" * 500
    assert len(prompt) > 500
    assert select_model(prompt, "angular") == ModelTier.BALANCED


def test_angular_short_speed_prompt_is_not_pinned():
    assert select_model("Quick todo list", "angular") == ModelTier.FAST


def test_no_keywords_selects_default():
    assert select_model("Build a landing page for a bakery", "nextjs") == ModelTier.BALANCED


def test_simple_counts_as_a_speed_keyword():
    # "simple" is part of the speed set, so the cascade's speed stage applies
    assert select_model("Build a simple landing page", "nextjs") == ModelTier.FAST


def test_speed_keywords_select_fast():
    prompt = "Quickly prototype a basic form"
    assert len(prompt) == 30
    assert select_model(prompt, "nextjs") == ModelTier.FAST


def test_complex_prompt_overrides_speed():
    prompt = "Design a secure enterprise authentication and database integration architecture"
    assert select_model(prompt, "nextjs") == ModelTier.BALANCED
    assert select_model("quick " + prompt, "react") == ModelTier.BALANCED


def test_complexity_overrides_coding_focus():
    assert select_model("Refactor the enterprise billing component", "nextjs") == ModelTier.BALANCED


def test_complex_tier_is_only_chosen_explicitly():
    prompts = ["Design a secure enterprise architecture", "x" * 2000, "Quick fix", "Refactor the API"]
    assert all(select_model(p, "nextjs") != ModelTier.COMPLEX for p in prompts)
    assert resolve_model("complex", "Quick fix", "nextjs") == ModelTier.COMPLEX


def test_coding_keywords_select_code_focused():
    assert select_model("Refactor the navbar component", "nextjs") == ModelTier.CODE_FOCUSED


def test_speed_overrides_coding_focus():
    assert select_model("Quick refactor of the header", "vue") == ModelTier.FAST


def test_matching_is_case_insensitive():
    assert select_model("QUICK form", "nextjs") == ModelTier.FAST
    assert select_model("ENTERPRISE refactor", "nextjs") == ModelTier.BALANCED


def test_parse_tier_accepts_values_names_and_model_ids():
    assert parse_tier("fast") == ModelTier.FAST
    assert parse_tier("CODE_FOCUSED") == ModelTier.CODE_FOCUSED
    assert parse_tier(get_model_configs()[ModelTier.COMPLEX].model) == ModelTier.COMPLEX
    assert parse_tier("auto") is None
    assert parse_tier("not-a-model") is None
    assert parse_tier(None) is None


def test_explicit_tier_skips_selection():
    prompt = "Design a secure enterprise architecture"
    assert resolve_model("fast", prompt, "nextjs") == ModelTier.FAST


def test_auto_and_unknown_run_selection():
    assert resolve_model("auto", "Quickly prototype a basic form", "nextjs") == ModelTier.FAST
    assert resolve_model("mystery", "Refactor the footer", "nextjs") == ModelTier.CODE_FOCUSED


def test_model_override_from_env(monkeypatch):
    monkeypatch.setenv("SITEGEN_MODEL_FAST", "openai/gpt-5-nano")
    get_model_configs.cache_clear()
    try:
        assert get_model_configs()[ModelTier.FAST].model == "openai/gpt-5-nano"
    finally:
        get_model_configs.cache_clear()
