from conftest import FakeGateway
from sitegen.agent.gateway import Generation
from sitegen.config import Settings, template_source
from sitegen.frameworks import Framework, detect_framework, parse_framework, port_for, template_for
from sitegen.prompts import framework_prompt


def test_framework_tables():
    assert template_for(Framework.NEXTJS) == "zapdev"
    assert template_for(Framework.SVELTE) == "zapdev-svelte"
    assert port_for(Framework.ANGULAR) == 4200
    assert port_for(Framework.VUE) == 5173
    assert parse_framework(" React ") is Framework.REACT
    assert parse_framework("cobol") is None
    assert parse_framework(None) is None


def test_framework_prompt_mentions_port_and_summary_tag():
    prompt = framework_prompt(Framework.ANGULAR)
    assert "port 4200" in prompt
    assert "<task_summary>" in prompt


async def test_detect_framework_parses_answer():
    gateway = FakeGateway([Generation(text="  Svelte\n")])
    assert await detect_framework(gateway, "a svelte blog") is Framework.SVELTE


async def test_detect_framework_falls_back_to_nextjs():
    assert await detect_framework(FakeGateway([RuntimeError("invalid key")]), "x") is Framework.NEXTJS
    assert await detect_framework(FakeGateway([Generation(text="ember")]), "x") is Framework.NEXTJS


def test_settings_from_env(monkeypatch):
    monkeypatch.delenv("AI_GATEWAY_API_KEY", raising=False)
    monkeypatch.setenv("VERCEL_OIDC_TOKEN", "oidc")
    monkeypatch.setenv("SITEGEN_SANDBOX_CACHE_RENEW_ON_ACCESS", "false")
    monkeypatch.setenv("SITEGEN_VALIDATION_POLICY", "conservative")
    settings = Settings.from_env()
    assert settings.gateway_api_key == "oidc"
    assert settings.sandbox_cache_renew_on_access is False
    assert settings.validation_policy == "conservative"
    assert settings.require_gateway_key() == "oidc"


def test_template_source(monkeypatch):
    monkeypatch.setenv("SITEGEN_TEMPLATE_SOURCE_ZAPDEV_REACT", " https://github.com/acme/react-template.git ")
    assert template_source("zapdev-react") == "https://github.com/acme/react-template.git"
    assert template_source("zapdev-vue") is None
