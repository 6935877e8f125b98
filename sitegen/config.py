import os
from functools import lru_cache

from dotenv import load_dotenv
from pydantic import BaseModel

from sitegen.errors import SetupError


current_dir = os.path.dirname(os.path.abspath(__file__))
root_dir = os.path.dirname(current_dir)
# Load env from the project root first, then the package dir, without overriding
load_dotenv(os.path.join(root_dir, ".env"), override=False)
load_dotenv(os.path.join(current_dir, ".env"), override=False)


DEFAULT_GATEWAY_BASE_URL = "https://ai-gateway.vercel.sh/v1"


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


class Settings(BaseModel):
    """Process-wide configuration read from the environment.

    Attributes:
        gateway_api_key: Key for the OpenAI-compatible model gateway.
        gateway_base_url: Base URL of the gateway.
        sandbox_timeout_ms: Lifetime requested for every remote sandbox.
        sandbox_cache_ttl_seconds: How long an idle handle stays cached in-process.
        sandbox_cache_renew_on_access: Re-arm the TTL on every cache hit.
        sandbox_scaffold: Scaffold framework projects into templates that have
            no git source.
        workspace_root: Absolute project directory inside the sandbox.
        max_agent_iterations: Model round-trips allowed per agent pass.
        auto_fix_max_attempts: Fix passes allowed after failed validation.
        validation_policy: "permissive" or "conservative" handling of
            unrecognised non-zero check output.
    """

    gateway_api_key: str | None = None
    gateway_base_url: str = DEFAULT_GATEWAY_BASE_URL
    sandbox_timeout_ms: int = 30 * 60 * 1000
    sandbox_create_attempts: int = 3
    sandbox_cache_ttl_seconds: float = 5 * 60
    sandbox_cache_renew_on_access: bool = True
    sandbox_scaffold: bool = True
    sandbox_scaffold_timeout_ms: int = 600_000
    workspace_root: str = "/vercel/sandbox"
    max_agent_iterations: int = 20
    command_timeout_ms: int = 60_000
    file_read_timeout_ms: int = 3_000
    max_file_size: int = 10 * 1024 * 1024
    max_file_count: int = 500
    lint_timeout_ms: int = 30_000
    build_timeout_ms: int = 120_000
    auto_fix_max_attempts: int = 2
    validation_policy: str = "permissive"
    history_messages: int = 3

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            gateway_api_key=(
                os.getenv("AI_GATEWAY_API_KEY")
                or os.getenv("VERCEL_OIDC_TOKEN")
                or os.getenv("OPENAI_API_KEY")
            ),
            gateway_base_url=(
                os.getenv("AI_GATEWAY_BASE_URL")
                or os.getenv("OPENAI_BASE_URL")
                or DEFAULT_GATEWAY_BASE_URL
            ),
            sandbox_timeout_ms=int(os.getenv("SITEGEN_SANDBOX_TIMEOUT_MS", "1800000")),
            sandbox_cache_ttl_seconds=float(
                os.getenv("SITEGEN_SANDBOX_CACHE_TTL_SECONDS", "300")
            ),
            sandbox_cache_renew_on_access=_env_bool(
                "SITEGEN_SANDBOX_CACHE_RENEW_ON_ACCESS", True
            ),
            sandbox_scaffold=_env_bool("SITEGEN_SANDBOX_SCAFFOLD", True),
            sandbox_scaffold_timeout_ms=int(
                os.getenv("SITEGEN_SANDBOX_SCAFFOLD_TIMEOUT_MS", "600000")
            ),
            workspace_root=os.getenv("SITEGEN_WORKSPACE_ROOT", "/vercel/sandbox"),
            max_agent_iterations=int(os.getenv("SITEGEN_MAX_AGENT_ITERATIONS", "20")),
            auto_fix_max_attempts=int(os.getenv("SITEGEN_AUTO_FIX_MAX_ATTEMPTS", "2")),
            validation_policy=os.getenv("SITEGEN_VALIDATION_POLICY", "permissive"),
        )

    def require_gateway_key(self) -> str:
        if not self.gateway_api_key:
            raise SetupError(
                "No model gateway credentials configured "
                "(set AI_GATEWAY_API_KEY, VERCEL_OIDC_TOKEN or OPENAI_API_KEY)"
            )
        return self.gateway_api_key


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings.from_env()


def template_source(template: str) -> str | None:
    """Optional git URL that seeds a sandbox template, e.g. SITEGEN_TEMPLATE_SOURCE_ZAPDEV_REACT."""
    key = "SITEGEN_TEMPLATE_SOURCE_" + template.upper().replace("-", "_")
    value = os.getenv(key)
    return value.strip() if value and value.strip() else None
