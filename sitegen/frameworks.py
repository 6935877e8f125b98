import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

from sitegen.retry import retry_on_transient, with_retry

if TYPE_CHECKING:
    from sitegen.agent.gateway import ModelGateway


logger = logging.getLogger("sitegen.frameworks")


class Framework(str, Enum):
    NEXTJS = "nextjs"
    ANGULAR = "angular"
    REACT = "react"
    VUE = "vue"
    SVELTE = "svelte"


DEFAULT_FRAMEWORK = Framework.NEXTJS
DEFAULT_TEMPLATE = "zapdev"

_TEMPLATES: dict[Framework, str] = {
    Framework.NEXTJS: "zapdev",
    Framework.ANGULAR: "zapdev-angular",
    Framework.REACT: "zapdev-react",
    Framework.VUE: "zapdev-vue",
    Framework.SVELTE: "zapdev-svelte",
}

_PORTS: dict[Framework, int] = {
    Framework.NEXTJS: 3000,
    Framework.ANGULAR: 4200,
    Framework.REACT: 5173,
    Framework.VUE: 5173,
    Framework.SVELTE: 5173,
}

_DEV_COMMANDS: dict[Framework, str] = {
    Framework.NEXTJS: "npx next dev --turbopack",
    Framework.ANGULAR: "npm start -- --host 0.0.0.0 --port 4200",
    Framework.REACT: "npm run dev -- --host 0.0.0.0 --port 5173",
    Framework.VUE: "npm run dev -- --host 0.0.0.0 --port 5173",
    Framework.SVELTE: "npm run dev -- --host 0.0.0.0 --port 5173",
}


_VITE_TAILWIND = "npm install -D tailwindcss@4 @tailwindcss/vite"

_REACT_VITE_CONFIG = """import { defineConfig } from "vite";
import react from "@vitejs/plugin-react";
import tailwindcss from "@tailwindcss/vite";

export default defineConfig({
  plugins: [react(), tailwindcss()],
  server: { host: "0.0.0.0", port: 5173, allowedHosts: true },
});
"""

_VUE_VITE_CONFIG = """import { defineConfig } from "vite";
import vue from "@vitejs/plugin-vue";
import tailwindcss from "@tailwindcss/vite";

export default defineConfig({
  plugins: [vue(), tailwindcss()],
  server: { host: "0.0.0.0", port: 5173, allowedHosts: true },
});
"""


@dataclass(frozen=True)
class Scaffold:
    """Commands and files that turn an empty sandbox into a framework project."""

    commands: tuple[str, ...]
    files: dict[str, str] = field(default_factory=dict)


# used when a template has no git source configured
_SCAFFOLDS: dict[Framework, Scaffold] = {
    Framework.NEXTJS: Scaffold(
        commands=(
            'npx --yes create-next-app@15 . --ts --tailwind --eslint --app --no-src-dir '
            '--import-alias "@/*" --use-npm --yes',
            "npx --yes shadcn@latest init --defaults --yes",
            "npx --yes shadcn@latest add --all --yes",
        ),
    ),
    Framework.ANGULAR: Scaffold(
        commands=(
            "npx --yes @angular/cli@19 new app --directory . --defaults --skip-git "
            "--skip-tests --style=css --ssr=false",
        ),
    ),
    Framework.REACT: Scaffold(
        commands=("npx --yes create-vite@6 . --template react-ts", "npm install", _VITE_TAILWIND),
        files={"vite.config.ts": _REACT_VITE_CONFIG, "src/index.css": '@import "tailwindcss";\n'},
    ),
    Framework.VUE: Scaffold(
        commands=("npx --yes create-vite@6 . --template vue-ts", "npm install", _VITE_TAILWIND),
        files={"vite.config.ts": _VUE_VITE_CONFIG, "src/style.css": '@import "tailwindcss";\n'},
    ),
    Framework.SVELTE: Scaffold(
        commands=(
            "npx --yes sv create . --template minimal --types ts --no-add-ons --install npm",
            "npx --yes sv add tailwindcss --install npm",
        ),
    ),
}


FRAMEWORK_SELECTOR_MODEL = "google/gemini-2.5-flash-lite"

FRAMEWORK_SELECTOR_PROMPT = """
You are a framework selection expert. Pick the single best frontend framework for the user's request.

Options: nextjs, angular, react, vue, svelte

Rules:
- Default to nextjs when the request does not clearly favour another framework.
- Pick angular for enterprise-style apps or when Angular is mentioned.
- Pick react, vue or svelte only when the user names them or their ecosystem.

Return only the framework name in lowercase, nothing else.
"""


def parse_framework(value: str | None) -> Framework | None:
    if not value:
        return None
    try:
        return Framework(value.strip().lower())
    except ValueError:
        return None


def template_for(framework: Framework) -> str:
    return _TEMPLATES.get(framework, DEFAULT_TEMPLATE)


def port_for(framework: Framework) -> int:
    return _PORTS.get(framework, 3000)


def dev_command_for(framework: Framework) -> str:
    return _DEV_COMMANDS.get(framework, "npm run dev")


def scaffold_for(framework: Framework) -> Scaffold | None:
    return _SCAFFOLDS.get(framework)


async def detect_framework(gateway: "ModelGateway", prompt: str) -> Framework:
    """Ask a small model which framework fits the prompt; fall back to Next.js."""

    async def _ask() -> str:
        result = await gateway.generate(
            model=FRAMEWORK_SELECTOR_MODEL,
            system_prompt=FRAMEWORK_SELECTOR_PROMPT,
            messages=[{"role": "user", "content": f"User request: {prompt}"}],
            temperature=0.3,
        )
        return result.text.strip().lower()

    try:
        answer = await with_retry(
            _ask, max_attempts=2, retry_if=retry_on_transient, label="framework detection"
        )
    except Exception as e:
        logger.warning("framework detection failed, using %s: %s", DEFAULT_FRAMEWORK.value, e)
        return DEFAULT_FRAMEWORK

    for framework in Framework:
        if framework.value in answer:
            return framework
    return DEFAULT_FRAMEWORK
