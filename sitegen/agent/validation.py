import asyncio
import logging
import re
from dataclasses import dataclass
from enum import Enum

from sitegen.agent.context import AgentState
from sitegen.agent.loop import AgentLoop
from sitegen.events import EventType, ProgressEvent
from sitegen.frameworks import Framework
from sitegen.prompts import AUTO_FIX_PROMPT
from sitegen.sandbox.backend import CommandResult, SandboxHandle


logger = logging.getLogger("sitegen.agent.validation")

LINT_COMMAND = "npm run lint"
BUILD_COMMAND = "npm run build"
EXIT_COMMAND_NOT_FOUND = 127

ERROR_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"Error:", re.I),
    re.compile(r"\[ERROR\]", re.I),
    re.compile(r"ERROR"),
    re.compile(r"Failed\b", re.I),
    re.compile(r"failure\b", re.I),
    re.compile(r"Exception\b", re.I),
    re.compile(r"SyntaxError", re.I),
    re.compile(r"TypeError", re.I),
    re.compile(r"ReferenceError", re.I),
    re.compile(r"Module not found", re.I),
    re.compile(r"Cannot find module", re.I),
    re.compile(r"Failed to resolve", re.I),
    re.compile(r"Build failed", re.I),
    re.compile(r"Compilation error", re.I),
    re.compile(r"undefined is not", re.I),
    re.compile(r"null is not", re.I),
    re.compile(r"Cannot read propert", re.I),
    re.compile(r"is not a function", re.I),
    re.compile(r"is not defined", re.I),
    re.compile(r"ESLint", re.I),
    re.compile(r"Type error", re.I),
    re.compile(r"TS\d+", re.I),
    re.compile(r"Ecmascript file had an error", re.I),
    re.compile(r"Parsing ecmascript source code failed", re.I),
    re.compile(r"Turbopack build failed", re.I),
    re.compile(r"the name .* is defined multiple times", re.I),
    re.compile(r"Expected a semicolon", re.I),
    re.compile(r"CommandExitError", re.I),
    re.compile(r"ENOENT", re.I),
    re.compile(r"Module build failed", re.I),
)

_LINT_MARKERS = re.compile(r"error|✖", re.I)

MISSING_SHADCN_ERROR = (
    "[ERROR] Missing Shadcn UI usage. Rebuild the UI using components imported from "
    "'@/components/ui/*'."
)


class ClassificationPolicy(str, Enum):
    """How to treat a failing check whose output matches no known error signature."""

    PERMISSIVE = "permissive"
    CONSERVATIVE = "conservative"

    @classmethod
    def parse(cls, value: str | None) -> "ClassificationPolicy":
        try:
            return cls((value or "").strip().lower())
        except ValueError:
            logger.warning("unknown validation policy %r, using permissive", value)
            return cls.PERMISSIVE


@dataclass(frozen=True)
class ValidationResult:
    lint_output: str | None = None
    build_output: str | None = None

    @property
    def errors(self) -> str | None:
        parts = [p for p in (self.lint_output, self.build_output) if p]
        return "\n\n".join(parts) if parts else None

    @property
    def ok(self) -> bool:
        return self.errors is None


def matches_error_signature(output: str) -> bool:
    return any(pattern.search(output) for pattern in ERROR_PATTERNS)


def classify(
    result: CommandResult,
    policy: ClassificationPolicy = ClassificationPolicy.PERMISSIVE,
    *,
    lint: bool = False,
) -> bool:
    """True when a finished check should count as a real failure.

    Exit 127 means the tool is absent and the check is skipped. A zero exit
    always passes. A non-zero exit fails when its output carries an error
    signature; otherwise the policy decides.
    """
    if result.exit_code == EXIT_COMMAND_NOT_FOUND or result.exit_code == 0:
        return False
    output = result.output
    if matches_error_signature(output) or (lint and _LINT_MARKERS.search(output)):
        return True
    return policy is ClassificationPolicy.CONSERVATIVE


def uses_shadcn_components(files: dict[str, str]) -> bool:
    return any(
        path.endswith(".tsx") and "@/components/ui/" in content for path, content in files.items()
    )


class Validator:
    """Runs lint and build checks inside a sandbox."""

    def __init__(
        self,
        *,
        policy: ClassificationPolicy = ClassificationPolicy.PERMISSIVE,
        lint_timeout_ms: int = 30_000,
        build_timeout_ms: int = 120_000,
    ):
        self.policy = policy
        self.lint_timeout_ms = lint_timeout_ms
        self.build_timeout_ms = build_timeout_ms

    async def _check(self, handle: SandboxHandle, command: str, timeout_ms: int, *, lint: bool) -> str | None:
        try:
            result = await handle.run_command(command, timeout_ms=timeout_ms)
        except Exception as e:
            logger.warning("%s could not complete in %s: %s", command, handle.sandbox_id, e)
            if self.policy is ClassificationPolicy.CONSERVATIVE:
                return f"{command} did not complete: {e}"
            return None
        if result.exit_code == EXIT_COMMAND_NOT_FOUND:
            logger.info("%s not available in %s, skipping", command, handle.sandbox_id)
            return None
        if not classify(result, self.policy, lint=lint):
            return None
        if lint:
            return result.output
        return f"Build failed with exit code {result.exit_code}:\n{result.output}"

    async def lint(self, handle: SandboxHandle) -> str | None:
        return await self._check(handle, LINT_COMMAND, self.lint_timeout_ms, lint=True)

    async def build(self, handle: SandboxHandle) -> str | None:
        return await self._check(handle, BUILD_COMMAND, self.build_timeout_ms, lint=False)

    async def validate(self, handle: SandboxHandle, state: AgentState) -> ValidationResult:
        lint_output, build_output = await asyncio.gather(self.lint(handle), self.build(handle))
        if state.framework == Framework.NEXTJS.value and not uses_shadcn_components(state.files):
            lint_output = f"{lint_output}\n{MISSING_SHADCN_ERROR}" if lint_output else MISSING_SHADCN_ERROR
        return ValidationResult(lint_output=lint_output, build_output=build_output)


@dataclass(frozen=True)
class FixOutcome:
    remaining_errors: str | None
    state: AgentState
    last_text: str


async def validate_and_fix(
    agent: AgentLoop,
    validator: Validator,
    *,
    sandbox_id: str,
    state: AgentState,
    prompt: str,
    last_text: str,
    max_attempts: int = 2,
) -> FixOutcome:
    """Validate the project and run at most `max_attempts` agent fix passes.

    Returns the errors still present after the final validation, or None
    when the project is clean.
    """
    async with agent.manager.lease(sandbox_id) as handle:
        result = await validator.validate(handle, state)
        errors = result.errors

        while errors and state.fix_attempts < max_attempts:
            state = state.with_fix_attempt()
            attempt = state.fix_attempts
            logger.info("auto-fix attempt %d/%d in sandbox %s", attempt, max_attempts, sandbox_id)
            agent.emit(
                ProgressEvent(
                    type=EventType.AUTOFIX,
                    message=f"Auto-fix attempt {attempt}/{max_attempts}...",
                    data=errors,
                )
            )
            fix_messages = [
                {"role": "user", "content": prompt},
                {"role": "assistant", "content": last_text or "(no response)"},
                {"role": "user", "content": AUTO_FIX_PROMPT.format(errors=errors)},
            ]
            fixed = await agent.run(fix_messages, sandbox_id, state)
            state = fixed.state
            last_text = fixed.text or last_text

            handle = await agent.manager.resolve(sandbox_id)
            result = await validator.validate(handle, state)
            errors = result.errors
            if not errors:
                agent.emit(ProgressEvent(type=EventType.STATUS, message="All errors resolved!"))

    if errors:
        logger.warning("validation errors remain in sandbox %s after %d fix attempts", sandbox_id, state.fix_attempts)
    return FixOutcome(remaining_errors=errors, state=state, last_text=last_text)
