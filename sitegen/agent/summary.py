import asyncio
import logging
import re

from sitegen.agent.context import AgentState
from sitegen.agent.gateway import ModelGateway
from sitegen.prompts import FRAGMENT_TITLE_PROMPT, RESPONSE_PROMPT, SUMMARY_REPROMPT


logger = logging.getLogger("sitegen.agent.summary")

SUMMARY_TAG_RE = re.compile(r"<task_summary>([\s\S]*?)</task_summary>", re.IGNORECASE)

DEFAULT_TITLE = "Generated Fragment"
DEFAULT_RESPONSE = "Generated code is ready."
PREVIEW_FILE_COUNT = 5


def extract_summary(text: str | None) -> str:
    """Return the trimmed contents of the first <task_summary> block, or ""."""
    if not text or not text.strip():
        return ""
    match = SUMMARY_TAG_RE.search(text)
    return match.group(1).strip() if match else ""


def fallback_summary(paths: list[str]) -> str:
    preview = paths[:PREVIEW_FILE_COUNT]
    remaining = len(paths) - len(preview)
    noun = "file" if len(paths) == 1 else "files"
    more = f" (and {remaining} more)" if remaining > 0 else ""
    return f"Generated {len(paths)} {noun}: {', '.join(preview)}{more}."


def sanitize_text(text: str) -> str:
    return text.replace("\x00", "")


def summary_reprompt_messages(
    messages: list[dict[str, str]], state: AgentState
) -> list[dict[str, str]]:
    written = "\n".join(f"- {path}" for path in state.files)
    reprompt = f"{SUMMARY_REPROMPT}\n\nFiles you wrote:\n{written}"
    return [*messages, {"role": "user", "content": reprompt}]


async def ensure_summary(
    gateway: ModelGateway,
    *,
    model: str,
    system_prompt: str,
    state: AgentState,
    final_text: str,
    messages: list[dict[str, str]] | None = None,
) -> str:
    """Summary for a finished agent pass.

    Prefers a tag in the final text, then one captured during the loop. When
    files were written but no tag exists, the model is asked once more,
    continuing the pass's `messages` so it can describe what it actually
    built. If it still does not comply the summary is derived from the
    written paths.
    """
    summary = extract_summary(final_text) or state.summary
    if summary or not state.files:
        return summary

    try:
        result = await gateway.generate(
            model=model,
            system_prompt=system_prompt,
            messages=summary_reprompt_messages(messages or [], state),
            temperature=0.5,
        )
        summary = extract_summary(result.text)
    except Exception as e:
        logger.warning("summary re-prompt failed: %s", e)
        summary = ""

    return summary or fallback_summary(list(state.files.keys()))


async def generate_title_and_response(
    gateway: ModelGateway, *, model: str, summary: str
) -> tuple[str, str]:
    prompt = summary or "Generated code"

    async def _ask(system_prompt: str) -> str:
        result = await gateway.generate(
            model=model,
            system_prompt=system_prompt,
            messages=[{"role": "user", "content": prompt}],
            temperature=0.5,
        )
        return sanitize_text(result.text.strip())

    title, response = await asyncio.gather(
        _ask(FRAGMENT_TITLE_PROMPT), _ask(RESPONSE_PROMPT), return_exceptions=True
    )
    if isinstance(title, BaseException):
        logger.warning("title generation failed: %s", title)
        title = ""
    if isinstance(response, BaseException):
        logger.warning("response generation failed: %s", response)
        response = ""
    return title or DEFAULT_TITLE, response or DEFAULT_RESPONSE
