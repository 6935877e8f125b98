import logging
from typing import Any, Protocol

from openai import AsyncOpenAI
from pydantic import BaseModel, Field

from sitegen.config import Settings, get_settings


logger = logging.getLogger("sitegen.agent.gateway")


class ToolCall(BaseModel):
    id: str
    name: str
    arguments: str = "{}"


class Generation(BaseModel):
    """One model response: free text plus any tool invocations it requested."""

    text: str = ""
    tool_calls: list[ToolCall] = Field(default_factory=list)


class ModelGateway(Protocol):
    async def generate(
        self,
        *,
        model: str,
        system_prompt: str,
        messages: list[dict[str, str]],
        tools: list[dict[str, Any]] | None = None,
        temperature: float = 0.7,
    ) -> Generation: ...


class OpenAIGateway:
    """Chat-completions gateway (Vercel AI Gateway or any OpenAI-compatible API)."""

    def __init__(self, client: AsyncOpenAI | None = None, settings: Settings | None = None):
        if client is None:
            settings = settings or get_settings()
            client = AsyncOpenAI(
                api_key=settings.require_gateway_key(),
                base_url=settings.gateway_base_url,
            )
        self.client = client

    async def generate(
        self,
        *,
        model: str,
        system_prompt: str,
        messages: list[dict[str, str]],
        tools: list[dict[str, Any]] | None = None,
        temperature: float = 0.7,
    ) -> Generation:
        kwargs: dict[str, Any] = {
            "model": model,
            "messages": [{"role": "system", "content": system_prompt}, *messages],
            "temperature": temperature,
        }
        if tools:
            kwargs["tools"] = tools
        completion = await self.client.chat.completions.create(**kwargs)
        if not completion.choices:
            logger.warning("generate model=%s returned no choices", model)
            return Generation()
        msg = completion.choices[0].message
        calls: list[ToolCall] = []
        for call in getattr(msg, "tool_calls", None) or []:
            function = getattr(call, "function", None)
            if function is None:
                continue
            calls.append(
                ToolCall(
                    id=call.id,
                    name=function.name,
                    arguments=function.arguments or "{}",
                )
            )
        return Generation(text=msg.content or "", tool_calls=calls)
