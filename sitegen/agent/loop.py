import logging
from dataclasses import dataclass, field

from sitegen.agent.context import AgentState, ToolOutcome
from sitegen.agent.gateway import ModelGateway
from sitegen.agent.summary import extract_summary
from sitegen.agent.tools import Emit, SandboxTools
from sitegen.config import Settings
from sitegen.events import EventType, ProgressEvent
from sitegen.sandbox.manager import SandboxManager


logger = logging.getLogger("sitegen.agent.loop")


@dataclass(frozen=True)
class AgentResult:
    text: str
    state: AgentState
    iterations: int
    # full conversation, ending with the final assistant turn
    messages: list[dict[str, str]] = field(default_factory=list)


def _tool_results_turn(outcomes: list[ToolOutcome]) -> str:
    return "Tool results:\n" + "\n\n".join(f"{o.name}: {o.output}" for o in outcomes)


class AgentLoop:
    """Bounded tool-calling loop against one sandbox.

    Each iteration sends the conversation to the model with the sandbox
    tools; tool results come back as synthetic turns. The loop ends on the
    first response without tool calls or after `max_iterations`.
    """

    def __init__(
        self,
        gateway: ModelGateway,
        manager: SandboxManager,
        settings: Settings,
        *,
        model: str,
        system_prompt: str,
        temperature: float = 0.7,
        emit: Emit,
    ):
        self.gateway = gateway
        self.manager = manager
        self.settings = settings
        self.model = model
        self.system_prompt = system_prompt
        self.temperature = temperature
        self.emit = emit

    @property
    def max_iterations(self) -> int:
        return self.settings.max_agent_iterations

    async def run(
        self, messages: list[dict[str, str]], sandbox_id: str, state: AgentState
    ) -> AgentResult:
        conversation = list(messages)
        tools = SandboxTools(self.manager, sandbox_id, self.settings, self.emit)
        final_text = ""
        iteration = 0

        while iteration < self.max_iterations:
            iteration += 1
            result = await self.gateway.generate(
                model=self.model,
                system_prompt=self.system_prompt,
                messages=list(conversation),
                tools=tools.schemas,
                temperature=self.temperature,
            )
            final_text = result.text

            if result.text:
                self.emit(ProgressEvent(type=EventType.STREAM, data=result.text))
                state = state.with_summary(extract_summary(result.text))

            if not result.tool_calls:
                if result.text:
                    conversation.append({"role": "assistant", "content": result.text})
                break

            outcomes: list[ToolOutcome] = []
            for call in result.tool_calls:
                outcomes.append(await tools.execute(call))
            state = state.fold(outcomes)

            conversation.append(
                {
                    "role": "assistant",
                    "content": result.text
                    or "Used tools: " + ", ".join(c.name for c in result.tool_calls),
                }
            )
            conversation.append({"role": "user", "content": _tool_results_turn(outcomes)})
        else:
            logger.warning(
                "agent loop hit the %d iteration cap in sandbox %s", self.max_iterations, sandbox_id
            )

        logger.info(
            "agent loop finished sandbox=%s iterations=%d files=%d",
            sandbox_id,
            iteration,
            len(state.files),
        )
        return AgentResult(text=final_text, state=state, iterations=iteration, messages=conversation)
