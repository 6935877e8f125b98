from types import SimpleNamespace

import pytest

from sitegen.agent.gateway import OpenAIGateway
from sitegen.config import Settings
from sitegen.errors import SetupError


class FakeCompletions:
    def __init__(self, response):
        self.response = response
        self.kwargs = None

    async def create(self, **kwargs):
        self.kwargs = kwargs
        return self.response


def fake_client(response) -> SimpleNamespace:
    return SimpleNamespace(chat=SimpleNamespace(completions=FakeCompletions(response)))


async def test_generate_parses_text_and_tool_calls():
    message = SimpleNamespace(
        content="Creating files",
        tool_calls=[
            SimpleNamespace(
                id="call_9",
                function=SimpleNamespace(name="write_files", arguments='{"files": []}'),
            )
        ],
    )
    client = fake_client(SimpleNamespace(choices=[SimpleNamespace(message=message)]))
    gateway = OpenAIGateway(client=client)

    result = await gateway.generate(
        model="anthropic/claude-haiku-4.5",
        system_prompt="be helpful",
        messages=[{"role": "user", "content": "hi"}],
        tools=[{"type": "function", "function": {"name": "write_files"}}],
        temperature=0.2,
    )

    sent = client.chat.completions.kwargs
    assert sent["messages"][0] == {"role": "system", "content": "be helpful"}
    assert sent["messages"][1] == {"role": "user", "content": "hi"}
    assert sent["temperature"] == 0.2
    assert "tools" in sent
    assert result.text == "Creating files"
    assert [(c.id, c.name, c.arguments) for c in result.tool_calls] == [
        ("call_9", "write_files", '{"files": []}')
    ]


async def test_generate_without_tools_or_choices():
    client = fake_client(SimpleNamespace(choices=[]))
    result = await OpenAIGateway(client=client).generate(model="m", system_prompt="s", messages=[])
    assert "tools" not in client.chat.completions.kwargs
    assert result.text == "" and result.tool_calls == []


def test_missing_credentials_raise_setup_error():
    with pytest.raises(SetupError):
        OpenAIGateway(settings=Settings(gateway_api_key=None))
