import json
import logging
from typing import Any, Callable

from pydantic import BaseModel, Field, ValidationError

from sitegen.agent.context import ToolOutcome
from sitegen.agent.gateway import ToolCall
from sitegen.config import Settings
from sitegen.errors import CommandTimeoutError
from sitegen.events import EventType, ProgressEvent
from sitegen.sandbox.manager import SandboxManager
from sitegen.sandbox.utils import (
    is_valid_file_path,
    read_files_in_batches,
    to_workspace_relative,
)


logger = logging.getLogger("sitegen.agent.tools")

Emit = Callable[[ProgressEvent], None]

# dev servers are started by the workflow once generation is done
_DEV_SERVER_MARKERS = ("npm run dev", "npm start", "next dev", "vite dev")


class FileSpec(BaseModel):
    path: str
    content: str


class RunCommandArgs(BaseModel):
    command: str = Field(..., min_length=1)
    timeout_ms: int | None = Field(default=None, ge=1_000, le=600_000)


class WriteFilesArgs(BaseModel):
    files: list[FileSpec]


class ReadFilesArgs(BaseModel):
    files: list[str]


TOOL_SCHEMAS: list[dict[str, Any]] = [
    {
        "type": "function",
        "function": {
            "name": "run_command",
            "description": (
                "Run a shell command in the sandbox project directory, e.g. installing packages "
                "(npm install lodash) or checking the build (npm run build). Do NOT start dev servers; "
                "the preview is started automatically."
            ),
            "parameters": {
                "type": "object",
                "properties": {
                    "command": {"type": "string", "description": "Command to run"},
                    "timeout_ms": {
                        "type": "integer",
                        "minimum": 1000,
                        "description": "Optional timeout in milliseconds (default 60000)",
                    },
                },
                "required": ["command"],
            },
        },
    },
    {
        "type": "function",
        "function": {
            "name": "write_files",
            "description": "Create or update files in the sandbox. Always provide complete file contents.",
            "parameters": {
                "type": "object",
                "properties": {
                    "files": {
                        "type": "array",
                        "items": {
                            "type": "object",
                            "properties": {
                                "path": {
                                    "type": "string",
                                    "description": "Path relative to the project root, e.g. app/page.tsx",
                                },
                                "content": {"type": "string", "description": "Complete file content"},
                            },
                            "required": ["path", "content"],
                        },
                    }
                },
                "required": ["files"],
            },
        },
    },
    {
        "type": "function",
        "function": {
            "name": "read_files",
            "description": "Read files from the sandbox before changing them.",
            "parameters": {
                "type": "object",
                "properties": {
                    "files": {
                        "type": "array",
                        "items": {"type": "string"},
                        "description": 'Paths to read, e.g. ["app/page.tsx", "package.json"]',
                    }
                },
                "required": ["files"],
            },
        },
    },
]


def _format_validation_error(e: ValidationError) -> str:
    problems = "; ".join(
        f"{'.'.join(str(p) for p in err['loc']) or 'arguments'}: {err['msg']}" for err in e.errors()
    )
    return f"Invalid arguments: {problems}"


class SandboxTools:
    """Tool handlers bound to one sandbox.

    Handlers never raise: every failure is turned into text for the model so
    it can correct itself.
    Each handler leases the sandbox so the cache cannot evict it mid-call.
    """

    def __init__(
        self,
        manager: SandboxManager,
        sandbox_id: str,
        settings: Settings,
        emit: Emit,
    ):
        self.manager = manager
        self.sandbox_id = sandbox_id
        self.settings = settings
        self.emit = emit

    @property
    def schemas(self) -> list[dict[str, Any]]:
        return TOOL_SCHEMAS

    async def execute(self, call: ToolCall) -> ToolOutcome:
        handlers = {
            "run_command": (RunCommandArgs, self.run_command),
            "write_files": (WriteFilesArgs, self.write_files),
            "read_files": (ReadFilesArgs, self.read_files),
        }
        entry = handlers.get(call.name)
        if entry is None:
            return ToolOutcome(name=call.name, output=f"Unknown tool: {call.name}", ok=False)
        model, handler = entry
        try:
            raw = json.loads(call.arguments or "{}")
        except json.JSONDecodeError as e:
            return ToolOutcome(name=call.name, output=f"Arguments are not valid JSON: {e}", ok=False)
        try:
            args = model.model_validate(raw)
        except ValidationError as e:
            return ToolOutcome(name=call.name, output=_format_validation_error(e), ok=False)
        try:
            return await handler(args)
        except Exception as e:
            logger.warning("tool %s failed in sandbox %s: %s", call.name, self.sandbox_id, e)
            return ToolOutcome(name=call.name, output=f"{call.name} failed: {e}", ok=False)

    async def run_command(self, args: RunCommandArgs) -> ToolOutcome:
        command = args.command.strip()
        self.emit(ProgressEvent(type=EventType.TOOL, message=f"Running: {command}"))
        if any(marker in command for marker in _DEV_SERVER_MARKERS):
            return ToolOutcome(
                name="run_command",
                output="Cannot start dev servers in the sandbox. The preview is started automatically.",
                ok=False,
            )
        timeout_ms = args.timeout_ms or self.settings.command_timeout_ms
        try:
            async with self.manager.lease(self.sandbox_id) as handle:
                result = await handle.run_command(command, timeout_ms=timeout_ms)
        except CommandTimeoutError as e:
            return ToolOutcome(name="run_command", output=f"Command failed: {e}", ok=False)
        output = result.stdout
        if result.stderr:
            output += f"\nSTDERR: {result.stderr}"
        if result.exit_code != 0:
            output += f"\nExit code: {result.exit_code}"
        return ToolOutcome(name="run_command", output=output, ok=result.exit_code == 0)

    async def write_files(self, args: WriteFilesArgs) -> ToolOutcome:
        root = self.settings.workspace_root
        self.emit(ProgressEvent(type=EventType.TOOL, message=f"Writing {len(args.files)} files..."))
        accepted: dict[str, str] = {}
        rejected: list[str] = []
        for entry in args.files:
            if not is_valid_file_path(entry.path, root):
                rejected.append(entry.path)
                continue
            accepted[to_workspace_relative(entry.path, root)] = entry.content
        if rejected:
            logger.warning("sandbox %s rejected unsafe paths: %s", self.sandbox_id, rejected)

        if accepted:
            async with self.manager.lease(self.sandbox_id) as handle:
                await handle.write_files(accepted)
            self.emit(ProgressEvent(type=EventType.FILES, data=list(accepted.keys())))

        lines: list[str] = []
        if accepted:
            lines.append(f"Created/updated files: {', '.join(accepted.keys())}")
        if rejected:
            lines.append(f"Rejected invalid paths: {', '.join(repr(p) for p in rejected)}")
        return ToolOutcome(
            name="write_files",
            output="\n".join(lines) or "No files to write.",
            files_written=accepted,
            ok=not rejected,
        )

    async def read_files(self, args: ReadFilesArgs) -> ToolOutcome:
        self.emit(ProgressEvent(type=EventType.TOOL, message=f"Reading {len(args.files)} files..."))
        async with self.manager.lease(self.sandbox_id) as handle:
            contents = await read_files_in_batches(
                handle,
                args.files,
                workspace_root=self.settings.workspace_root,
                timeout_ms=self.settings.file_read_timeout_ms,
                max_size=self.settings.max_file_size,
                max_count=self.settings.max_file_count,
            )
        payload = [{"path": path, "content": content} for path, content in contents.items()]
        return ToolOutcome(name="read_files", output=json.dumps(payload))
