from pydantic import BaseModel, ConfigDict, Field


class ToolOutcome(BaseModel):
    """Structured result of one tool invocation.

    Attributes:
        name: Tool that produced this outcome.
        output: Text handed back to the model.
        files_written: Project-relative path -> content for files the tool wrote.
        ok: False when the tool reported an error to the model.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    output: str
    files_written: dict[str, str] = Field(default_factory=dict)
    ok: bool = True


class AgentState(BaseModel):
    """Snapshot of a run's agent state.

    Instances are immutable; the loop folds tool outcomes and summaries into a
    new snapshot after every iteration. `files` only grows or has paths
    overwritten.

    Attributes:
        files: Project-relative path -> content of every file written this run.
        summary: Latest <task_summary> text produced by the model.
        framework: Target framework of the run.
        fix_attempts: Auto-fix passes performed so far.
    """

    model_config = ConfigDict(frozen=True)

    files: dict[str, str] = Field(default_factory=dict)
    summary: str = ""
    framework: str | None = None
    fix_attempts: int = 0

    def fold(self, outcomes: list[ToolOutcome]) -> "AgentState":
        written: dict[str, str] = {}
        for outcome in outcomes:
            written.update(outcome.files_written)
        if not written:
            return self
        return self.model_copy(update={"files": {**self.files, **written}})

    def with_summary(self, summary: str) -> "AgentState":
        if not summary:
            return self
        return self.model_copy(update={"summary": summary})

    def with_fix_attempt(self) -> "AgentState":
        return self.model_copy(update={"fix_attempts": self.fix_attempts + 1})
