class SitegenError(Exception):
    """Base class for errors that end a generation run."""

    user_message: str = "Something went wrong while generating your app."

    def __init__(self, message: str, *, user_message: str | None = None) -> None:
        super().__init__(message)
        if user_message is not None:
            self.user_message = user_message


class SetupError(SitegenError):
    """Missing configuration or an unresolvable project; raised before any sandbox work."""

    def __init__(self, message: str) -> None:
        super().__init__(message, user_message=message)


class SandboxProvisioningError(SitegenError):
    """Sandbox creation kept failing after all retries."""

    user_message = "Could not start the environment. Please try again in a moment."

    def __init__(self, message: str, *, attempts: int = 0) -> None:
        super().__init__(message)
        self.attempts = attempts


class SandboxUnavailableError(SitegenError):
    """A known sandbox can no longer be reached, usually because it expired.

    Callers should offer to start a new run instead of resuming.
    """

    user_message = "The sandbox for this project is no longer available. Start a new run to continue."

    def __init__(self, sandbox_id: str, reason: str) -> None:
        super().__init__(f"Sandbox {sandbox_id} is unavailable: {reason}")
        self.sandbox_id = sandbox_id


class CommandTimeoutError(Exception):
    """A sandbox command exceeded its timeout and was killed."""

    def __init__(self, command: str, timeout_ms: int) -> None:
        super().__init__(f"Command timed out after {timeout_ms}ms: {command}")
        self.command = command
        self.timeout_ms = timeout_ms
