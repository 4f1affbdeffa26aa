from __future__ import annotations


class TypedSandboxError(RuntimeError):
    """Base class for typed operational errors surfaced to users."""

    error_code = "INTERNAL_ERROR"
    failure_class = "internal"
    user_message = "An internal error occurred."

    def metadata(self) -> dict[str, str]:
        return {
            "error_code": self.error_code,
            "failure_class": self.failure_class,
            "user_message": self.user_message,
        }

    def payload(self, *, detail: str | None = None) -> dict[str, str]:
        payload = self.metadata()
        payload["detail"] = str(self) if detail is None else str(detail)
        return payload

    def client_message(self) -> str:
        return f"{self.failure_class}: {self}"


def typed_error_metadata(exc: BaseException) -> dict[str, str] | None:
    if isinstance(exc, TypedSandboxError):
        return exc.metadata()
    return None


def typed_error_payload(exc: BaseException) -> dict[str, str] | None:
    if isinstance(exc, TypedSandboxError):
        return exc.payload()
    return None


class ConfigError(TypedSandboxError):
    """Configuration parsing or validation error."""

    error_code = "CONFIG_ERROR"
    failure_class = "configuration"
    user_message = "Configuration is invalid."


class SandboxUnavailableError(TypedSandboxError):
    """Sandbox container or Docker daemon is missing or not running."""

    error_code = "SANDBOX_UNAVAILABLE"
    failure_class = "unavailable"
    user_message = "The agent sandbox is not available."


class SandboxAuthError(TypedSandboxError):
    """Agent CLI inside the sandbox is not authenticated with first-party OAuth."""

    error_code = "SANDBOX_AUTH_FAILED"
    failure_class = "auth_failed"
    user_message = "The agent sandbox is not authenticated."


class ResumeFailedError(TypedSandboxError):
    """Stored session could not be resumed by the agent CLI."""

    error_code = "RESUME_FAILED"
    failure_class = "resume_failed"
    user_message = "The previous agent session could not be resumed."


class InvocationTimeoutError(TypedSandboxError):
    """Agent process produced no output for the configured inactivity window."""

    error_code = "INVOCATION_TIMEOUT"
    failure_class = "timeout"
    user_message = "The agent stopped responding."


class AgentExitError(TypedSandboxError):
    """Agent process exited non-zero for an unrecognised reason."""

    error_code = "AGENT_EXIT_ERROR"
    failure_class = "unknown"
    user_message = "The agent exited unexpectedly."

    def __init__(self, message: str, *, exit_code: int | None = None) -> None:
        super().__init__(message)
        self.exit_code = exit_code

    def payload(self, *, detail: str | None = None) -> dict[str, str]:
        payload = super().payload(detail=detail)
        payload["exit_code"] = "" if self.exit_code is None else str(self.exit_code)
        return payload
