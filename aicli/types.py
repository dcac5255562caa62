from dataclasses import dataclass, field


@dataclass
class ToolResult:
    success: bool
    content: str
    data: dict | list | None = None
    tool_call_id: str = ""
    error: str | None = None
    error_code: str | None = None
    metadata: dict = field(default_factory=dict)

    def to_message_content(self) -> str:
        if not self.success and self.error:
            return f"[Error: {self.error_code}] {self.error}"
        return self.content


class ErrorCode:
    UNKNOWN_TOOL = "unknown_tool"
    INVALID_ARGUMENTS = "invalid_arguments"
    EXECUTION_FAILED = "execution_failed"
    TIMEOUT = "timeout"
    NOT_FOUND = "not_found"
    POLICY_BLOCK = "policy_block"
    CANCELLED = "cancelled"


@dataclass
class PolicyDecision:
    allowed: bool
    reason: str


@dataclass(frozen=True)
class FileExcerpt:
    path: str
    content: str = ""
    error: str | None = None

    def render(self) -> str:
        if self.error is not None:
            return f"\n[Error reading {self.path}: {self.error}]\n"
        return f"\n--- File: {self.path} ---\n{self.content}\n--- End of file ---\n"
