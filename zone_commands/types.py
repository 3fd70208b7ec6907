"""
Shared types for privileged command execution
"""
from dataclasses import dataclass, field
from typing import List


@dataclass
class CommandResult:
    """Standardized result from command execution"""
    returncode: int
    stdout: str
    stderr: str
    command: List[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        """Check if command succeeded"""
        return self.returncode == 0

    @property
    def output(self) -> str:
        """Raw stdout, trimmed; callers parse colon-delimited and columnar output from it"""
        return self.stdout.strip()

    @property
    def error(self) -> str:
        """Captured error text, or an exit-code message when stderr is empty"""
        if self.success:
            return ''
        return self.stderr.strip() or f'Command exited with code {self.returncode}'

