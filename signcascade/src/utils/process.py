import signal
import subprocess
from dataclasses import dataclass
from typing import List, Optional, Sequence

from signcascade.logger import get_console

# Exit codes a shell reports for a process killed by a fault signal (128 + signo)
CRASH_EXIT_CODES = {
    128 + signal.SIGSEGV,
    128 + signal.SIGBUS,
    128 + signal.SIGABRT,
    128 + signal.SIGILL,
}


@dataclass
class CommandResult:
    args: List[str]
    returncode: int
    stdout: str = ""
    stderr: str = ""
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return self.returncode == 0 and not self.timed_out

    @property
    def crashed(self) -> bool:
        """True when the process was terminated by a fault rather than exiting"""
        if self.timed_out:
            return False
        return self.returncode < 0 or self.returncode in CRASH_EXIT_CODES

    @property
    def output(self) -> str:
        return "\n".join(part for part in (self.stdout, self.stderr) if part).strip()


class ToolRunner:
    """Runs platform tools (security, openssl, xcodebuild) and captures output"""

    def __init__(self, redact: Optional[Sequence[str]] = None):
        self.console = get_console()
        self._redact = set(redact or ())

    def add_secret(self, secret: str) -> None:
        """Hide a value from logged command lines"""
        if secret:
            self._redact.add(secret)

    def _display(self, args: Sequence[str]) -> str:
        shown = []
        for arg in args:
            for secret in self._redact:
                if secret and secret in arg:
                    arg = arg.replace(secret, "****")
            shown.append(arg)
        return " ".join(shown)

    def run(
        self,
        args: Sequence[str],
        timeout: Optional[float] = None,
        input: Optional[str] = None,
        quiet: bool = False,
    ) -> CommandResult:
        args = [str(a) for a in args]
        if not quiet:
            self.console.log(f"[dim]Running: {self._display(args)}[/]")
        try:
            completed = subprocess.run(
                args,
                capture_output=True,
                text=True,
                timeout=timeout,
                input=input,
            )
        except subprocess.TimeoutExpired as e:
            self.console.log(f"[red]Command timed out after {timeout}s:[/] {args[0]}")
            return CommandResult(
                args=args,
                returncode=-1,
                stdout=_as_text(e.stdout),
                stderr=_as_text(e.stderr),
                timed_out=True,
            )
        except FileNotFoundError:
            return CommandResult(
                args=args, returncode=127, stderr=f"{args[0]}: command not found"
            )
        return CommandResult(
            args=args,
            returncode=completed.returncode,
            stdout=completed.stdout or "",
            stderr=completed.stderr or "",
        )


def _as_text(value) -> str:
    if value is None:
        return ""
    if isinstance(value, bytes):
        return value.decode(errors="replace")
    return value
