"""Local shell escape (`!cmd args`)."""

from __future__ import annotations

import shutil
import subprocess
from dataclasses import dataclass


@dataclass(frozen=True)
class ShellOutcome:
    returncode: int
    stdout: bytes
    stderr: bytes


def run_shell_escape(command_line: str) -> ShellOutcome:
    """Run one shell command synchronously and capture what it prints."""

    shell = shutil.which("sh") or "/bin/sh"
    try:
        # The user explicitly asked for a local command.
        result = subprocess.run(  # noqa: S603
            [shell, "-c", command_line],
            capture_output=True,
            stdin=subprocess.DEVNULL,
        )
    except (OSError, subprocess.SubprocessError) as exc:
        return ShellOutcome(returncode=-1, stdout=b"", stderr=f"shell escape failed: {exc!s}\n".encode())
    return ShellOutcome(returncode=result.returncode, stdout=result.stdout, stderr=result.stderr)
