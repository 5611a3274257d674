from __future__ import annotations

from pathlib import Path
import logging
import re
import subprocess


class CommandError(RuntimeError):
    pass


class CommandTimeoutError(CommandError):
    """The command was killed after running past its timeout."""


LOGGER = logging.getLogger("autorebase.shell")
_URL_CREDENTIALS_PATTERN = re.compile(r"(https?://)[^/@\s]+@")


def redact(text: str) -> str:
    return _URL_CREDENTIALS_PATTERN.sub(r"\1***@", text)


def _preview(text: str, *, limit: int = 200) -> str:
    compact = redact(text).replace("\n", "\\n").strip()
    if not compact:
        return "<empty>"
    if len(compact) <= limit:
        return compact
    return f"{compact[:limit]}..."


def run(
    argv: list[str],
    *,
    cwd: Path | None = None,
    input_text: str | None = None,
    check: bool = True,
    timeout: float | None = None,
) -> str:
    try:
        proc = subprocess.run(
            argv,
            cwd=str(cwd) if cwd else None,
            input=input_text,
            text=True,
            capture_output=True,
            check=False,
            timeout=timeout,
        )
    except subprocess.TimeoutExpired as exc:
        command = redact(" ".join(argv))
        LOGGER.error("event=command_timed_out command=%s timeout=%s", command, timeout)
        raise CommandTimeoutError(f"Command timed out after {timeout}s\ncmd: {command}") from exc
    if check and proc.returncode != 0:
        command = redact(" ".join(argv))
        LOGGER.error(
            "event=command_failed command=%s exit_code=%s stderr=%s stdout=%s",
            command,
            proc.returncode,
            _preview(proc.stderr),
            _preview(proc.stdout),
        )
        # Credentials embedded in clone URLs must never reach exception text either.
        raise CommandError(
            "Command failed\n"
            f"cmd: {command}\n"
            f"exit: {proc.returncode}\n"
            f"stdout:\n{redact(proc.stdout)}\n"
            f"stderr:\n{redact(proc.stderr)}"
        )
    return proc.stdout
