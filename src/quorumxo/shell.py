from __future__ import annotations

import logging
import subprocess


class CommandError(RuntimeError):
    pass


class CommandTimeoutError(CommandError):
    pass


LOGGER = logging.getLogger("quorumxo.shell")


def _preview(text: str, *, limit: int = 200) -> str:
    compact = text.replace("\n", "\\n").strip()
    if not compact:
        return "<empty>"
    if len(compact) <= limit:
        return compact
    return f"{compact[:limit]}..."


def run(
    argv: list[str],
    *,
    input_text: str | None = None,
    check: bool = True,
    timeout_seconds: float | None = None,
) -> str:
    try:
        proc = subprocess.run(
            argv,
            input=input_text,
            text=True,
            capture_output=True,
            check=False,
            timeout=timeout_seconds,
        )
    except subprocess.TimeoutExpired as exc:
        LOGGER.warning(
            "event=command_timed_out command=%s timeout_seconds=%s",
            _preview(" ".join(argv)),
            timeout_seconds,
        )
        raise CommandTimeoutError(
            f"Command timed out after {timeout_seconds}s\ncmd: {' '.join(argv)}"
        ) from exc
    if check and proc.returncode != 0:
        LOGGER.error(
            "event=command_failed command=%s exit_code=%s stderr=%s stdout=%s",
            _preview(" ".join(argv)),
            proc.returncode,
            _preview(proc.stderr),
            _preview(proc.stdout),
        )
        raise CommandError(
            "Command failed\n"
            f"cmd: {' '.join(argv)}\n"
            f"exit: {proc.returncode}\n"
            f"stdout:\n{proc.stdout}\n"
            f"stderr:\n{proc.stderr}"
        )
    return proc.stdout
