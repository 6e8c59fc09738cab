"""
Script: ami_ci/common.py
What: Shared helper functions used by all `ami_ci` modules.
Doing: Wraps env reads, command execution, AWS CLI argument building, and GitHub Actions file writes.
Why: Avoids duplicated helper code.
Goal: Keep behavior consistent across all helper modules.
"""

from __future__ import annotations

import json
import os
import subprocess
from typing import Mapping, Sequence


class AmiCiError(RuntimeError):
    """Raised when a workflow helper script hits a known error condition."""


def require_env(name: str) -> str:
    """Return a required environment variable or raise a clear error."""
    value = os.environ.get(name)
    if value is None or value == "":
        raise AmiCiError(f"Missing required environment variable: {name}")
    return value


def optional_env(name: str, default: str = "") -> str:
    """Return an environment variable with a fallback default."""
    return os.environ.get(name, default)


def run_cmd(
    args: Sequence[str],
    *,
    capture_output: bool = True,
    cwd: str | None = None,
) -> str:
    """Run a command and return stdout, raising a readable error on failure."""
    try:
        result = subprocess.run(
            list(args),
            check=True,
            text=True,
            capture_output=capture_output,
            cwd=cwd,
        )
    except subprocess.CalledProcessError as exc:
        stderr = (exc.stderr or "").strip()
        stdout = (exc.stdout or "").strip()
        details = stderr or stdout or str(exc)
        raise AmiCiError(f"Command failed: {' '.join(args)}\n{details}") from exc

    if not capture_output:
        return ""
    return result.stdout


def run_json_cmd(args: Sequence[str]) -> dict:
    """Run a command that returns JSON and parse it."""
    output = run_cmd(args)
    try:
        return json.loads(output)
    except json.JSONDecodeError as exc:
        raise AmiCiError(f"Expected JSON from command: {' '.join(args)}") from exc


def stream_cmd(args: Sequence[str], *, cwd: str | None = None) -> tuple[int, list[str]]:
    """
    Run a command, echo each output line as it arrives, and collect the lines.

    This is the Python version of `cmd | tee /dev/tty`: long-running tools
    such as `packer build` stay visible in the job log while we still keep the
    full output for parsing afterwards.

    Return value is `(returncode, lines)`. A non-zero exit is NOT raised here,
    because callers may still need the partial output.
    """
    lines: list[str] = []
    with subprocess.Popen(
        list(args),
        stdout=subprocess.PIPE,
        stderr=subprocess.STDOUT,
        text=True,
        cwd=cwd,
    ) as process:
        for line in process.stdout or []:
            print(line, end="", flush=True)
            lines.append(line.rstrip("\n"))
    return process.returncode, lines


def aws_ec2_command(action: str, *args: str, region: str = "") -> list[str]:
    """
    Build an `aws ec2 <action>` command line.

    `--region` is only added when one is set; otherwise the AWS CLI falls back
    to `AWS_REGION` / `AWS_DEFAULT_REGION` from the environment.
    """
    command = ["aws", "ec2", action, *args]
    if region:
        command.extend(["--region", region])
    command.extend(["--output", "json"])
    return command


def _append_lines(env_name: str, lines: Sequence[str]) -> None:
    target_file = require_env(env_name)
    with open(target_file, "a", encoding="utf-8") as handle:
        for line in lines:
            handle.write(f"{line}\n")


def write_github_outputs(values: Mapping[str, str]) -> None:
    """
    Write step outputs for GitHub Actions.

    GitHub provides a file path in `GITHUB_OUTPUT`; writing `name=value` lines
    there makes that value available to later steps in the same job.
    """
    _append_lines("GITHUB_OUTPUT", [f"{key}={value}" for key, value in values.items()])


def write_github_env(values: Mapping[str, str]) -> None:
    """
    Export job environment variables for later steps.

    Same `name=value` format as outputs, but written to `GITHUB_ENV`, so the
    values show up as `env.NAME` in workflow `if:` expressions.
    """
    _append_lines("GITHUB_ENV", [f"{key}={value}" for key, value in values.items()])


def append_github_path(directory: str) -> bool:
    """
    Add a directory to PATH for later steps.

    Returns False (and does nothing) outside GitHub Actions, where
    `GITHUB_PATH` is not set.
    """
    if not optional_env("GITHUB_PATH"):
        return False
    _append_lines("GITHUB_PATH", [directory])
    return True
