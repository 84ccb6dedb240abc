"""
Switchboard GitLab Tools

Wraps the ``glab`` CLI. Every command is pinned to the configured project:
user-supplied ``-R``/``--repo`` flags are stripped and the project flag is
injected again.
"""

import asyncio
import logging
import os
import re
import shlex
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from switchboard.core.config import GitLabConfig, get_config
from switchboard.core.registry import capability

logger = logging.getLogger(__name__)

_REPO_FLAG_RE = re.compile(r"(-R\s+\S+|--repo[=\s]+\S+)", re.IGNORECASE)
_NEEDS_REPO_RE = re.compile(r"^(issue|mr|ci|release|label|milestone|api)\b", re.IGNORECASE)

MAX_OUTPUT_CHARS = 8000


class GitLabCommandError(Exception):
    """glab exited with a non-zero status."""
    pass


def enforce_project(command: str, project: str) -> str:
    """Remove repo overrides and pin the command to ``project``."""
    sanitized = _REPO_FLAG_RE.sub("", command)
    sanitized = re.sub(r"\s+", " ", sanitized).strip()
    if _NEEDS_REPO_RE.match(sanitized):
        sanitized = f"{sanitized} -R {project}"
    return sanitized


async def run_glab(command: str, args: Optional[str] = None, config: Optional[GitLabConfig] = None) -> Dict[str, Any]:
    """Run a glab command against the configured project.

    Args:
        command: glab subcommand without the ``glab`` prefix
        args: Extra flags appended to the command
        config: GitLab settings (defaults to the global config)

    Returns:
        Dict with ``output`` and the executed ``command``

    Raises:
        GitLabCommandError: On non-zero exit, timeout or a missing binary
    """
    config = config or get_config().gitlab
    full_command = f"{command} {args}" if args else command
    safe_command = enforce_project(full_command, config.default_project)
    logger.info(f"[GitLab] Guardrail: {full_command!r} -> {safe_command!r}")

    try:
        process = await asyncio.create_subprocess_exec(
            config.glab_path,
            *shlex.split(safe_command),
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env=os.environ.copy(),
        )
    except FileNotFoundError:
        raise GitLabCommandError("glab CLI not found. Please install glab: https://gitlab.com/gitlab-org/cli")

    try:
        stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=config.timeout_sec)
    except asyncio.TimeoutError:
        process.kill()
        await process.wait()
        raise GitLabCommandError(f"Command timeout after {config.timeout_sec}s: glab {safe_command}")

    out = stdout.decode("utf-8", errors="replace").strip()
    err = stderr.decode("utf-8", errors="replace").strip()

    if process.returncode != 0:
        raise GitLabCommandError(err or out or f"glab exited with status {process.returncode}")

    if len(out) > MAX_OUTPUT_CHARS:
        out = out[:MAX_OUTPUT_CHARS] + "\n... (truncated)"

    return {"output": out or "(no output)", "command": safe_command}


class GitLabCliParams(BaseModel):
    command: str = Field(description="glab command to execute (WITHOUT 'glab' prefix, WITHOUT -R)")
    args: Optional[str] = Field(default=None, description="Additional flags (optional)")


@capability(
    name="gitlab_cli",
    params=GitLabCliParams,
    extraction_prompt="""
Extract the glab CLI command from the user query.
Examples:
- "列出我的issues" → command: "issue list --assignee=@me"
- "show open issues" → command: "issue list --state opened"
- "查看issue #123" → command: "issue view 123"

IMPORTANT:
- DO NOT include "glab" prefix.
- DO NOT include -R/--repo (repo is enforced by tool guardrails).
""",
)
async def gitlab_cli(command: str, args: Optional[str] = None) -> Dict[str, Any]:
    """Run a read-only glab command against the team's GitLab project.

    Args:
        command: glab subcommand such as "issue list --assignee=@me"
        args: Additional flags

    Returns:
        Command output
    """
    return await run_glab(command, args)
