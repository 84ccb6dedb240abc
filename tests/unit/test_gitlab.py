"""Unit tests for the glab wrapper."""
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from switchboard.core.config import GitLabConfig
from switchboard.tools.gitlab import GitLabCommandError, enforce_project, run_glab

CONFIG = GitLabConfig(default_project="dpa/dagster", glab_path="glab", timeout_sec=5)


def fake_process(stdout=b"", stderr=b"", returncode=0):
    process = MagicMock()
    process.communicate = AsyncMock(return_value=(stdout, stderr))
    process.returncode = returncode
    return process


class TestEnforceProject:
    """Tests for project pinning."""

    def test_project_appended(self):
        """Test project-scoped subcommands get the configured project."""
        assert enforce_project("issue list --assignee=@me", "dpa/dagster") == "issue list --assignee=@me -R dpa/dagster"

    def test_repo_override_stripped(self):
        """Test user-supplied repo flags are replaced."""
        assert enforce_project("mr list -R other/repo --state opened", "dpa/dagster") == (
            "mr list --state opened -R dpa/dagster"
        )
        assert enforce_project("issue view 3 --repo=evil/x", "dpa/dagster") == "issue view 3 -R dpa/dagster"

    def test_global_commands_untouched(self):
        """Test commands without a project scope are left alone."""
        assert enforce_project("auth status", "dpa/dagster") == "auth status"


class TestRunGlab:
    """Tests for subprocess execution."""

    @pytest.mark.asyncio
    async def test_success(self):
        """Test output and the executed command are returned."""
        process = fake_process(stdout=b"#1 Fix pipeline\n")
        with patch("asyncio.create_subprocess_exec", AsyncMock(return_value=process)) as spawn:
            result = await run_glab("issue list", "--state opened", config=CONFIG)

        assert result == {"output": "#1 Fix pipeline", "command": "issue list --state opened -R dpa/dagster"}
        assert spawn.call_args.args == ("glab", "issue", "list", "--state", "opened", "-R", "dpa/dagster")

    @pytest.mark.asyncio
    async def test_quoted_arguments(self):
        """Test quoted titles stay a single argument."""
        with patch("asyncio.create_subprocess_exec", AsyncMock(return_value=fake_process(stdout=b"ok"))) as spawn:
            await run_glab("issue create -t 'Pipeline fails'", config=CONFIG)
        assert "Pipeline fails" in spawn.call_args.args

    @pytest.mark.asyncio
    async def test_empty_output(self):
        """Test empty output is labelled."""
        with patch("asyncio.create_subprocess_exec", AsyncMock(return_value=fake_process())):
            result = await run_glab("ci status", config=CONFIG)
        assert result["output"] == "(no output)"

    @pytest.mark.asyncio
    async def test_non_zero_exit(self):
        """Test failures raise with stderr."""
        process = fake_process(stderr=b"404 Not Found", returncode=1)
        with patch("asyncio.create_subprocess_exec", AsyncMock(return_value=process)):
            with pytest.raises(GitLabCommandError, match="404"):
                await run_glab("issue view 999", config=CONFIG)

    @pytest.mark.asyncio
    async def test_missing_binary(self):
        """Test a missing glab binary is reported."""
        with patch("asyncio.create_subprocess_exec", AsyncMock(side_effect=FileNotFoundError())):
            with pytest.raises(GitLabCommandError, match="glab CLI not found"):
                await run_glab("issue list", config=CONFIG)
