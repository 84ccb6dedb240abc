"""Unit tests for the release notes workflow."""
import json
from unittest.mock import AsyncMock, patch

import pytest

from switchboard.tools.gitlab import GitLabCommandError
from switchboard.workflows.base import WorkflowInput
from switchboard.workflows.release_notes import ReleaseNotesWorkflow, describe_item, parse_release_request


class TestHelpers:
    """Tests for request parsing and item rendering."""

    def test_parse_request(self):
        """Test issue numbers and the version are found."""
        assert parse_release_request("release notes for v1.4.0 with #12 and #15") == ([12, 15], "v1.4.0")
        assert parse_release_request("生成发布说明") == ([], None)

    def test_describe_item(self):
        """Test labels and a trimmed description are shown."""
        text = describe_item({"iid": 7, "title": "Fix sync", "labels": ["bug"], "description": ""}, "!")
        assert text == "- !7: Fix sync [bug]\n  (no description)"


class TestReleaseNotesWorkflow:
    """Tests for changelog generation."""

    @pytest.mark.asyncio
    async def test_merged_mrs(self):
        """Test merged MRs feed the changelog prompt."""
        mrs = [{"iid": 3, "title": "Add OKR chart"}, {"iid": 4, "title": "Fix login"}]
        run = AsyncMock(return_value={"output": json.dumps(mrs), "command": ""})
        complete = AsyncMock(return_value="- ✨ !3 OKR chart")

        with patch("switchboard.workflows.release_notes.run_glab", run), \
                patch("switchboard.workflows.release_notes.complete_text", complete):
            result = await ReleaseNotesWorkflow().run(WorkflowInput(query="release notes v2.0"))

        assert result.response == "## 🚀 v2.0\n\n- ✨ !3 OKR chart"
        assert run.call_args.args[0].startswith("mr list --merged")
        assert "!4: Fix login" in complete.call_args.args[0]

    @pytest.mark.asyncio
    async def test_issues_with_missing(self):
        """Test listed issues are fetched and missing ones reported."""
        async def fake_glab(command):
            if "issue view 12" in command:
                return {"output": json.dumps({"iid": 12, "title": "Sync job"}), "command": command}
            raise GitLabCommandError("404 Not Found")

        with patch("switchboard.workflows.release_notes.run_glab", side_effect=fake_glab), \
                patch("switchboard.workflows.release_notes.complete_text", AsyncMock(side_effect=RuntimeError("down"))):
            result = await ReleaseNotesWorkflow().run(WorkflowInput(query="release notes #12 #99"))

        assert "- #12: Sync job" in result.response
        assert "⚠️ 无法获取: #99" in result.response

    @pytest.mark.asyncio
    async def test_no_items(self):
        """Test an empty MR list is reported."""
        with patch("switchboard.workflows.release_notes.run_glab", AsyncMock(return_value={"output": "[]"})):
            result = await ReleaseNotesWorkflow().run(WorkflowInput(query="release notes"))
        assert result.response == "没有找到可用于生成发布说明的变更。"
