"""
Tests for the client command-line entry point.
"""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest

from pkgupdates.client.cli import EXIT_FAILURE, EXIT_OK, EXIT_UNREACHABLE, run_client
from pkgupdates.client.session import SessionState, UpdateClient, UpdateResult
from pkgupdates.errors import ServerUnreachableError


@pytest.fixture
def client() -> MagicMock:
    """A mocked UpdateClient."""
    mock = MagicMock(spec=UpdateClient)
    mock.get_current_version.return_value = "1.0.0"
    return mock


class TestCheck:
    """Tests for --check."""

    @pytest.mark.asyncio
    async def test_update_available(self, client: MagicMock, capsys: pytest.CaptureFixture[str]) -> None:
        """Test exit 0 when an update is available."""
        client.check_for_update = AsyncMock(return_value=True)

        code = await run_client(client, check=True, list_versions=False, version="LATEST")

        assert code == EXIT_OK
        assert "Update available" in capsys.readouterr().out

    @pytest.mark.asyncio
    async def test_up_to_date(self, client: MagicMock) -> None:
        """Test exit 1 when up to date."""
        client.check_for_update = AsyncMock(return_value=False)

        assert await run_client(client, check=True, list_versions=False, version="LATEST") == EXIT_FAILURE

    @pytest.mark.asyncio
    async def test_unreachable(self, client: MagicMock, capsys: pytest.CaptureFixture[str]) -> None:
        """Test exit 2 when the host is unreachable."""
        client.check_for_update = AsyncMock(side_effect=ServerUnreachableError("Update server down"))

        code = await run_client(client, check=True, list_versions=False, version="LATEST")

        assert code == EXIT_UNREACHABLE
        assert "Update server down" in capsys.readouterr().err


class TestList:
    """Tests for --list."""

    @pytest.mark.asyncio
    async def test_list(self, client: MagicMock, capsys: pytest.CaptureFixture[str]) -> None:
        """Test that versions are printed one per line."""
        client.get_available_versions = AsyncMock(return_value=["2.0.0", "1.0.0"])

        code = await run_client(client, check=False, list_versions=True, version="LATEST")

        assert code == EXIT_OK
        assert capsys.readouterr().out.splitlines() == ["2.0.0", "1.0.0"]


class TestUpdate:
    """Tests for the default update command."""

    @pytest.mark.asyncio
    async def test_success(self, client: MagicMock, capsys: pytest.CaptureFixture[str]) -> None:
        """Test a successful update."""
        client.update = AsyncMock(
            return_value=UpdateResult(status="succeeded", requested_version="LATEST", version="2.0.0")
        )

        code = await run_client(client, check=False, list_versions=False, version="LATEST")

        assert code == EXIT_OK
        client.update.assert_awaited_once_with("LATEST")
        assert "Updated to 2.0.0" in capsys.readouterr().out

    @pytest.mark.asyncio
    async def test_failure_names_stage(self, client: MagicMock, capsys: pytest.CaptureFixture[str]) -> None:
        """Test that a failure reports the stage and the cause."""
        client.update = AsyncMock(
            return_value=UpdateResult(
                status="failed",
                requested_version="2.0.0",
                version="2.0.0",
                failed_stage=SessionState.EXTRACTING,
                error_code="extraction_error",
                message="Failed to extract archive: unexpected end of data",
            )
        )

        code = await run_client(client, check=False, list_versions=False, version="2.0.0")

        assert code == EXIT_FAILURE
        err = capsys.readouterr().err
        assert "extracting" in err
        assert "unexpected end of data" in err
