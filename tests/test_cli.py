"""Tests for the command line entry point."""

from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from warden import EXIT_BAD_DIRECTORY, EXIT_CONFIG_ERROR, EXIT_OK, EXIT_USAGE, main

ENV_VARS = ("WARDEN_DIR", "WARDEN_DEBUG", "WARDEN_MAX_IN_FLIGHT", "WARDEN_USER_AGENT")


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """Run each test in an empty directory without WARDEN_* variables."""
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)


@pytest.fixture
def request_dir(tmp_path: Path) -> Path:
    """Create a directory with two request files and one broken file."""
    directory = tmp_path / "requests"
    directory.mkdir()
    (directory / "pass.req").write_bytes(
        b'{"name": "passing", "url": "http://x/pass", "timeout": 1000, "assertions": ["ok"]}\n---\n'
    )
    (directory / "fail.req").write_bytes(
        b'{"name": "failing", "url": "http://x/fail", "timeout": 1000, "assertions": ["missing"]}\n---\n'
    )
    (directory / "broken.req").write_bytes(b"no divider here")
    return directory


def _mock_response(body: bytes) -> MagicMock:
    response = MagicMock()
    response.status = 200
    response.read.return_value = body
    response.headers = {}
    return response


class TestMain:
    """Tests for main."""

    def test_prints_one_line_per_request(self, request_dir: Path, capsys: pytest.CaptureFixture[str]) -> None:
        """Each valid request file produces one OK or FAIL line."""
        with patch("warden.dispatch._opener.open", return_value=_mock_response(b"this is ok")):
            code = main(["--dir", str(request_dir)])

        assert code == EXIT_OK
        lines = sorted(capsys.readouterr().out.splitlines())
        assert len(lines) == 2
        assert lines[0].startswith("FAIL  failing (")
        assert lines[0].endswith("; error: assertion failed: 'missing'")
        assert lines[1].startswith("OK    passing (")

    def test_failures_do_not_change_exit_code(self, request_dir: Path) -> None:
        """Probe failures still exit with 0."""
        with patch("warden.dispatch._opener.open", return_value=_mock_response(b"nothing")):
            assert main(["--dir", str(request_dir)]) == EXIT_OK

    def test_directory_from_environment(
        self,
        request_dir: Path,
        monkeypatch: pytest.MonkeyPatch,
        capsys: pytest.CaptureFixture[str],
    ) -> None:
        """WARDEN_DIR is used when --dir is not given."""
        monkeypatch.setenv("WARDEN_DIR", str(request_dir))
        with patch("warden.dispatch._opener.open", return_value=_mock_response(b"ok")):
            assert main([]) == EXIT_OK
        assert len(capsys.readouterr().out.splitlines()) == 2

    def test_missing_directory(self, tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
        """An unusable directory exits with the bad directory code."""
        code = main(["--dir", str(tmp_path / "missing")])

        assert code == EXIT_BAD_DIRECTORY
        assert "unable to scan directory" in capsys.readouterr().err

    def test_invalid_max_in_flight(self, request_dir: Path) -> None:
        """Invalid configuration exits with the config error code."""
        assert main(["--dir", str(request_dir), "--max-in-flight", "0"]) == EXIT_CONFIG_ERROR

    def test_missing_config_file(self, tmp_path: Path) -> None:
        assert main(["--config", str(tmp_path / "missing.yaml")]) == EXIT_CONFIG_ERROR

    def test_unknown_flag_is_usage_error(self) -> None:
        """Bad arguments exit with the usage code."""
        with pytest.raises(SystemExit) as exc_info:
            main(["--no-such-flag"])
        assert exc_info.value.code == EXIT_USAGE

    def test_version(self, capsys: pytest.CaptureFixture[str]) -> None:
        with pytest.raises(SystemExit) as exc_info:
            main(["--version"])
        assert exc_info.value.code == 0
        assert "warden" in capsys.readouterr().out

    def test_empty_directory(self, tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
        """An empty directory prints nothing and succeeds."""
        empty = tmp_path / "empty"
        empty.mkdir()
        assert main(["--dir", str(empty)]) == EXIT_OK
        assert capsys.readouterr().out == ""
