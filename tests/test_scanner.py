"""Tests for the scanner module."""

import logging
from pathlib import Path

import pytest

from warden.scanner import ScanError, scan_directory


def _write(path: Path, name: str, content: bytes) -> Path:
    file_path = path / name
    file_path.write_bytes(content)
    return file_path


class TestScanDirectory:
    """Tests for scan_directory."""

    def test_loads_all_files(self, tmp_path: Path) -> None:
        """Every valid file becomes a request, in file name order."""
        _write(tmp_path, "b.req", b'{"name": "second"}\n---\n')
        _write(tmp_path, "a.req", b'{"name": "first"}\n---\nbody')

        requests = scan_directory(tmp_path)

        assert [r.name for r in requests] == ["first", "second"]
        assert requests[0].body == b"body"
        assert requests[0].source == str(tmp_path / "a.req")

    def test_any_file_name_is_accepted(self, tmp_path: Path) -> None:
        """Files are not filtered by extension."""
        _write(tmp_path, "README", b'{"name": "readme"}\n---\n')
        assert [r.name for r in scan_directory(tmp_path)] == ["readme"]

    def test_skips_subdirectories(self, tmp_path: Path) -> None:
        """Sub-directories are neither loaded nor descended into."""
        nested = tmp_path / "nested"
        nested.mkdir()
        _write(nested, "inner.req", b'{"name": "inner"}\n---\n')
        _write(tmp_path, "outer.req", b'{"name": "outer"}\n---\n')

        assert [r.name for r in scan_directory(tmp_path)] == ["outer"]

    def test_skips_bad_files_with_warning(self, tmp_path: Path, caplog: pytest.LogCaptureFixture) -> None:
        """Unparseable files are skipped and logged; the rest still load."""
        _write(tmp_path, "good.req", b'{"name": "good"}\n---\n')
        _write(tmp_path, "no-divider.req", b"just a body")
        _write(tmp_path, "bad-json.req", b"{nope\n---\n")
        _write(tmp_path, "bad-regex.req", b'{"assertions": ["(unclosed"]}\n---\n')

        with caplog.at_level(logging.WARNING, logger="warden"):
            requests = scan_directory(tmp_path)

        assert [r.name for r in requests] == ["good"]
        warnings = [r.getMessage() for r in caplog.records if r.levelno == logging.WARNING]
        assert len(warnings) == 3
        assert any("no-divider.req" in w and "front matter not found" in w for w in warnings)

    def test_empty_directory(self, tmp_path: Path) -> None:
        """An empty directory yields no requests."""
        assert scan_directory(tmp_path) == []

    def test_missing_directory(self, tmp_path: Path) -> None:
        """A missing path is a scan error."""
        with pytest.raises(ScanError, match="unable to stat directory"):
            scan_directory(tmp_path / "missing")

    def test_path_is_a_file(self, tmp_path: Path) -> None:
        """A file path is a scan error."""
        file_path = _write(tmp_path, "a.req", b"{}\n---\n")
        with pytest.raises(ScanError, match="is not a directory"):
            scan_directory(file_path)

    def test_uses_injected_logger(self, tmp_path: Path, caplog: pytest.LogCaptureFixture) -> None:
        """Diagnostics go to the logger passed in."""
        _write(tmp_path, "bad.req", b"no divider")
        log = logging.getLogger("custom.scan")

        with caplog.at_level(logging.DEBUG, logger="custom.scan"):
            scan_directory(tmp_path, log=log)

        assert caplog.records
        assert all(r.name == "custom.scan" for r in caplog.records)
