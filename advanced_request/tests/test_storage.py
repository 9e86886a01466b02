"""
Unit tests for payload persistence.
"""

import sys
import os
sys.path.append(os.path.join(os.path.dirname(__file__), '..', '..'))

from advanced_request.storage import LocalFileWriter


class TestLocalFileWriter:
    """Test cases for LocalFileWriter."""

    def test_write_text_creates_parents(self, tmp_path):
        """Test writing text into a missing directory."""
        target = tmp_path / "nested" / "dir" / "page.html"

        path = LocalFileWriter().write(target, "<html></html>")

        assert path == target
        assert target.read_text(encoding="utf-8") == "<html></html>"

    def test_write_bytes(self, tmp_path):
        """Test writing a binary payload."""
        target = tmp_path / "image.png"

        LocalFileWriter().write(str(target), b"\x89PNG\r\n")

        assert target.read_bytes() == b"\x89PNG\r\n"

    def test_overwrite(self, tmp_path):
        """Test that an existing file is replaced."""
        target = tmp_path / "out.txt"
        target.write_text("old")

        LocalFileWriter().write(target, "new")

        assert target.read_text() == "new"
