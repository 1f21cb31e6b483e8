"""
Unit tests for jj_common.console module.

Tests HTML stripping, line chunking and per-batch normalization.
"""

from jj_common.console import chunk_line, normalize_console, strip_html_tags


class TestStripHtmlTags:
    """Test suite for strip_html_tags function."""

    def test_removes_tags_and_decodes_entities(self):
        """Test that markup is removed and entities decoded."""
        raw = '<span class="timestamp"><b>12:00</b></span> a &lt; b &amp;&amp; c'
        assert strip_html_tags(raw) == "12:00 a < b && c"

    def test_drops_blank_lines(self):
        """Test that whitespace-only lines disappear."""
        raw = "first\n   \n<br>\nsecond\n\n"
        assert strip_html_tags(raw) == "first\nsecond"


class TestChunkLine:
    """Test suite for chunk_line function."""

    def test_short_line_is_single_chunk(self):
        """Test that lines within the width are left alone."""
        assert chunk_line("hello", size=10) == ["hello"]

    def test_splits_long_line_in_order(self):
        """Test that long lines are split into ordered fixed-width chunks."""
        assert chunk_line("abcdefghij", size=4) == ["abcd", "efgh", "ij"]

    def test_caps_number_of_chunks(self):
        """Test that a pathological line is capped at ten chunks."""
        chunks = chunk_line("x" * 1050)

        assert len(chunks) == 10
        assert all(len(c) == 100 for c in chunks)


class TestNormalizeConsole:
    """Test suite for normalize_console function."""

    def test_empty_input(self):
        """Test that blank input yields no lines."""
        assert normalize_console("") == []
        assert normalize_console("<br>\n \n") == []

    def test_keeps_last_fifty_lines(self):
        """Test that only the most recent fifty source lines survive."""
        raw = "\n".join(f"line {i}" for i in range(120))
        lines = normalize_console(raw)

        assert len(lines) == 50
        assert lines[0] == "line 70"
        assert lines[-1] == "line 119"

    def test_suppresses_duplicates_within_batch(self):
        """Test that a chunk already emitted in this batch is skipped."""
        raw = "Building...\nstep 1\n  Building...  \nstep 2\nstep 1"
        assert normalize_console(raw) == ["Building...", "step 1", "step 2"]

    def test_duplicates_across_batches_are_kept(self):
        """Test that dedup state does not leak between calls."""
        assert normalize_console("step 1") == ["step 1"]
        assert normalize_console("step 1") == ["step 1"]

    def test_long_lines_are_chunked(self):
        """Test that long lines become several display lines."""
        raw = "a" * 100 + "b" * 50
        assert normalize_console(raw) == ["a" * 100, "b" * 50]
