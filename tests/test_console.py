"""Tests for the user-facing log console."""

import logging

from visionviz.console import LogConsole, Severity


class TestLogConsole:
    def test_entries_newest_last(self):
        console = LogConsole()
        console.info("Camera ready")
        console.success("3D Model received and loaded")
        console.error("3D rendering failed: HTTP 502")

        entries = console.entries
        assert [e.message for e in entries] == [
            "Camera ready",
            "3D Model received and loaded",
            "3D rendering failed: HTTP 502",
        ]
        assert [e.severity for e in entries] == [
            Severity.INFO,
            Severity.SUCCESS,
            Severity.ERROR,
        ]
        assert entries[0].id < entries[1].id < entries[2].id

    def test_filter_by_severity(self):
        console = LogConsole()
        console.info("a")
        console.error("b")
        assert console.messages(Severity.ERROR) == ["b"]
        assert console.messages("info") == ["a"]

    def test_entries_is_snapshot(self):
        console = LogConsole()
        console.info("a")
        snapshot = console.entries
        console.info("b")
        assert len(snapshot) == 1
        assert len(console) == 2

    def test_tail(self):
        console = LogConsole()
        for i in range(5):
            console.info(str(i))
        assert [e.message for e in console.tail(2)] == ["3", "4"]
        assert console.tail(0) == []

    def test_mirrors_to_logging(self, caplog):
        console = LogConsole()
        with caplog.at_level(logging.INFO, logger="visionviz.console"):
            console.error("Select text before visualizing")
        assert any(
            r.levelno == logging.ERROR and "Select text before visualizing" in r.getMessage()
            for r in caplog.records
        )
