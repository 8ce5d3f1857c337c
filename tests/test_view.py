"""Tests for the scan control view."""

import asyncio
import logging
from types import SimpleNamespace

from view import ScanControlView


class FakeMessage:
    def __init__(self):
        self.edits = []

    async def edit(self, **kwargs):
        self.edits.append(kwargs)


def test_button_error_is_logged_not_shown(caplog):
    message = FakeMessage()

    async def fail_in_button():
        view = ScanControlView(SimpleNamespace(id=1), asyncio.Event())
        view.message = message
        try:
            raise RuntimeError("boom")
        except RuntimeError as exc:
            await view.on_error(None, exc, view.children[0])
        return view

    with caplog.at_level(logging.ERROR):
        view = asyncio.run(fail_in_button())

    content = message.edits[-1]["content"]
    assert "RuntimeError" in content
    assert "Traceback" not in content
    assert "\n" not in content
    assert "Traceback" in caplog.text
    assert "boom" in caplog.text
    assert all(item.disabled for item in view.children)
    assert view.is_finished()
