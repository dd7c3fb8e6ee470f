from __future__ import annotations

import os
import tempfile

# Keep logs/settings out of the real home directory
os.environ.setdefault("MUXLINK_HOME", tempfile.mkdtemp(prefix="muxlink-test-"))

import pytest
from PySide6.QtCore import QCoreApplication


@pytest.fixture(scope="session", autouse=True)
def qapp():
    app = QCoreApplication.instance() or QCoreApplication([])
    yield app
