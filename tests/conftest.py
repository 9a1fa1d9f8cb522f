import os
import tempfile

import pytest

# The API module opens its store at import time; keep it out of the working tree.
os.environ.setdefault("CLIPGUARD_DB_PATH", os.path.join(tempfile.mkdtemp(prefix="clipguard-test-"), "clipguard.db"))

from clipguard.dispatcher import ClipboardGuard, VerdictDispatcher  # noqa: E402
from clipguard.storage import SettingsStore  # noqa: E402


class RecordingNotifier:
    name = "recording"

    def __init__(self):
        self.alerts = []

    def notify(self, alert):
        self.alerts.append(alert)


@pytest.fixture
def store(tmp_path):
    return SettingsStore(str(tmp_path / "settings.db"))


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def guard(store, notifier):
    return ClipboardGuard(store, VerdictDispatcher(store, [notifier]))


@pytest.fixture
def client(tmp_path, monkeypatch):
    from fastapi.testclient import TestClient

    from clipguard import main

    api_store = SettingsStore(str(tmp_path / "api.db"))
    monkeypatch.setattr(main, "store", api_store)
    monkeypatch.setattr(main, "guard", main.build_guard(api_store))
    monkeypatch.setattr(main.config, "API_KEY", None)
    return TestClient(main.app)
