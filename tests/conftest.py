"""Pytest configuration and shared fixtures for wacli tests."""

import pytest


# ---------------------------------------------------------------------------
# Isolation fixtures
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True)
def _isolated_paths(tmp_path, monkeypatch):
    """Keep every test away from the real config, data and log directories."""
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "config"))
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path / "share"))
    monkeypatch.setenv("WACLI_LOG_DIR", str(tmp_path / "logs"))
    monkeypatch.delenv("WACLI_DATA_DIR", raising=False)
    monkeypatch.delenv("WACLI_LOG_FILE", raising=False)
    monkeypatch.delenv("WACLI_LOG_LEVEL", raising=False)


@pytest.fixture
def tmp_settings(tmp_path, monkeypatch):
    """Redirect settings file to a temp directory."""
    settings_file = tmp_path / "settings.json"
    monkeypatch.setattr(
        "wacli.io.settings.get_config_path",
        lambda: settings_file,
    )
    return settings_file


@pytest.fixture
def data_dir(tmp_path):
    """Empty data directory for state.json / overrides.json."""
    path = tmp_path / "data"
    path.mkdir()
    return path


# ---------------------------------------------------------------------------
# Store fixtures
# ---------------------------------------------------------------------------

class FakeClock:
    """Deterministic clock for StateStore creation timestamps."""

    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    from wacli.app.state_store import StateStore

    return StateStore(clock=clock)
