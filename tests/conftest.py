import logging
import os

import pytest

from fakes import FakeClient


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch, tmp_path):
    """No WALLDL_* variable from the developer's shell leaks into a test."""
    for key in list(os.environ):
        if key.startswith("WALLDL_"):
            monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("WALLDL_CONFIG", str(tmp_path / "config" / "config.yaml"))
    monkeypatch.setenv("WALLDL_DATABASE", str(tmp_path / "data" / "wallpapers.json"))
    yield
    logger = logging.getLogger("wallpaper_dl")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()


@pytest.fixture
def client():
    return FakeClient()


@pytest.fixture
def root(tmp_path):
    path = tmp_path / "wallpapers"
    path.mkdir()
    return path
