"""
Tests for config loading and ${ENV} resolution.
"""

import pytest

from parley import config


@pytest.fixture(autouse=True)
def _fresh_config():
    config.reset_config()
    yield
    config.reset_config()


def test_env_vars_resolved(tmp_path, monkeypatch):
    monkeypatch.setenv("OPENROUTER_API_KEY", "sk-or-xyz")
    path = tmp_path / "config.yaml"
    path.write_text(
        "backend:\n"
        "  providers:\n"
        "    - provider: openrouter\n"
        "      api_key: ${OPENROUTER_API_KEY}\n"
        "      models: [\"${UNSET_PARLEY_VAR}openai/\"]\n"
    )
    monkeypatch.delenv("UNSET_PARLEY_VAR", raising=False)

    cfg = config.load_config(path)

    provider = cfg["backend"]["providers"][0]
    assert provider["api_key"] == "sk-or-xyz"
    assert provider["models"] == ["openai/"]


def test_missing_file_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        config.load_config(tmp_path / "nope.yaml")


def test_get_config_caches(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("chat:\n  max_steps: 3\n")
    loaded = config.load_config(path)
    assert config.get_config() is loaded


def test_set_config_resolves_env(monkeypatch):
    monkeypatch.setenv("PARLEY_TEST_DB", "/tmp/x.db")
    cfg = config.set_config({"storage": {"sqlite_path": "${PARLEY_TEST_DB}"}})
    assert cfg["storage"]["sqlite_path"] == "/tmp/x.db"
    assert config.get_config() is cfg


def test_shipped_config_loads():
    """The repository config.yaml parses and carries the main sections."""
    cfg = config.load_config()
    for section in ("server", "backend", "models", "chat", "tools", "storage", "auth", "logging"):
        assert section in cfg
