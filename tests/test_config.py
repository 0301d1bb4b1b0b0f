"""Tests for configuration management."""

from pathlib import Path

import pytest

from content_mapper.config import Config


@pytest.fixture
def home(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    return home


def test_defaults(tmp_path: Path, home: Path) -> None:
    """Test built-in defaults apply when nothing is set."""
    config = Config(config_dir=tmp_path / ".content-mapper")
    assert config.get("store.backend") == "sqlite"
    assert config.get_int("posts_per_page") == 10
    assert config.get("author_id") is None
    assert config.get("author_id", 3) == 3
    assert config.get_path("store.path") == tmp_path / "content.db"


def test_set_and_unset(tmp_path: Path, home: Path) -> None:
    config_dir = tmp_path / ".content-mapper"
    config = Config(config_dir=config_dir)
    config.set("store.backend", "memory")
    assert (config_dir / "config.yaml").exists()

    reloaded = Config(config_dir=config_dir)
    assert reloaded.get("store.backend") == "memory"
    assert reloaded.list() == {"store.backend": "memory"}

    reloaded.unset("store.backend")
    assert Config(config_dir=config_dir).get("store.backend") == "sqlite"


def test_global_fallback(tmp_path: Path, home: Path) -> None:
    """Test local settings override global ones."""
    global_config = Config(use_global=True)
    global_config.set("posts_per_page", "20")
    global_config.set("author_id", "7")

    local = Config(config_dir=tmp_path / "project" / ".content-mapper")
    local.set("posts_per_page", "5")

    assert local.get_int("posts_per_page") == 5
    assert local.get_int("author_id") == 7
    assert local.list() == {"posts_per_page": "5", "author_id": "7"}


def test_get_int_invalid(tmp_path: Path, home: Path) -> None:
    config = Config(config_dir=tmp_path / ".content-mapper")
    config.set("posts_per_page", "many")
    with pytest.raises(ValueError):
        config.get_int("posts_per_page")


def test_absolute_path(tmp_path: Path, home: Path) -> None:
    config = Config(config_dir=tmp_path / ".content-mapper")
    config.set("schema.path", str(tmp_path / "elsewhere" / "schema.yaml"))
    assert config.get_path("schema.path") == tmp_path / "elsewhere" / "schema.yaml"


def test_invalid_config_file(tmp_path: Path, home: Path) -> None:
    config_dir = tmp_path / ".content-mapper"
    config_dir.mkdir()
    (config_dir / "config.yaml").write_text("- just\n- a list\n")
    with pytest.raises(ValueError):
        Config(config_dir=config_dir)
