"""Tests for CLI helpers."""

from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from content_mapper.cli import Services, delete, get_gateway, get_registry, get_services, parse_condition, show
from content_mapper.gateways import MemoryGateway, SqliteGateway
from content_mapper.models import Condition


@pytest.mark.parametrize(
    ("text", "expected"),
    [
        ("priority>=2", Condition("priority", "2", ">=")),
        ("heat = hot", Condition("heat", "hot", "=")),
        ("heat<>mild", Condition("heat", "mild", "<>")),
        ("post_title like %pepper%", Condition("post_title", "%pepper%", "LIKE")),
        ("post_title NOT LIKE %x%", Condition("post_title", "%x%", "NOT LIKE")),
        ("heat in hot, mild", Condition("heat", ["hot", "mild"], "IN")),
    ],
)
def test_parse_condition(text: str, expected: Condition) -> None:
    assert parse_condition(text) == expected


def test_parse_condition_invalid() -> None:
    with pytest.raises(ValueError):
        parse_condition("just words")


def test_get_gateway(tmp_path: Path) -> None:
    """Test gateway selection from config."""
    config = MagicMock()
    config.get.return_value = "memory"
    assert isinstance(get_gateway(config), MemoryGateway)

    config.get.return_value = "sqlite"
    config.get_path.return_value = tmp_path / "content.db"
    gateway = get_gateway(config)
    assert isinstance(gateway, SqliteGateway)
    gateway.close()

    config.get.return_value = "postgres"
    with pytest.raises(ValueError):
        get_gateway(config)


def test_get_registry(tmp_path: Path) -> None:
    config = MagicMock()
    config.get_int.return_value = 10
    config.get_path.return_value = tmp_path / "missing.yaml"
    assert get_registry(config).entity_types() == ["post"]

    schema = tmp_path / "schema.yaml"
    schema.write_text("types:\n  sauce:\n    fields:\n      heat: text\n")
    config.get_path.return_value = schema
    assert get_registry(config).is_registered("sauce")


@patch("content_mapper.cli.get_config")
def test_show(mock_get_config: MagicMock, capsys: pytest.CaptureFixture[str]) -> None:
    """Test showing an entity through the configured services."""
    config = MagicMock()
    config.get.return_value = "memory"
    config.get_int.return_value = None
    config.get_path.return_value = None
    mock_get_config.return_value = config

    with patch("content_mapper.cli.get_services", wraps=get_services) as services:
        show(1)
    services.assert_called_once()
    assert "Entity 1 not found" in capsys.readouterr().out


def test_services_close_gateway() -> None:
    gateway = MagicMock()
    services = Services(MagicMock(), gateway, MagicMock(), MagicMock(), MagicMock())
    with services as entered:
        assert entered is services
    gateway.close.assert_called_once()


def test_command_closes_gateway_on_error() -> None:
    gateway = MagicMock()
    mapper = MagicMock()
    mapper.delete.side_effect = RuntimeError("store gone")
    services = Services(MagicMock(), gateway, mapper, MagicMock(), MagicMock())

    with patch("content_mapper.cli.get_services", return_value=services):
        with pytest.raises(RuntimeError):
            delete(3)
    gateway.close.assert_called_once()


def test_delete(capsys: pytest.CaptureFixture[str]) -> None:
    gateway = MagicMock()
    mapper = MagicMock()
    mapper.delete.side_effect = [True, False]
    services = Services(MagicMock(), gateway, mapper, MagicMock(), MagicMock())

    with patch("content_mapper.cli.get_services", return_value=services):
        delete(3, force=True)
        delete(4)

    mapper.delete.assert_any_call(3, bypass_trash=True)
    mapper.delete.assert_any_call(4, bypass_trash=False)
    out = capsys.readouterr().out
    assert "Deleted entity 3" in out
    assert "Entity 4 not found" in out
