"""Configuration commands for content-mapper CLI."""

from typing import Any

from cyclopts import App

from content_mapper.config import DEFAULTS, get_config

config_app = App(name="config", help="Manage store, schema and listing settings")

BACKENDS = ("sqlite", "memory")
INT_SETTINGS = ("posts_per_page", "author_id")


def coerce_setting(key: str, value: str) -> Any:
    """Validate a setting and convert it to the type it is read back as.

    Raises ValueError for an unknown store backend, a non-integer count or
    id, or a page size below 1.
    """
    if key == "store.backend":
        if value not in BACKENDS:
            raise ValueError(f"Unknown store backend {value!r}, expected one of: {', '.join(BACKENDS)}")
        return value
    if key in INT_SETTINGS:
        try:
            number = int(value)
        except ValueError as e:
            raise ValueError(f"{key} must be an integer, got {value!r}") from e
        if key == "posts_per_page" and number < 1:
            raise ValueError(f"posts_per_page must be at least 1, got {number}")
        return number
    return value


@config_app.command
def set(key: str, value: str, global_: bool = False) -> None:
    """Set a configuration setting.

    Args:
        key: Setting key: store.backend, store.path, schema.path, posts_per_page or author_id
        value: Setting value; counts and ids are stored as integers
        global_: If True, set in global config. If False, set in local config.
    """
    coerced = coerce_setting(key, value)
    config = get_config(use_global=global_)
    config.set(key, coerced)
    scope = "global" if global_ else "local"
    print(f"Set {key} = {coerced} ({scope})")


@config_app.command
def unset(key: str, global_: bool = False) -> None:
    """Unset a configuration setting, reverting to the global value or the default."""
    config = get_config(use_global=global_)
    config.unset(key)
    scope = "global" if global_ else "local"
    print(f"Unset {key} ({scope})")


@config_app.command
def get(key: str, global_: bool = False) -> None:
    """Get the effective value of a setting."""
    config = get_config(use_global=global_)
    value = config.get(key)
    if value is None:
        print(f"{key} is not set")
    else:
        print(f"{key} = {value}")


@config_app.command(name="list")
def list_config(global_: bool = False) -> None:
    """List settings, including built-in defaults that are not overridden.

    Args:
        global_: If True, list global config only. If False, list merged config.
    """
    config = get_config(use_global=global_)
    settings = config.list()

    title = "Global settings" if global_ else "Settings"
    print(f"{title}:\n")
    for key, value in settings.items():
        print(f"{key} = {value}")
    for key, value in DEFAULTS.items():
        if key not in settings:
            print(f"{key} = {value} (default)")
