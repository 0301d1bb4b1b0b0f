"""Revision commands for content-mapper CLI."""

from cyclopts import App

revision_app = App(name="revision", help="Inspect and restore revisions")


@revision_app.command
def render(field_key: str, revision_id: int) -> None:
    """Show a field's value as stored in a revision."""
    from content_mapper.cli import get_services

    with get_services() as services:
        value = services.hooks.render_revision_field_value(field_key, revision_id)
    if value is None:
        print(f"Revision {revision_id} not found or not of a registered type")
        return
    print(value)


@revision_app.command
def fields(entity_id: int) -> None:
    """List the fields shown when comparing revisions of an entity."""
    from content_mapper.cli import get_services
    from content_mapper.hooks import REVISION_CORE_FIELDS
    from content_mapper.text import human

    with get_services() as services:
        labels = services.hooks.compute_revision_display_fields(
            {key: human(key.removeprefix("post_")) for key in REVISION_CORE_FIELDS}, entity_id
        )
    for key, label in labels.items():
        print(f"{key}: {label}")


@revision_app.command
def restore(entity_id: int, revision_id: int) -> None:
    """Restore an entity's fields from one of its revisions."""
    from content_mapper.cli import get_services

    with get_services() as services:
        restored = services.hooks.on_restore_revision(entity_id, revision_id)
    if restored:
        print(f"Restored entity {entity_id} from revision {revision_id}")
    else:
        print(f"Entity {entity_id} not found or not of a registered type")
