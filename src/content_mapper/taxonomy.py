"""Taxonomy key/label derivation and term reference resolution."""

from collections.abc import Iterable
from typing import Any

import structlog

from content_mapper.errors import NotFound
from content_mapper.gateway import PersistenceGateway
from content_mapper.models import FREE_TAGGING_TAXONOMY, Entity, TermRef, term_id_of
from content_mapper.text import human, is_numeric, machine

logger = structlog.get_logger()

KEY_SEPARATOR = "-"


def taxonomy_label(key: str) -> str:
    """Generate a display label for a taxonomy declared without one."""
    return human(str(key).replace(KEY_SEPARATOR, " "))


def taxonomy_key(key: Any, label: str | None = None) -> str:
    """Derive the canonical key of a taxonomy.

    A string key is used as is. A positional declaration (integer key) takes
    the slugified label instead. Applying the rule to its own output returns
    the same key.
    """
    if isinstance(key, str) and not is_numeric(key):
        return key
    if label:
        return machine(label, KEY_SEPARATOR)
    return str(key)


class TaxonomyResolver:
    """Resolves term references to stored term ids, creating terms on first use.

    Term creation is not guarded against concurrent saves: two callers that
    both miss the lookup for the same new name each create a term.
    """

    def __init__(self, gateway: PersistenceGateway) -> None:
        self.gateway = gateway

    def resolve_term_reference(self, ref: Any, taxonomy: str) -> int | str:
        """Resolve one reference to a term id.

        Free-tagging names are returned untouched so the store's own tag
        creation handles them. Raises ValueError for a fractional numeric
        reference such as ``"4.5"``.
        """
        if isinstance(ref, (TermRef, Entity)):
            if ref.id is not None:
                return ref.id
            ref = ref.name if isinstance(ref, TermRef) else ref.title

        term_id = term_id_of(ref)
        if term_id is not None:
            return term_id
        if is_numeric(ref):
            number = float(ref)
            if not number.is_integer():
                raise ValueError(f"Term id must be an integer: {ref!r}")
            return int(number)

        name = str(ref)
        if taxonomy == FREE_TAGGING_TAXONOMY:
            return name

        try:
            term = self.gateway.find_term_by_name(name, taxonomy)
            logger.debug("Resolved term by name", taxonomy=taxonomy, name=name, term_id=term.id)
        except NotFound:
            term = self.gateway.create_term(name, taxonomy)
            logger.info("Created term", taxonomy=taxonomy, name=name, term_id=term.id)
        return term.id

    def resolve_all(self, refs: Iterable[Any], taxonomy: str) -> list[int | str]:
        """Resolve references in order, dropping duplicates."""
        resolved: list[int | str] = []
        for ref in refs:
            term_id = self.resolve_term_reference(ref, taxonomy)
            if term_id not in resolved:
                resolved.append(term_id)
        return resolved
