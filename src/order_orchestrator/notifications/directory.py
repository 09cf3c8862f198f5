"""Client contact lookup."""

from __future__ import annotations

from collections.abc import Iterable

from order_orchestrator.core.models import ClientContact


class StaticClientDirectory:
    """Fixed client id -> contact table.

    Unknown clients resolve to ``fallback`` (addressed by client id) when
    one is configured, otherwise to None.
    """

    def __init__(
        self,
        contacts: Iterable[ClientContact] = (),
        fallback: ClientContact | None = None,
    ) -> None:
        self._contacts = {c.client_id: c for c in contacts}
        self._fallback = fallback

    def add(self, contact: ClientContact) -> None:
        self._contacts[contact.client_id] = contact

    async def get_contact(self, client_id: str) -> ClientContact | None:
        contact = self._contacts.get(client_id)
        if contact is None and self._fallback is not None:
            return self._fallback.model_copy(update={"client_id": client_id})
        return contact
