"""Read-only providers of playbook definitions."""

from __future__ import annotations

from collections.abc import Iterable
from pathlib import Path
from typing import Protocol, runtime_checkable

from rw_soar.playbook.loader import PlaybookLoader
from rw_soar.playbook.models import PlaybookDefinition


@runtime_checkable
class PlaybookSource(Protocol):
    """Provides playbook definitions; the engine never writes them."""

    async def list_playbooks(
        self,
        organization_id: str | None = None,
        is_active: bool | None = None,
    ) -> list[PlaybookDefinition]:
        """List definitions, optionally filtered by organization and state."""
        ...

    async def get_playbook(self, playbook_id: str) -> PlaybookDefinition | None:
        """Get one definition by id."""
        ...


class InMemoryPlaybookSource:
    """Definitions held in a dict, in insertion order."""

    def __init__(self, definitions: Iterable[PlaybookDefinition] = ()) -> None:
        self._definitions: dict[str, PlaybookDefinition] = {}
        for definition in definitions:
            self.add(definition)

    def add(self, definition: PlaybookDefinition) -> None:
        """Add or replace a definition."""
        self._definitions[definition.id] = definition

    def remove(self, playbook_id: str) -> None:
        self._definitions.pop(playbook_id, None)

    async def list_playbooks(
        self,
        organization_id: str | None = None,
        is_active: bool | None = None,
    ) -> list[PlaybookDefinition]:
        return [
            d
            for d in self._definitions.values()
            if (organization_id is None or d.organization_id == str(organization_id))
            and (is_active is None or d.is_active == is_active)
        ]

    async def get_playbook(self, playbook_id: str) -> PlaybookDefinition | None:
        return self._definitions.get(str(playbook_id))

    def __len__(self) -> int:
        return len(self._definitions)


class YamlDirectorySource(InMemoryPlaybookSource):
    """Definitions loaded from ``*.yaml``/``*.yml`` files in a directory.

    Files are read once at construction; call :meth:`reload` to pick up
    changes.
    """

    def __init__(self, directory: str | Path, loader: PlaybookLoader | None = None) -> None:
        self._directory = Path(directory)
        self._loader = loader or PlaybookLoader()
        super().__init__(self._loader.load_directory(self._directory))

    def reload(self) -> None:
        self._definitions = {}
        for definition in self._loader.load_directory(self._directory):
            self.add(definition)
