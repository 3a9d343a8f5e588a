from dataclasses import dataclass, field
from typing import Protocol, Sequence

from entry import Menu, RawRow


@dataclass(frozen=True)
class Snapshot:
    """Full read of the backing table.

    ``rows[n - 1]`` is the row at position ``n`` (header excluded), in
    insertion order.
    """

    menu: Menu = field(default_factory=Menu)
    rows: tuple[tuple, ...] = ()


class RemoteLogStore(Protocol):
    """Positional row store the sync engine talks to.

    Implementations raise ``RemoteUnavailableError`` for transient failures
    and ``RemoteRejectedError`` when the call can never succeed as issued.
    """

    async def list_all(self) -> Snapshot:
        ...

    async def append(self, row: RawRow) -> None:
        """Add ``row`` after the last row; its position is not reported."""
        ...

    async def update(self, row_id: int, row: RawRow) -> None:
        """Overwrite every column of the row at ``row_id``."""
        ...

    async def delete(self, row_id: int) -> None:
        """Remove the row at ``row_id``; later rows move up by one."""
        ...


def rows_from_cells(values: Sequence[Sequence]) -> tuple[tuple, ...]:
    return tuple(tuple("" if c is None else c for c in row) for row in values)
