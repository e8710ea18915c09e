"""Last-known revision token per managed identity."""


class RevisionStore:
    """Holds the last persisted revision token for each identity.

    Nothing else is kept here: lifecycle and snapshots belong to the
    tracker. ``snapshot``/``restore`` let callers undo a partially applied
    change.
    """

    def __init__(self) -> None:
        self._revisions: dict[str, str] = {}

    def get(self, identity: str) -> str | None:
        return self._revisions.get(identity)

    def set(self, identity: str, revision: str) -> None:
        if not revision:
            raise ValueError(f"Empty revision for {identity}")
        self._revisions[identity] = revision

    def forget(self, identity: str) -> None:
        self._revisions.pop(identity, None)

    def contains(self, identity: str) -> bool:
        return identity in self._revisions

    def snapshot(self) -> dict[str, str]:
        """Copy of every known revision."""
        return dict(self._revisions)

    def restore(self, snapshot: dict[str, str]) -> None:
        """Replace all revisions with a previous snapshot."""
        self._revisions = dict(snapshot)

    def clear(self) -> None:
        self._revisions.clear()

    def __len__(self) -> int:
        return len(self._revisions)
