"""Bulk synchronizer: one batched write per flush.

The synchronizer turns the tracker's change set into a single batched
request, submits it exactly once and applies the full response. A flush
that fails in transit changes nothing locally; the submitted identities
are remembered as in doubt and re-read from the store before the next
flush resubmits anything.

With ``force`` the store applies stale writes too. Every accepted forced
write is re-read, and one that left conflicting revisions behind is
reported as a conflict and handed to the resolver.
"""

import asyncio
import logging
import time

from couchodm.core.config import FlushConfig
from couchodm.core.constants import (
    CONFLICT_ERROR,
    ConflictPolicy,
    LifecycleState,
    Outcome,
    ResolutionAction,
)
from couchodm.core.exceptions import NetworkFailure
from couchodm.models.batch import (
    BatchRequest,
    BatchResultEntry,
    ChangeEntry,
    RemoteDocument,
    correlate_results,
)
from couchodm.models.report import FlushReport, ResolutionOutcome
from couchodm.store.base import AsyncDocumentStore, DocumentStore
from couchodm.uow.resolver import ConflictResolver
from couchodm.uow.tracker import UnitOfWorkTracker


logger = logging.getLogger(__name__)


class BulkSynchronizer:
    """Flushes a tracker's pending changes to a document store."""

    def __init__(
        self,
        tracker: UnitOfWorkTracker,
        store: DocumentStore | AsyncDocumentStore,
        resolver: ConflictResolver | None = None,
        config: FlushConfig | None = None,
    ) -> None:
        """Initialize the synchronizer.

        Args:
            tracker: The session's tracker.
            store: Blocking store for ``flush``, awaitable store for ``aflush``.
            resolver: Conflict resolver, built from ``config`` if omitted.
            config: Flush configuration.
        """
        self._tracker = tracker
        self._store = store
        self._config = config or FlushConfig()
        self._resolver = resolver or ConflictResolver(
            tracker,
            store,
            default_policy=self._config.conflict_policy,
            force=self._config.force,
        )
        self._in_doubt: set[str] = set()

    @property
    def resolver(self) -> ConflictResolver:
        return self._resolver

    @property
    def in_doubt(self) -> frozenset[str]:
        """Identities whose last submission may or may not have been applied."""
        return frozenset(self._in_doubt)

    # -------------------------------------------------------------------------
    # Flush
    # -------------------------------------------------------------------------

    def flush(self, policy: ConflictPolicy | str | None = None) -> FlushReport:
        """Synchronize every pending change in one batched request.

        Args:
            policy: Conflict policy override for this flush.

        Returns:
            The flush report.

        Raises:
            NetworkFailure: If the batched request or reconciliation reads
                did not complete. Nothing is changed locally by the failed
                request; writes reconciled before it are counted in the
                error's ``reconciled`` detail.
            ConflictResolutionError: If the policy cannot be applied.
        """
        store = self._require_store(DocumentStore)
        effective = self._resolver.effective_policy(policy)
        report = FlushReport()
        start = time.perf_counter()

        held: list[ChangeEntry] = []
        candidates = self._reconcile_candidates()
        if candidates:
            remotes = [store.get(entry.identity) for entry in candidates]
            held = self._reconcile(candidates, remotes, report)

        changes = self._pending_changes(held)
        if not changes and not held:
            logger.debug("Flush skipped: no pending changes")
            return report

        conflicts = list(held)
        if changes:
            request = self._build_request(changes)
            report.requests += 1
            try:
                results = store.bulk_write(request)
                pairs = correlate_results(changes, results)
                if request.force:
                    remotes_after = {
                        identity: store.get(identity) for identity in self._forced_reads(pairs)
                    }
                    pairs = self._flag_forced_conflicts(pairs, remotes_after)
            except NetworkFailure as e:
                self._mark_in_doubt(changes, e, report)
                raise
            conflicts.extend(self._apply(pairs, report))

        if conflicts:
            report.resolutions = self._resolver.resolve(conflicts, effective)
            self._track_interrupted(report.resolutions)

        self._log_report(report, start)
        return report

    async def aflush(self, policy: ConflictPolicy | str | None = None) -> FlushReport:
        """Awaitable ``flush``.

        Cancelling the flush before the response arrives leaves the tracker
        untouched and marks the change set in doubt.
        """
        store = self._require_store(AsyncDocumentStore)
        effective = self._resolver.effective_policy(policy)
        report = FlushReport()
        start = time.perf_counter()

        held: list[ChangeEntry] = []
        candidates = self._reconcile_candidates()
        if candidates:
            remotes = [await store.get(entry.identity) for entry in candidates]
            held = self._reconcile(candidates, remotes, report)

        changes = self._pending_changes(held)
        if not changes and not held:
            logger.debug("Flush skipped: no pending changes")
            return report

        conflicts = list(held)
        if changes:
            request = self._build_request(changes)
            report.requests += 1
            try:
                results = await store.bulk_write(request)
                pairs = correlate_results(changes, results)
                if request.force:
                    remotes_after = {
                        identity: await store.get(identity)
                        for identity in self._forced_reads(pairs)
                    }
                    pairs = self._flag_forced_conflicts(pairs, remotes_after)
            except (NetworkFailure, asyncio.CancelledError) as e:
                self._mark_in_doubt(changes, e, report)
                raise
            conflicts.extend(self._apply(pairs, report))

        if conflicts:
            report.resolutions = await self._resolver.aresolve(conflicts, effective)
            self._track_interrupted(report.resolutions)

        self._log_report(report, start)
        return report

    # -------------------------------------------------------------------------
    # Steps
    # -------------------------------------------------------------------------

    def _pending_changes(self, held: list[ChangeEntry]) -> list[ChangeEntry]:
        held_identities = {entry.identity for entry in held}
        return [
            entry
            for entry in self._tracker.compute_change_set()
            if entry.identity not in held_identities
        ]

    def _build_request(self, changes: list[ChangeEntry]) -> BatchRequest:
        logger.info(f"Flushing {len(changes)} change(s) in one batched request")
        return BatchRequest(
            operations=tuple(entry.to_operation() for entry in changes),
            force=self._config.force,
        )

    def _apply(
        self,
        pairs: list[tuple[ChangeEntry, BatchResultEntry]],
        report: FlushReport,
    ) -> list[ChangeEntry]:
        """Apply a complete, correlated response. Returns conflicted entries."""
        conflicts: list[ChangeEntry] = []
        for entry, result in pairs:
            report.record(entry, result)
            pending = self._tracker.apply_result(entry, result)
            self._in_doubt.discard(entry.identity)
            if pending is not None and pending.outcome == Outcome.CONFLICT:
                conflicts.append(entry)
            elif pending is not None:
                logger.warning(f"Write rejected for {entry.identity}: {result.reason}")
        return conflicts

    def _mark_in_doubt(
        self,
        changes: list[ChangeEntry],
        error: BaseException,
        report: FlushReport,
    ) -> None:
        self._in_doubt.update(entry.identity for entry in changes)
        logger.warning(
            f"Flush of {len(changes)} change(s) did not complete ({type(error).__name__}); "
            "local state unchanged"
        )
        if report.reconciled:
            logger.warning(
                f"{report.reconciled} in-doubt write(s) were reconciled before the failure"
            )
            if isinstance(error, NetworkFailure):
                error.details["reconciled"] = report.reconciled

    def _track_interrupted(self, resolutions: list[ResolutionOutcome]) -> None:
        for outcome in resolutions:
            if outcome.action == ResolutionAction.RETRY_INTERRUPTED:
                self._in_doubt.add(outcome.identity)

    # -------------------------------------------------------------------------
    # Forced writes
    # -------------------------------------------------------------------------

    @staticmethod
    def _forced_reads(pairs: list[tuple[ChangeEntry, BatchResultEntry]]) -> list[str]:
        """Identities whose accepted forced write may have left conflicts."""
        return [
            entry.identity
            for entry, result in pairs
            if result.is_accepted and entry.state != LifecycleState.REMOVED
        ]

    def _flag_forced_conflicts(
        self,
        pairs: list[tuple[ChangeEntry, BatchResultEntry]],
        remotes: dict[str, RemoteDocument | None],
    ) -> list[tuple[ChangeEntry, BatchResultEntry]]:
        """Turn accepted forced writes that left conflicting revisions into conflicts."""
        flagged = []
        for entry, result in pairs:
            remote = remotes.get(entry.identity)
            if remote is not None and remote.conflicts:
                result = self._forced_conflict(entry, remote)
            flagged.append((entry, result))
        return flagged

    @staticmethod
    def _forced_conflict(entry: ChangeEntry, remote: RemoteDocument) -> BatchResultEntry:
        logger.warning(
            f"Forced write of {entry.identity} left conflicting revision(s): "
            f"{', '.join(remote.conflicts)}"
        )
        return BatchResultEntry(
            identity=entry.identity,
            outcome=Outcome.CONFLICT,
            revision=remote.revision,
            reason=f"{CONFLICT_ERROR}: forced write left {len(remote.conflicts)} "
            "conflicting revision(s)",
        )

    # -------------------------------------------------------------------------
    # Reconciliation of in-doubt submissions
    # -------------------------------------------------------------------------

    def _reconcile_candidates(self) -> list[ChangeEntry]:
        if not self._in_doubt or not self._config.reconcile_in_doubt:
            return []
        pending = [
            entry
            for entry in self._tracker.compute_change_set()
            if entry.identity in self._in_doubt
        ]
        # Identities no longer pending need no reconciliation
        self._in_doubt.intersection_update(entry.identity for entry in pending)
        return pending

    def _reconcile(
        self,
        candidates: list[ChangeEntry],
        remotes: list[RemoteDocument | None],
        report: FlushReport,
    ) -> list[ChangeEntry]:
        """Adopt writes that reached the store before a lost response.

        Returns:
            Entries whose forced write was applied but left conflicting
            revisions. They are held back from the next batch and handed
            to the conflict resolver.
        """
        held: list[ChangeEntry] = []
        for entry, remote in zip(candidates, remotes):
            self._in_doubt.discard(entry.identity)
            if self._unacknowledged_create(entry, remote):
                # The create landed; delete it at the revision it got
                self._tracker.revisions.set(entry.identity, remote.revision)
                report.reconciled += 1
                logger.info(f"Reconciled {entry.identity}: earlier create was applied")
            elif not self._already_applied(entry, remote):
                continue
            elif self._config.force and remote is not None and remote.conflicts:
                result = self._forced_conflict(entry, remote)
                report.record(entry, result)
                self._tracker.apply_result(entry, result)
                held.append(entry)
            else:
                revision = remote.revision if remote is not None else "deleted"
                self._tracker.apply_result(
                    entry, BatchResultEntry.accepted(entry.identity, revision)
                )
                report.reconciled += 1
                logger.info(f"Reconciled {entry.identity}: earlier submission was applied")
        return held

    @staticmethod
    def _unacknowledged_create(entry: ChangeEntry, remote: RemoteDocument | None) -> bool:
        """A removal of an entity whose create may have been applied."""
        return (
            entry.state == LifecycleState.REMOVED
            and entry.expected_revision is None
            and remote is not None
            and remote.fields == entry.payload
        )

    @staticmethod
    def _already_applied(entry: ChangeEntry, remote: RemoteDocument | None) -> bool:
        if entry.state == LifecycleState.REMOVED:
            return remote is None
        if remote is None:
            return False
        if remote.revision == entry.expected_revision:
            return False
        return remote.fields == entry.payload

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _log_report(self, report: FlushReport, start: float) -> None:
        duration_ms = (time.perf_counter() - start) * 1000
        logger.info(
            f"Flush finished in {duration_ms:.1f}ms: {report.accepted} accepted, "
            f"{report.conflicted} conflicted, {report.rejected} rejected"
        )

    def _require_store(self, kind: type) -> DocumentStore | AsyncDocumentStore:
        if not isinstance(self._store, kind):
            raise TypeError(
                f"{kind.__name__} required, synchronizer has {type(self._store).__name__}"
            )
        return self._store
