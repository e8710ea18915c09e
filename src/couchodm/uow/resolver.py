"""Conflict resolution for entries a batched write reported as CONFLICT.

Resolution runs in three steps so that nothing is changed until every
decision is known:
1. read the current remote document of every conflicted identity
2. decide per entry (FAIL, reload, purge or resubmit), calling the manual
   callback where configured. A callback that raises or returns an
   unusable value fails only its own entry
3. apply reloads and purges to the tracker and resubmit every remaining
   entry in one batched request, exactly once
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable

from couchodm.core.constants import (
    ConflictPolicy,
    LifecycleState,
    ManualChoice,
    Outcome,
    ResolutionAction,
    ResolutionDecision,
)
from couchodm.core.exceptions import (
    ConflictError,
    ConflictResolutionError,
    NetworkFailure,
    RejectedError,
)
from couchodm.models.batch import (
    BatchRequest,
    BatchResultEntry,
    ChangeEntry,
    RemoteDocument,
    correlate_results,
)
from couchodm.models.report import ConflictContext, ResolutionOutcome
from couchodm.store.base import AsyncDocumentStore, DocumentStore
from couchodm.uow.tracker import UnitOfWorkTracker


logger = logging.getLogger(__name__)

ManualCallback = Callable[[ConflictContext], "ManualChoice | dict[str, Any]"]


@dataclass
class _Decision:
    """Planned handling of one conflicted entry."""

    entry: ChangeEntry
    kind: ResolutionDecision
    remote: RemoteDocument | None = None
    merged: dict[str, Any] | None = None
    reason: str | None = None
    error: ConflictResolutionError | None = None


class ConflictResolver:
    """Applies a conflict policy to conflicted change entries.

    Policies:
    - FAIL: leave the entity as it was before the flush and report it
    - FIRST_WRITE_WINS: discard the local change and reload the remote copy.
      After a forced write the revision it replaced is written back instead
    - LAST_WRITE_WINS: resubmit the local payload against the current
      remote revision, once
    - MANUAL: ask a callback for KEEP_LOCAL, KEEP_REMOTE or a merged document
    """

    def __init__(
        self,
        tracker: UnitOfWorkTracker,
        store: DocumentStore | AsyncDocumentStore,
        callback: ManualCallback | None = None,
        default_policy: ConflictPolicy = ConflictPolicy.FAIL,
        force: bool = False,
    ) -> None:
        """Initialize the resolver.

        Args:
            tracker: The session's tracker.
            store: Store used to read remote state and resubmit.
            callback: Callback for the MANUAL policy.
            default_policy: Policy used when none is passed to ``resolve``.
            force: Force flag for resubmission batches.
        """
        self._tracker = tracker
        self._store = store
        self._callback = callback
        self._default_policy = ConflictPolicy(default_policy)
        self._force = force

    @property
    def default_policy(self) -> ConflictPolicy:
        return self._default_policy

    def set_callback(self, callback: ManualCallback | None) -> None:
        """Register the MANUAL policy callback."""
        self._callback = callback

    def effective_policy(self, policy: ConflictPolicy | str | None = None) -> ConflictPolicy:
        """Resolve the policy to use and check it can be applied.

        Raises:
            ConflictResolutionError: If MANUAL is requested without a callback.
        """
        effective = ConflictPolicy(policy) if policy is not None else self._default_policy
        if effective == ConflictPolicy.MANUAL and self._callback is None:
            raise ConflictResolutionError(
                "MANUAL conflict policy requires a registered callback",
                policy=effective.value,
            )
        return effective

    # -------------------------------------------------------------------------
    # Entry points
    # -------------------------------------------------------------------------

    def resolve(
        self,
        entries: list[ChangeEntry],
        policy: ConflictPolicy | str | None = None,
    ) -> list[ResolutionOutcome]:
        """Resolve conflicted entries with a blocking store.

        Args:
            entries: Change entries the store answered with CONFLICT.
            policy: Policy override for this call.

        Returns:
            One outcome per entry, in input order.
        """
        effective = self.effective_policy(policy)
        if not entries:
            return []
        if effective == ConflictPolicy.FAIL:
            return [self._fail(entry) for entry in entries]

        store = self._require_store(DocumentStore)
        remotes: dict[str, RemoteDocument | None] = {}
        overwritten: dict[str, RemoteDocument | None] = {}
        unread: dict[str, str] = {}
        for entry in entries:
            try:
                remote = store.get(entry.identity)
                remotes[entry.identity] = remote
                if self._wants_overwritten(remote, effective):
                    overwritten[entry.identity] = store.get(entry.identity, remote.conflicts[-1])
            except NetworkFailure as e:
                unread[entry.identity] = str(e)

        decisions = self._decide(entries, remotes, overwritten, unread, effective)
        outcomes, resubmit = self._apply_decisions(decisions)

        if resubmit:
            request = self._build_request(resubmit)
            try:
                results = store.bulk_write(request)
                pairs = correlate_results(resubmit, results)
            except NetworkFailure as e:
                outcomes.update(self._interrupted(resubmit, e))
            else:
                outcomes.update(self._apply_retry(pairs))

        return self._ordered(entries, outcomes, effective)

    async def aresolve(
        self,
        entries: list[ChangeEntry],
        policy: ConflictPolicy | str | None = None,
    ) -> list[ResolutionOutcome]:
        """Resolve conflicted entries with an awaitable store."""
        effective = self.effective_policy(policy)
        if not entries:
            return []
        if effective == ConflictPolicy.FAIL:
            return [self._fail(entry) for entry in entries]

        store = self._require_store(AsyncDocumentStore)
        remotes: dict[str, RemoteDocument | None] = {}
        overwritten: dict[str, RemoteDocument | None] = {}
        unread: dict[str, str] = {}
        for entry in entries:
            try:
                remote = await store.get(entry.identity)
                remotes[entry.identity] = remote
                if self._wants_overwritten(remote, effective):
                    overwritten[entry.identity] = await store.get(
                        entry.identity, remote.conflicts[-1]
                    )
            except NetworkFailure as e:
                unread[entry.identity] = str(e)

        decisions = self._decide(entries, remotes, overwritten, unread, effective)
        outcomes, resubmit = self._apply_decisions(decisions)

        if resubmit:
            request = self._build_request(resubmit)
            try:
                results = await store.bulk_write(request)
                pairs = correlate_results(resubmit, results)
            except NetworkFailure as e:
                outcomes.update(self._interrupted(resubmit, e))
            else:
                outcomes.update(self._apply_retry(pairs))

        return self._ordered(entries, outcomes, effective)

    # -------------------------------------------------------------------------
    # Decisions
    # -------------------------------------------------------------------------

    def _wants_overwritten(self, remote: RemoteDocument | None, policy: ConflictPolicy) -> bool:
        """Whether the revision a forced write replaced must be read too."""
        if not self._force or remote is None or not remote.conflicts:
            return False
        return policy in (ConflictPolicy.FIRST_WRITE_WINS, ConflictPolicy.MANUAL)

    def _decide(
        self,
        entries: list[ChangeEntry],
        remotes: dict[str, RemoteDocument | None],
        overwritten: dict[str, RemoteDocument | None],
        unread: dict[str, str],
        policy: ConflictPolicy,
    ) -> list[_Decision]:
        decisions = []
        for entry in entries:
            if entry.identity in unread:
                decisions.append(
                    _Decision(entry, ResolutionDecision.FAIL, reason=unread[entry.identity])
                )
                continue

            remote = remotes[entry.identity]
            replaced = overwritten.get(entry.identity)
            if policy == ConflictPolicy.FIRST_WRITE_WINS:
                decisions.append(self._keep_remote(entry, remote, replaced))
            elif policy == ConflictPolicy.LAST_WRITE_WINS:
                decisions.append(self._keep_local(entry, remote))
            else:
                decisions.append(self._ask_callback(entry, remote, replaced))
        return decisions

    def _keep_remote(
        self,
        entry: ChangeEntry,
        remote: RemoteDocument | None,
        replaced: RemoteDocument | None = None,
    ) -> _Decision:
        if remote is None:
            return _Decision(entry, ResolutionDecision.PURGE)
        if replaced is not None:
            # The winning revision is our own forced write; restore the one it replaced
            return _Decision(
                entry, ResolutionDecision.RESUBMIT, remote=remote, merged=replaced.fields
            )
        return _Decision(entry, ResolutionDecision.RELOAD, remote=remote)

    def _keep_local(
        self,
        entry: ChangeEntry,
        remote: RemoteDocument | None,
        merged: dict[str, Any] | None = None,
    ) -> _Decision:
        if entry.state == LifecycleState.REMOVED and remote is None and merged is None:
            return _Decision(entry, ResolutionDecision.PURGE)
        return _Decision(entry, ResolutionDecision.RESUBMIT, remote=remote, merged=merged)

    def _ask_callback(
        self,
        entry: ChangeEntry,
        remote: RemoteDocument | None,
        replaced: RemoteDocument | None = None,
    ) -> _Decision:
        record = self._tracker.get_record(entry.identity)
        context = ConflictContext(
            identity=entry.identity,
            entity=record.entity,
            local=dict(entry.payload),
            local_state=entry.state,
            remote=remote,
            overwritten=replaced,
        )
        try:
            choice = self._callback(context)
        except Exception as e:
            logger.error(f"Conflict callback failed for {entry.identity}: {e}")
            return self._callback_failure(entry, f"Conflict callback failed: {e}")

        if isinstance(choice, dict):
            return self._keep_local(entry, remote, merged=choice)
        if choice == ManualChoice.KEEP_LOCAL:
            return self._keep_local(entry, remote)
        if choice == ManualChoice.KEEP_REMOTE:
            return self._keep_remote(entry, remote, replaced)

        message = f"Conflict callback returned an unusable value: {choice!r}"
        logger.error(f"{message} (identity={entry.identity})")
        return self._callback_failure(entry, message)

    def _callback_failure(self, entry: ChangeEntry, message: str) -> _Decision:
        error = ConflictResolutionError(
            message,
            identity=entry.identity,
            policy=ConflictPolicy.MANUAL.value,
        )
        return _Decision(entry, ResolutionDecision.FAIL, error=error)

    # -------------------------------------------------------------------------
    # Application
    # -------------------------------------------------------------------------

    def _apply_decisions(
        self,
        decisions: list[_Decision],
    ) -> tuple[dict[str, ResolutionOutcome], list[ChangeEntry]]:
        outcomes: dict[str, ResolutionOutcome] = {}
        resubmit: list[ChangeEntry] = []

        for decision in decisions:
            entry = decision.entry
            identity = entry.identity

            if decision.kind == ResolutionDecision.FAIL:
                outcomes[identity] = self._fail(entry, decision.reason, decision.error)
            elif decision.kind == ResolutionDecision.PURGE:
                record = self._tracker.detach(identity)
                outcomes[identity] = ResolutionOutcome(
                    identity=identity,
                    action=ResolutionAction.PURGED,
                    final_state=record.state,
                )
                logger.info(f"Conflict on {identity}: remote deleted, local copy detached")
            elif decision.kind == ResolutionDecision.RELOAD:
                remote = decision.remote
                self._tracker.reload(identity, remote.fields, remote.revision)
                outcomes[identity] = ResolutionOutcome(
                    identity=identity,
                    action=ResolutionAction.RELOADED,
                    final_state=LifecycleState.MANAGED,
                    revision=remote.revision,
                )
                logger.info(f"Conflict on {identity}: reloaded remote revision {remote.revision}")
            else:
                resubmit.append(self._resubmission(decision))

        return outcomes, resubmit

    def _resubmission(self, decision: _Decision) -> ChangeEntry:
        entry = decision.entry
        payload = entry.payload
        state = entry.state

        if decision.merged is not None:
            record = self._tracker.get_record(entry.identity)
            self._tracker.revive(entry.identity)
            self._tracker.serializer.hydrate(record.entity, decision.merged)
            payload = self._tracker.serializer.to_document(record.entity)
            state = LifecycleState.DIRTY

        remote = decision.remote
        if remote is None:
            # Remote copy is gone; recreate it
            return ChangeEntry(entry.identity, LifecycleState.NEW, payload)
        if state == LifecycleState.NEW:
            state = LifecycleState.DIRTY
        return ChangeEntry(entry.identity, state, payload, expected_revision=remote.revision)

    def _build_request(self, resubmit: list[ChangeEntry]) -> BatchRequest:
        logger.info(f"Resubmitting {len(resubmit)} conflicted entr(ies) against remote revisions")
        return BatchRequest(
            operations=tuple(c.to_operation() for c in resubmit),
            force=self._force,
        )

    def _apply_retry(
        self,
        pairs: list[tuple[ChangeEntry, BatchResultEntry]],
    ) -> dict[str, ResolutionOutcome]:
        outcomes: dict[str, ResolutionOutcome] = {}
        for entry, result in pairs:
            self._tracker.apply_result(entry, result)
            identity = entry.identity
            state = self._tracker.state_of(identity) if identity in self._tracker else None

            if result.outcome == Outcome.ACCEPTED:
                outcomes[identity] = ResolutionOutcome(
                    identity=identity,
                    action=ResolutionAction.RESUBMITTED,
                    final_state=state,
                    revision=result.revision,
                )
            elif result.outcome == Outcome.CONFLICT:
                outcomes[identity] = ResolutionOutcome(
                    identity=identity,
                    action=ResolutionAction.RETRY_CONFLICTED,
                    final_state=state,
                    revision=self._tracker.revision_of(identity),
                    error=ConflictError(
                        f"Resubmission of {identity} conflicted again",
                        identity=identity,
                        expected_revision=entry.expected_revision,
                    ),
                )
            else:
                outcomes[identity] = ResolutionOutcome(
                    identity=identity,
                    action=ResolutionAction.RETRY_REJECTED,
                    final_state=state,
                    revision=self._tracker.revision_of(identity),
                    error=RejectedError(
                        f"Resubmission of {identity} rejected: {result.reason}",
                        identity=identity,
                        reason=result.reason,
                    ),
                )
        return outcomes

    def _interrupted(
        self,
        resubmit: list[ChangeEntry],
        error: NetworkFailure,
    ) -> dict[str, ResolutionOutcome]:
        logger.warning(f"Conflict resubmission interrupted: {error}")
        return {
            entry.identity: ResolutionOutcome(
                identity=entry.identity,
                action=ResolutionAction.RETRY_INTERRUPTED,
                final_state=self._tracker.state_of(entry.identity),
                revision=self._tracker.revision_of(entry.identity),
                error=ConflictError(
                    f"Resubmission of {entry.identity} did not complete: {error}",
                    identity=entry.identity,
                    expected_revision=entry.expected_revision,
                ),
            )
            for entry in resubmit
        }

    def _fail(
        self,
        entry: ChangeEntry,
        reason: str | None = None,
        error: ConflictResolutionError | None = None,
    ) -> ResolutionOutcome:
        if error is None:
            error = ConflictError(
                f"Revision conflict on {entry.identity}",
                identity=entry.identity,
                expected_revision=entry.expected_revision,
                details={"reason": reason} if reason else None,
            )
        return ResolutionOutcome(
            identity=entry.identity,
            action=ResolutionAction.FAILED,
            final_state=self._tracker.state_of(entry.identity),
            revision=self._tracker.revision_of(entry.identity),
            error=error,
        )

    def _ordered(
        self,
        entries: list[ChangeEntry],
        outcomes: dict[str, ResolutionOutcome],
        policy: ConflictPolicy,
    ) -> list[ResolutionOutcome]:
        ordered = [outcomes[entry.identity] for entry in entries]
        resolved = sum(1 for o in ordered if o.resolved)
        logger.info(
            f"Resolved {resolved}/{len(ordered)} conflict(s) with policy {policy.value}"
        )
        return ordered

    def _require_store(self, kind: type) -> Any:
        if not isinstance(self._store, kind):
            raise TypeError(
                f"{kind.__name__} required, resolver has {type(self._store).__name__}"
            )
        return self._store
