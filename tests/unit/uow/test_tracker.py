"""Unit tests for UnitOfWorkTracker."""

import pytest

from couchodm.core.constants import LifecycleState, OperationType
from couchodm.core.exceptions import (
    DuplicateIdentityError,
    InvalidStateTransitionError,
    UnknownEntityError,
)
from couchodm.models.batch import BatchResultEntry
from couchodm.uow.tracker import generate_identity

from conftest import Article


class TestRegistration:
    """Tests for register()."""

    def test_register_without_revision_is_new(self, tracker):
        """Test entities registered without a revision start NEW."""
        identity = tracker.register({"title": "a"})

        assert identity == "doc-0001"
        assert tracker.state_of(identity) == LifecycleState.NEW
        assert tracker.revision_of(identity) is None

    def test_register_with_revision_is_managed(self, tracker):
        """Test entities registered with a revision start MANAGED."""
        tracker.register({"title": "a"}, identity="a", initial_revision="1-abc")

        assert tracker.state_of("a") == LifecycleState.MANAGED
        assert tracker.revision_of("a") == "1-abc"
        assert tracker.get_record("a").snapshot == {"title": "a"}

    def test_duplicate_identity(self, tracker):
        """Test registering the same identity twice fails."""
        tracker.register({"title": "a"}, identity="a")

        with pytest.raises(DuplicateIdentityError) as exc_info:
            tracker.register({"title": "b"}, identity="a")

        assert exc_info.value.identity == "a"

    def test_duplicate_entity_object(self, tracker):
        """Test registering the same object twice fails."""
        entity = {"title": "a"}
        tracker.register(entity, identity="a")

        with pytest.raises(DuplicateIdentityError):
            tracker.register(entity, identity="b")

    def test_identity_of(self, tracker):
        """Test looking up identity by object."""
        entity = Article(title="x")
        identity = tracker.register(entity)

        assert tracker.identity_of(entity) == identity
        assert tracker.identity_of(Article(title="x")) is None

    def test_generated_identities_are_unique(self):
        """Test the default identity generator."""
        assert len({generate_identity() for _ in range(100)}) == 100


class TestTransitions:
    """Tests for lifecycle transitions."""

    def test_mark_dirty_managed(self, tracker):
        """Test MANAGED becomes DIRTY."""
        tracker.register({"title": "a"}, identity="a", initial_revision="1-a")
        tracker.mark_dirty("a")

        assert tracker.state_of("a") == LifecycleState.DIRTY

    def test_mark_dirty_new_is_noop(self, tracker):
        """Test NEW stays NEW."""
        tracker.register({"title": "a"}, identity="a")
        tracker.mark_dirty("a")

        assert tracker.state_of("a") == LifecycleState.NEW

    def test_mark_dirty_twice(self, tracker):
        """Test DIRTY stays DIRTY."""
        tracker.register({"title": "a"}, identity="a", initial_revision="1-a")
        tracker.mark_dirty("a")
        tracker.mark_dirty("a")

        assert tracker.state_of("a") == LifecycleState.DIRTY

    def test_mark_dirty_unknown(self, tracker):
        """Test marking an untracked identity fails."""
        with pytest.raises(UnknownEntityError):
            tracker.mark_dirty("missing")

    def test_mark_dirty_removed(self, tracker):
        """Test a removed entity cannot be modified."""
        tracker.register({"title": "a"}, identity="a", initial_revision="1-a")
        tracker.mark_removed("a")

        with pytest.raises(InvalidStateTransitionError):
            tracker.mark_dirty("a")

    @pytest.mark.parametrize("dirty", [False, True])
    def test_mark_removed_persisted(self, tracker, dirty):
        """Test MANAGED and DIRTY entities become REMOVED."""
        tracker.register({"title": "a"}, identity="a", initial_revision="1-a")
        if dirty:
            tracker.mark_dirty("a")
        tracker.mark_removed("a")

        assert tracker.state_of("a") == LifecycleState.REMOVED

    def test_mark_removed_unsaved_new_is_purged(self, tracker):
        """Test removing a never-saved entity just forgets it."""
        tracker.register({"title": "a"}, identity="a")
        tracker.mark_removed("a")

        assert "a" not in tracker
        assert tracker.compute_change_set() == []

    def test_mark_removed_new_that_may_be_stored(self, tracker):
        """Test a NEW entity with an unanswered create is kept for deletion."""
        tracker.register({"title": "a"}, identity="a")

        tracker.mark_removed("a", maybe_stored=True)

        assert tracker.state_of("a") == LifecycleState.REMOVED
        [change] = tracker.compute_change_set()
        assert change.operation == OperationType.DELETE
        assert change.payload == {"title": "a"}
        assert change.expected_revision is None

    def test_mark_removed_twice(self, tracker):
        """Test removing twice is harmless."""
        tracker.register({"title": "a"}, identity="a", initial_revision="1-a")
        tracker.mark_removed("a")
        tracker.mark_removed("a")

        assert tracker.state_of("a") == LifecycleState.REMOVED

    def test_detach(self, tracker):
        """Test detaching ends tracking."""
        entity = {"title": "a"}
        tracker.register(entity, identity="a", initial_revision="1-a")
        record = tracker.detach("a")

        assert record.state == LifecycleState.DETACHED
        assert "a" not in tracker
        assert tracker.identity_of(entity) is None
        assert tracker.revision_of("a") is None

    def test_revive(self, tracker):
        """Test a removal can be cancelled."""
        tracker.register({"title": "a"}, identity="a", initial_revision="1-a")
        tracker.mark_removed("a")
        tracker.revive("a")

        assert tracker.state_of("a") == LifecycleState.DIRTY

    def test_reload(self, tracker):
        """Test reload replaces local state and marks MANAGED."""
        entity = Article(title="local")
        tracker.register(entity, identity="a", initial_revision="1-a")
        entity.title = "changed"
        tracker.mark_dirty("a")

        tracker.reload("a", {"title": "remote", "body": "b", "tags": []}, "2-b")

        assert entity.title == "remote"
        assert tracker.state_of("a") == LifecycleState.MANAGED
        assert tracker.revision_of("a") == "2-b"
        assert tracker.compute_change_set() == []

    def test_clear(self, tracker):
        """Test clear drops every record."""
        tracker.register({"title": "a"}, identity="a", initial_revision="1-a")
        tracker.register({"title": "b"})
        tracker.clear()

        assert len(tracker) == 0
        assert len(tracker.revisions) == 0


class TestChangeSet:
    """Tests for compute_change_set()."""

    def test_empty(self, tracker):
        """Test no records means no changes."""
        assert tracker.compute_change_set() == []

    def test_clean_managed_excluded(self, tracker):
        """Test unchanged managed entities are not written."""
        tracker.register({"title": "a"}, identity="a", initial_revision="1-a")

        assert tracker.compute_change_set() == []

    def test_registration_order(self, tracker):
        """Test entries come back in registration order."""
        tracker.register({"n": 1}, identity="z")
        tracker.register({"n": 2}, identity="m", initial_revision="1-m")
        tracker.register({"n": 3}, identity="a")
        tracker.mark_dirty("m")

        assert [c.identity for c in tracker.compute_change_set()] == ["z", "m", "a"]

    def test_operations_and_revisions(self, tracker):
        """Test each pending state maps to its operation."""
        tracker.register({"n": 1}, identity="new")
        tracker.register({"n": 2}, identity="dirty", initial_revision="1-d")
        tracker.register({"n": 3}, identity="gone", initial_revision="4-g")
        tracker.mark_dirty("dirty")
        tracker.mark_removed("gone")

        changes = {c.identity: c for c in tracker.compute_change_set()}

        assert changes["new"].operation == OperationType.CREATE
        assert changes["new"].expected_revision is None
        assert changes["dirty"].operation == OperationType.UPDATE
        assert changes["dirty"].expected_revision == "1-d"
        assert changes["gone"].operation == OperationType.DELETE
        assert changes["gone"].expected_revision == "4-g"

    def test_snapshot_diff_detected_without_mutating(self, tracker):
        """Test modified managed entities are reported DIRTY but left MANAGED."""
        entity = {"title": "a"}
        tracker.register(entity, identity="a", initial_revision="1-a")
        entity["title"] = "b"

        changes = tracker.compute_change_set()

        assert len(changes) == 1
        assert changes[0].state == LifecycleState.DIRTY
        assert changes[0].payload == {"title": "b"}
        assert tracker.state_of("a") == LifecycleState.MANAGED

    def test_payload_is_a_copy(self, tracker):
        """Test later mutation does not change a computed payload."""
        entity = Article(title="a", tags=["x"])
        tracker.register(entity, identity="a")
        change = tracker.compute_change_set()[0]
        entity.tags.append("y")

        assert change.payload["tags"] == ["x"]


class TestApplyResult:
    """Tests for apply_result()."""

    def test_accepted_create(self, tracker):
        """Test an accepted create becomes MANAGED with the new revision."""
        tracker.register({"title": "a"}, identity="a")
        change = tracker.compute_change_set()[0]

        pending = tracker.apply_result(change, BatchResultEntry.accepted("a", "1-x"))

        assert pending is None
        assert tracker.state_of("a") == LifecycleState.MANAGED
        assert tracker.revision_of("a") == "1-x"
        assert tracker.get_record("a").snapshot == {"title": "a"}

    def test_accepted_delete_purges(self, tracker):
        """Test an accepted delete forgets the entity."""
        tracker.register({"title": "a"}, identity="a", initial_revision="1-a")
        tracker.mark_removed("a")
        change = tracker.compute_change_set()[0]

        tracker.apply_result(change, BatchResultEntry.accepted("a", "2-a"))

        assert "a" not in tracker
        assert tracker.revision_of("a") is None

    def test_conflict_leaves_state(self, tracker):
        """Test a conflict keeps the pre-flush state and revision."""
        tracker.register({"title": "a"}, identity="a", initial_revision="1-a")
        tracker.mark_dirty("a")
        change = tracker.compute_change_set()[0]

        pending = tracker.apply_result(change, BatchResultEntry.conflict("a"))

        assert pending is not None
        assert tracker.state_of("a") == LifecycleState.DIRTY
        assert tracker.revision_of("a") == "1-a"

    def test_conflict_on_diff_detected_marks_dirty(self, tracker):
        """Test an entity submitted by snapshot diff is left DIRTY on conflict."""
        entity = {"title": "a"}
        tracker.register(entity, identity="a", initial_revision="1-a")
        entity["title"] = "b"
        change = tracker.compute_change_set()[0]

        tracker.apply_result(change, BatchResultEntry.conflict("a"))

        assert tracker.state_of("a") == LifecycleState.DIRTY

    def test_rejected_new_stays_new(self, tracker):
        """Test a rejected create stays NEW."""
        tracker.register({"title": "a"}, identity="a")
        change = tracker.compute_change_set()[0]

        pending = tracker.apply_result(change, BatchResultEntry.rejected("a", "forbidden: no"))

        assert pending.reason == "forbidden: no"
        assert tracker.state_of("a") == LifecycleState.NEW

    def test_snapshot_is_submitted_payload(self, tracker):
        """Test changes made while a flush was in flight stay pending."""
        entity = {"title": "a"}
        tracker.register(entity, identity="a")
        change = tracker.compute_change_set()[0]
        entity["title"] = "edited during flush"

        tracker.apply_result(change, BatchResultEntry.accepted("a", "1-x"))

        pending = tracker.compute_change_set()
        assert [c.identity for c in pending] == ["a"]
        assert pending[0].expected_revision == "1-x"

    def test_removed_during_flush_stays_removed(self, tracker):
        """Test a removal requested while an update was in flight survives."""
        tracker.register({"title": "a"}, identity="a", initial_revision="1-a")
        tracker.mark_dirty("a")
        change = tracker.compute_change_set()[0]
        tracker.mark_removed("a")

        tracker.apply_result(change, BatchResultEntry.accepted("a", "2-a"))

        assert tracker.state_of("a") == LifecycleState.REMOVED
        assert tracker.revision_of("a") == "2-a"

    def test_detached_during_flush_ignored(self, tracker):
        """Test results for detached entities are dropped."""
        tracker.register({"title": "a"}, identity="a")
        change = tracker.compute_change_set()[0]
        tracker.detach("a")

        assert tracker.apply_result(change, BatchResultEntry.accepted("a", "1-x")) is None
        assert "a" not in tracker
