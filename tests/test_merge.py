"""Tests for the merge engine (merge_no_conflict and apply_resolutions)."""

import pytest

from cmdvault.protocols import ResolutionCancelled
from cmdvault.sync.detector import detect_conflicts
from cmdvault.sync.merge import (
    KEEP_BOTH_LABEL_SUFFIX,
    apply_resolutions,
    keep_both_key,
    merge_no_conflict,
    pick_newer,
)
from cmdvault.types import Resolution


def _by_key(records):
    return {r.sync_id: r for r in records}


class TestMergeNoConflict:
    def test_union_of_disjoint_snapshots(self, make_record, at):
        local = [make_record("a"), make_record("b")]
        remote = [make_record("c")]

        merged = merge_no_conflict(local, remote, now=at(60))

        assert sorted(r.sync_id for r in merged) == ["a", "b", "c"]

    def test_disjoint_union_is_commutative(self, make_record, at):
        local = [make_record("a"), make_record("b")]
        remote = [make_record("c"), make_record("d")]

        forward = {r.sync_id for r in merge_no_conflict(local, remote, now=at(60))}
        backward = {r.sync_id for r in merge_no_conflict(remote, local, now=at(60))}

        assert forward == backward == {"a", "b", "c", "d"}

    def test_every_record_is_stamped(self, make_record, at):
        merged = merge_no_conflict([make_record("a")], [make_record("b")], now=at(60))

        for record in merged:
            assert record.sync_id == record.id
            assert record.last_synced_at == at(60)

    def test_last_synced_at_never_moves_backwards(self, make_record, at):
        merged = merge_no_conflict([make_record("a", synced=90)], [], now=at(60))

        assert merged[0].last_synced_at == at(90)

    def test_directional_update_keeps_newer_remote(self, make_record, at):
        local = [make_record("x", command="old", updated=1, synced=5)]
        remote = [make_record("x", command="new", updated=10, synced=5)]

        merged = merge_no_conflict(local, remote, now=at(60))

        assert [r.command for r in merged] == ["new"]

    def test_directional_update_keeps_newer_local(self, make_record, at):
        local = [make_record("x", command="new", updated=10, synced=5)]
        remote = [make_record("x", command="old", updated=1, synced=5)]

        assert [r.command for r in merge_no_conflict(local, remote, now=at(60))] == ["new"]

    def test_tie_favours_local(self, make_record):
        local = make_record("x", command="local", updated=5)
        remote = make_record("x", command="remote", updated=5)

        assert pick_newer(local, remote) is local

    def test_tombstones_are_filtered(self, make_record, at):
        local = [make_record("a", deleted=3), make_record("b")]
        remote = [make_record("c", deleted=4), make_record("d")]

        merged = merge_no_conflict(local, remote, now=at(60))

        assert sorted(r.sync_id for r in merged) == ["b", "d"]
        assert all(r.deleted_at is None for r in merged)

    def test_output_keys_are_unique(self, make_record, at):
        local = [make_record("a"), make_record("b")]
        remote = [make_record("a"), make_record("b"), make_record("c")]

        keys = [r.sync_id for r in merge_no_conflict(local, remote, now=at(60))]

        assert len(keys) == len(set(keys)) == 3


class TestApplyResolutions:
    def test_keep_remote_on_modified_conflict(self, make_record, at):
        local = [make_record("x", command="A", updated=1)]
        remote = [make_record("x", command="B", updated=2)]
        conflicts = detect_conflicts(local, remote)

        merged = apply_resolutions(conflicts, {"x": Resolution.KEEP_REMOTE}, local, remote, now=at(60))

        assert len(merged) == 1
        assert merged[0].command == "B"
        assert merged[0].sync_id == "x"

    def test_keep_local_on_modified_conflict(self, make_record, at):
        local = [make_record("x", command="A", updated=1)]
        remote = [make_record("x", command="B", updated=2)]
        conflicts = detect_conflicts(local, remote)

        merged = apply_resolutions(conflicts, {"x": "keep_local"}, local, remote, now=at(60))

        assert [r.command for r in merged] == ["A"]
        assert merged[0].last_synced_at == at(60)

    def test_keep_remote_takes_remote_id(self, make_record, at):
        local = [make_record("cmd_1", command="A", updated=1)]
        remote = [make_record("cmd_9", sync_id="cmd_1", prompt="prompt for cmd_1", command="B", updated=2)]
        conflicts = detect_conflicts(local, remote)

        merged = apply_resolutions(conflicts, {"cmd_1": Resolution.KEEP_REMOTE}, local, remote, now=at(60))

        assert merged[0].id == "cmd_9"
        assert merged[0].sync_id == "cmd_1"

    def test_keep_both_duplicates_remote(self, make_record, at):
        local = [make_record("x", command="A", updated=1)]
        remote = [make_record("x", command="B", updated=2)]
        conflicts = detect_conflicts(local, remote)

        merged = apply_resolutions(conflicts, {"x": Resolution.KEEP_BOTH}, local, remote, now=at(60))

        assert len(merged) == 2
        by_key = _by_key(merged)
        assert by_key["x"].command == "A"
        copy_key = keep_both_key(conflicts[0])
        copy = by_key[copy_key]
        assert copy_key != "x"
        assert copy.id == copy_key
        assert copy.command == "B"
        assert copy.prompt.endswith(KEEP_BOTH_LABEL_SUFFIX)

    def test_keep_both_key_is_deterministic(self, make_record):
        local = [make_record("x", command="A", updated=1)]
        remote = [make_record("x", command="B", updated=2)]

        first = keep_both_key(detect_conflicts(local, remote)[0])
        second = keep_both_key(detect_conflicts(local, remote)[0])

        assert first == second
        assert first.startswith("x_remote_")

    def test_deleted_local_keep_remote_restores(self, make_record, at):
        local = [make_record("y", updated=10, deleted=10)]
        remote = [make_record("y", updated=0)]
        conflicts = detect_conflicts(local, remote)

        merged = apply_resolutions(conflicts, {"y": Resolution.KEEP_REMOTE}, local, remote, now=at(60))

        assert [r.sync_id for r in merged] == ["y"]
        assert merged[0].deleted_at is None

    def test_deleted_local_keep_local_confirms_delete(self, make_record, at):
        local = [make_record("y", updated=10, deleted=10)]
        remote = [make_record("y", updated=0)]
        conflicts = detect_conflicts(local, remote)

        merged = apply_resolutions(conflicts, {"y": Resolution.KEEP_LOCAL}, local, remote, now=at(60))

        assert merged == []

    def test_keep_both_on_deletion_keeps_live_side(self, make_record, at):
        local = [make_record("y", updated=0)]
        remote = [make_record("y", updated=10, deleted=10)]
        conflicts = detect_conflicts(local, remote)

        merged = apply_resolutions(conflicts, {"y": Resolution.KEEP_BOTH}, local, remote, now=at(60))

        assert [r.sync_id for r in merged] == ["y"]
        assert merged[0].deleted_at is None

    def test_non_conflicting_records_pass_through(self, make_record, at):
        local = [make_record("x", command="A", updated=1), make_record("only-local")]
        remote = [make_record("x", command="B", updated=2), make_record("only-remote")]
        conflicts = detect_conflicts(local, remote)

        merged = apply_resolutions(conflicts, {"x": Resolution.KEEP_LOCAL}, local, remote, now=at(60))

        assert sorted(r.sync_id for r in merged) == ["only-local", "only-remote", "x"]

    def test_missing_resolution_cancels(self, make_record, at):
        local = [make_record("x", command="A", updated=1), make_record("z", command="A", updated=1)]
        remote = [make_record("x", command="B", updated=2), make_record("z", command="B", updated=2)]
        conflicts = detect_conflicts(local, remote)

        with pytest.raises(ResolutionCancelled, match="1 conflict"):
            apply_resolutions(conflicts, {"x": Resolution.KEEP_LOCAL}, local, remote, now=at(60))

    def test_output_never_contains_tombstones(self, make_record, at):
        local = [make_record("y", updated=10, deleted=10), make_record("gone", deleted=2)]
        remote = [make_record("y", updated=0), make_record("also-gone", deleted=2)]
        conflicts = detect_conflicts(local, remote)

        merged = apply_resolutions(conflicts, {"y": Resolution.KEEP_LOCAL}, local, remote, now=at(60))

        assert all(not r.is_deleted for r in merged)
