import unittest
from datetime import date, timedelta

from depsched.cascade import CascadeScheduler, apply_changes, cascade_dependency_updates
from depsched.codec import parse_dependency
from depsched.config import SchedulingConfig
from depsched.errors import ConflictingDateBound, CycleDetected, MissingPredecessor, UnknownTask
from depsched.models import DependencyEdge, DependencyType, ProjectSnapshot, Task


def make_task(task_id, start, duration, deps=(), pinned=False):
    return Task(
        id=task_id,
        duration_days=duration,
        start_date=start,
        end_date=start + timedelta(days=duration - 1),
        dependencies=tuple(parse_dependency(d) for d in deps),
        manual_override_dates=pinned,
    )


def chain(s_pinned=False, t_pinned=False):
    """P (10 days) -> S (FS, 3 days) -> T (FS +1, 2 days), dates already in sync."""
    return ProjectSnapshot.from_tasks(
        [
            make_task("P", date(2024, 1, 1), 10),
            make_task("S", date(2024, 1, 11), 3, ["P:FS:0"], pinned=s_pinned),
            make_task("T", date(2024, 1, 15), 2, ["S:FS:1"], pinned=t_pinned),
        ],
        project_id="proj",
    )


class TestCascadeDateEdits(unittest.TestCase):
    def setUp(self):
        self.scheduler = CascadeScheduler()
        self.snapshot = chain()

    def test_shift_propagates_through_the_chain(self):
        result = self.scheduler.on_dates_changed(self.snapshot, "P", date(2024, 1, 5))

        self.assertEqual(result.total_updated, 2)
        self.assertEqual([r.task_id for r in result.updated_tasks], ["S", "T"])
        self.assertEqual([r.shift_days for r in result.updated_tasks], [4, 4])
        self.assertEqual(result.updated_tasks[0].reason, "dependency update cascaded from P")

        s = result.snapshot.get("S")
        t = result.snapshot.get("T")
        self.assertEqual((s.start_date, s.end_date), (date(2024, 1, 15), date(2024, 1, 17)))
        self.assertEqual((t.start_date, t.end_date), (date(2024, 1, 19), date(2024, 1, 20)))

    def test_edited_task_is_pinned_and_not_reported_as_cascaded(self):
        result = self.scheduler.on_dates_changed(self.snapshot, "P", date(2024, 1, 5))
        p = result.snapshot.get("P")
        self.assertTrue(p.manual_override_dates)
        self.assertEqual(p.end_date, date(2024, 1, 14))
        self.assertNotIn("P", [r.task_id for r in result.updated_tasks])
        self.assertEqual([t.id for t in result.changed_tasks()], ["P", "S", "T"])

    def test_explicit_end_date_changes_duration(self):
        result = self.scheduler.on_dates_changed(self.snapshot, "P", date(2024, 1, 1), date(2024, 1, 12))
        self.assertEqual(result.snapshot.get("P").duration_days, 12)
        self.assertEqual(result.snapshot.get("S").start_date, date(2024, 1, 13))

    def test_input_snapshot_is_not_modified(self):
        self.scheduler.on_dates_changed(self.snapshot, "P", date(2024, 1, 5))
        self.assertEqual(self.snapshot.get("S").start_date, date(2024, 1, 11))
        self.assertFalse(self.snapshot.get("P").manual_override_dates)

    def test_unknown_task(self):
        with self.assertRaises(UnknownTask):
            self.scheduler.on_dates_changed(self.snapshot, "nope", date(2024, 1, 5))


class TestCascadeDependencyUpdates(unittest.TestCase):
    def setUp(self):
        base = chain()
        p = base.get("P")
        self.shifted = base.replace_task(p.with_dates(date(2024, 1, 5), date(2024, 1, 14)))

    def test_cascade_from_changed_task(self):
        result = cascade_dependency_updates(self.shifted, "P")
        self.assertEqual(result.total_updated, 2)
        self.assertEqual(result.snapshot.get("T").start_date, date(2024, 1, 19))

    def test_second_run_is_a_no_op(self):
        first = cascade_dependency_updates(self.shifted, "P")
        second = cascade_dependency_updates(first.snapshot, "P")
        self.assertEqual(second.total_updated, 0)
        self.assertEqual(second.snapshot.tasks, first.snapshot.tasks)

    def test_consistent_project_has_nothing_to_update(self):
        self.assertEqual(cascade_dependency_updates(chain(), "P").total_updated, 0)

    def test_apply_changes_reproduces_result(self):
        result = cascade_dependency_updates(self.shifted, "P")
        replayed = apply_changes(self.shifted, result.updated_tasks)
        self.assertEqual(replayed.tasks, result.snapshot.tasks)

    def test_every_rewritten_task_keeps_its_duration(self):
        result = cascade_dependency_updates(self.shifted, "P")
        for task in result.snapshot:
            self.assertTrue(task.has_consistent_dates, task.id)

    def test_base_versions_cover_the_read_set(self):
        result = cascade_dependency_updates(self.shifted, "P")
        self.assertEqual(set(result.base_versions), {"P", "S", "T"})


class TestPinnedTasks(unittest.TestCase):
    def setUp(self):
        self.scheduler = CascadeScheduler()

    def test_pinned_dependent_is_left_alone_and_reported(self):
        snapshot = chain(s_pinned=True)
        result = self.scheduler.on_dates_changed(snapshot, "P", date(2024, 1, 5))

        self.assertEqual(result.total_updated, 0)
        s = result.snapshot.get("S")
        self.assertEqual((s.start_date, s.end_date), (date(2024, 1, 11), date(2024, 1, 13)))

        self.assertEqual(len(result.pinned_tasks), 1)
        notice = result.pinned_tasks[0]
        self.assertEqual(notice.task_id, "S")
        self.assertEqual(notice.suggested_start, date(2024, 1, 15))
        self.assertTrue(notice.violates_constraints)

    def test_pinned_sink_does_not_block_upstream_updates(self):
        snapshot = chain(t_pinned=True)
        result = self.scheduler.on_dates_changed(snapshot, "P", date(2024, 1, 5))
        self.assertEqual([r.task_id for r in result.updated_tasks], ["S"])
        self.assertEqual(result.snapshot.get("T").start_date, date(2024, 1, 15))
        self.assertEqual([n.task_id for n in result.pinned_tasks], ["T"])

    def test_pinned_source_is_not_recomputed(self):
        snapshot = chain(s_pinned=True)
        s = snapshot.get("S")
        snapshot = snapshot.replace_task(s.with_dates(date(2024, 2, 1), date(2024, 2, 3)))
        result = cascade_dependency_updates(snapshot, "S")
        self.assertEqual(result.snapshot.get("S").start_date, date(2024, 2, 1))
        # T is not pinned and follows S
        self.assertEqual(result.snapshot.get("T").start_date, date(2024, 2, 5))

    def test_new_edge_on_pinned_owner_is_reported(self):
        snapshot = ProjectSnapshot.from_tasks(
            [
                make_task("P", date(2024, 1, 1), 10),
                make_task("S", date(2024, 1, 2), 3, pinned=True),
            ]
        )
        result = self.scheduler.add_dependency(snapshot, "S", DependencyEdge("P"))

        self.assertEqual(result.total_updated, 0)
        self.assertEqual(result.snapshot.get("S").start_date, date(2024, 1, 2))
        self.assertEqual(len(result.pinned_tasks), 1)
        notice = result.pinned_tasks[0]
        self.assertEqual(notice.task_id, "S")
        self.assertEqual(notice.suggested_start, date(2024, 1, 11))
        self.assertTrue(notice.violates_constraints)

    def test_pinned_owner_losing_its_last_edge_is_reported(self):
        result = self.scheduler.remove_dependency(chain(s_pinned=True), "S", "P")
        self.assertEqual([n.task_id for n in result.pinned_tasks], ["S"])
        self.assertIsNone(result.pinned_tasks[0].suggested_start)
        self.assertFalse(result.pinned_tasks[0].violates_constraints)

    def test_clearing_override_resynchronizes(self):
        snapshot = ProjectSnapshot.from_tasks(
            [
                make_task("P", date(2024, 1, 1), 10),
                make_task("S", date(2024, 2, 1), 3, ["P:FS:0"], pinned=True),
                make_task("T", date(2024, 2, 5), 2, ["S:FS:1"]),
            ]
        )
        result = self.scheduler.on_manual_override_cleared(snapshot, "S")

        self.assertEqual(result.total_updated, 2)
        self.assertEqual(result.updated_tasks[0].reason, "manual override cleared")
        s = result.snapshot.get("S")
        self.assertFalse(s.manual_override_dates)
        self.assertEqual((s.start_date, s.end_date), (date(2024, 1, 11), date(2024, 1, 13)))
        self.assertEqual(result.snapshot.get("T").start_date, date(2024, 1, 15))

    def test_setting_override_only_flips_the_flag(self):
        result = self.scheduler.set_manual_override(chain(), "S", True)
        self.assertEqual(result.total_updated, 0)
        self.assertTrue(result.snapshot.get("S").manual_override_dates)
        self.assertEqual([t.id for t in result.changed_tasks()], ["S"])


class TestEdgeEdits(unittest.TestCase):
    def setUp(self):
        self.scheduler = CascadeScheduler()
        self.snapshot = chain().replace_task(make_task("Q", date(2024, 1, 1), 20))

    def test_add_dependency_moves_owner_and_dependents(self):
        result = self.scheduler.add_dependency(self.snapshot, "S", DependencyEdge("Q"))

        self.assertEqual(result.total_updated, 2)
        self.assertEqual(result.updated_tasks[0].reason, "dependency on Q added")
        s = result.snapshot.get("S")
        self.assertEqual(s.start_date, date(2024, 1, 21))
        self.assertIsNotNone(s.dependency_on("Q"))
        self.assertEqual(result.snapshot.get("T").start_date, date(2024, 1, 25))
        self.assertEqual(result.edited_task_ids, ["S"])

    def test_add_dependency_rejects_cycle(self):
        with self.assertRaises(CycleDetected):
            self.scheduler.add_dependency(self.snapshot, "P", DependencyEdge("T"))

    def test_remove_dependency_keeps_dates(self):
        result = self.scheduler.remove_dependency(self.snapshot, "S", "P")
        self.assertEqual(result.total_updated, 0)
        self.assertEqual(result.snapshot.get("S").dependencies, ())
        self.assertEqual([t.id for t in result.changed_tasks()], ["S"])

    def test_remove_missing_dependency(self):
        with self.assertRaises(MissingPredecessor):
            self.scheduler.remove_dependency(self.snapshot, "T", "P")

    def test_update_dependencies_replaces_the_list(self):
        edges = [DependencyEdge("Q", DependencyType.START_TO_START, 2)]
        result = self.scheduler.update_dependencies(self.snapshot, "S", edges)
        s = result.snapshot.get("S")
        self.assertEqual(s.dependencies, tuple(edges))
        self.assertEqual(s.start_date, date(2024, 1, 3))
        self.assertEqual(result.snapshot.get("T").start_date, date(2024, 1, 7))

    def test_update_dependencies_rejects_cycle(self):
        with self.assertRaises(CycleDetected):
            self.scheduler.update_dependencies(self.snapshot, "P", [DependencyEdge("T")])

    def test_edges_changed_repairs_drift(self):
        s = self.snapshot.get("S")
        drifted = self.snapshot.replace_task(s.with_dates(date(2024, 1, 2), date(2024, 1, 4)))
        result = self.scheduler.on_edges_changed(drifted, "S")
        self.assertEqual(result.updated_tasks[0].task_id, "S")
        self.assertEqual(result.updated_tasks[0].reason, "dependencies changed")
        self.assertEqual(result.snapshot.get("S").start_date, date(2024, 1, 11))


class TestTaskDeletion(unittest.TestCase):
    def test_dependent_is_rederived_from_remaining_predecessors(self):
        snapshot = ProjectSnapshot.from_tasks(
            [
                make_task("P", date(2024, 1, 1), 10),
                make_task("S", date(2024, 1, 11), 3, ["P:FS:0"]),
                make_task("T", date(2024, 1, 15), 2, ["S:FS:1", "P:FS:0"]),
            ]
        )
        result = CascadeScheduler().on_task_deleted(snapshot, "S")

        self.assertEqual(result.deleted_task_ids, ["S"])
        self.assertNotIn("S", result.snapshot)
        t = result.snapshot.get("T")
        self.assertEqual(t.dependencies, (DependencyEdge("P"),))
        self.assertEqual((t.start_date, t.end_date), (date(2024, 1, 11), date(2024, 1, 12)))
        self.assertEqual(result.updated_tasks[0].reason, "predecessor S deleted")
        self.assertIn("S", result.base_versions)

    def test_dependent_without_other_predecessors_keeps_dates(self):
        result = CascadeScheduler().on_task_deleted(chain(), "P")
        s = result.snapshot.get("S")
        self.assertEqual(s.dependencies, ())
        self.assertEqual(s.start_date, date(2024, 1, 11))
        self.assertEqual(result.total_updated, 0)


class TestConflictPolicy(unittest.TestCase):
    def setUp(self):
        self.snapshot = ProjectSnapshot.from_tasks(
            [
                make_task("X", date(2024, 1, 1), 10),
                make_task("Y", date(2024, 1, 1), 20),
                make_task("Z", date(2024, 1, 1), 3, ["X:FS:0", "Y:FF:0"]),
            ]
        )

    def test_warn_collects_conflict(self):
        result = CascadeScheduler().on_edges_changed(self.snapshot, "Z")
        self.assertEqual(len(result.conflicts), 1)
        self.assertEqual(result.conflicts[0].task_id, "Z")
        z = result.snapshot.get("Z")
        self.assertEqual((z.start_date, z.end_date), (date(2024, 1, 18), date(2024, 1, 20)))

    def test_block_raises(self):
        scheduler = CascadeScheduler(SchedulingConfig(conflict_policy="block"))
        with self.assertRaises(ConflictingDateBound) as ctx:
            scheduler.on_edges_changed(self.snapshot, "Z")
        self.assertEqual(ctx.exception.conflict.resolved_start, date(2024, 1, 18))


class TestLargeCascade(unittest.TestCase):
    def test_long_chain(self):
        tasks = [make_task("T0", date(2024, 1, 1), 1)]
        for i in range(1, 1500):
            tasks.append(make_task(f"T{i}", date(2024, 1, 1) + timedelta(days=i), 1, [f"T{i - 1}"]))
        snapshot = ProjectSnapshot.from_tasks(tasks)

        result = CascadeScheduler().on_dates_changed(snapshot, "T0", date(2024, 1, 2))
        self.assertEqual(result.total_updated, 1499)
        self.assertEqual(result.snapshot.get("T1499").start_date, date(2024, 1, 1) + timedelta(days=1500))


if __name__ == "__main__":
    unittest.main()
