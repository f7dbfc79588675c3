import threading
import unittest
from datetime import date, timedelta

from depsched.cascade import CascadeScheduler, commit_cascade, run_cascade
from depsched.codec import parse_dependency
from depsched.errors import StaleSnapshotAbort, UnknownTask
from depsched.models import Task
from depsched.store import InMemoryTaskStore


def make_task(task_id, start, duration, deps=()):
    return Task(
        id=task_id,
        duration_days=duration,
        start_date=start,
        end_date=start + timedelta(days=duration - 1),
        dependencies=tuple(parse_dependency(d) for d in deps),
    )


def make_store():
    return InMemoryTaskStore(
        {
            "proj": [
                make_task("P", date(2024, 1, 1), 10),
                make_task("S", date(2024, 1, 11), 3, ["P:FS:0"]),
                make_task("T", date(2024, 1, 15), 2, ["S:FS:1"]),
            ]
        }
    )


class TestInMemoryTaskStore(unittest.TestCase):
    def test_put_bumps_version(self):
        store = make_store()
        task = store.load_snapshot("proj").get("P")
        stored = store.put("proj", task.with_dates(date(2024, 1, 2), date(2024, 1, 11)))
        self.assertEqual(stored.version, 1)
        self.assertEqual(store.load_snapshot("proj").get("P").start_date, date(2024, 1, 2))

    def test_commit_checks_versions(self):
        store = make_store()
        snapshot = store.load_snapshot("proj")
        store.put("proj", snapshot.get("S"))
        with self.assertRaises(StaleSnapshotAbort) as ctx:
            store.commit("proj", [snapshot.get("T")], [], snapshot.versions())
        self.assertEqual(ctx.exception.stale_task_ids, ["S"])

    def test_commit_unknown_deletion(self):
        store = make_store()
        with self.assertRaises(UnknownTask):
            store.commit("proj", [], ["nope"], {})

    def test_unknown_project_is_empty(self):
        self.assertEqual(len(make_store().load_snapshot("other")), 0)


class TestCommitCascade(unittest.TestCase):
    def setUp(self):
        self.store = make_store()
        self.scheduler = CascadeScheduler()

    def test_cascade_is_written_as_one_batch(self):
        snapshot = self.store.load_snapshot("proj")
        result = self.scheduler.on_dates_changed(snapshot, "P", date(2024, 1, 5))
        commit_cascade(self.store, result)

        stored = self.store.load_snapshot("proj")
        self.assertTrue(stored.get("P").manual_override_dates)
        self.assertEqual(stored.get("S").start_date, date(2024, 1, 15))
        self.assertEqual(stored.get("T").start_date, date(2024, 1, 19))
        self.assertEqual(stored.versions(), {"P": 1, "S": 1, "T": 1})

    def test_stale_snapshot_writes_nothing(self):
        snapshot = self.store.load_snapshot("proj")
        result = self.scheduler.on_dates_changed(snapshot, "P", date(2024, 1, 5))

        # Another session edits T in between
        self.store.put("proj", snapshot.get("T"))

        with self.assertRaises(StaleSnapshotAbort):
            commit_cascade(self.store, result)
        stored = self.store.load_snapshot("proj")
        self.assertEqual(stored.get("S").start_date, date(2024, 1, 11))
        self.assertFalse(stored.get("P").manual_override_dates)

    def test_deletion_is_committed(self):
        snapshot = self.store.load_snapshot("proj")
        result = self.scheduler.on_task_deleted(snapshot, "P")
        commit_cascade(self.store, result)
        stored = self.store.load_snapshot("proj")
        self.assertNotIn("P", stored)
        self.assertEqual(stored.get("S").dependencies, ())


class TestRunCascade(unittest.TestCase):
    def setUp(self):
        self.store = make_store()
        self.scheduler = CascadeScheduler()

    def test_retries_after_concurrent_write(self):
        calls = []

        def operation(snapshot):
            calls.append(snapshot)
            result = self.scheduler.on_dates_changed(snapshot, "P", date(2024, 1, 5))
            if len(calls) == 1:
                # Concurrent edit lands after the snapshot was read
                s = snapshot.get("S")
                self.store.put("proj", s.with_dates(date(2024, 1, 12), date(2024, 1, 14)))
            return result

        result = run_cascade(self.store, "proj", operation)

        self.assertEqual(len(calls), 2)
        self.assertEqual(calls[1].get("S").version, 1)
        stored = self.store.load_snapshot("proj")
        self.assertEqual(stored.get("S").start_date, date(2024, 1, 15))
        self.assertEqual(stored.get("S").version, 2)
        self.assertEqual(result.total_updated, 2)

    def test_gives_up_when_retries_are_spent(self):
        def operation(snapshot):
            result = self.scheduler.on_dates_changed(snapshot, "P", date(2024, 1, 5))
            self.store.put("proj", snapshot.get("T"))
            return result

        with self.assertRaises(StaleSnapshotAbort):
            run_cascade(self.store, "proj", operation, max_retries=2)

    def test_concurrent_cascades_all_land(self):
        errors = []

        def worker(task_id, start):
            try:
                run_cascade(
                    self.store,
                    "proj",
                    lambda s: self.scheduler.on_dates_changed(s, task_id, start),
                    max_retries=50,
                )
            except StaleSnapshotAbort as e:
                errors.append(e)

        threads = [
            threading.Thread(target=worker, args=("P", date(2024, 1, 3))),
            threading.Thread(target=worker, args=("T", date(2024, 3, 1))),
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        self.assertEqual(errors, [])
        stored = self.store.load_snapshot("proj")
        self.assertEqual(stored.get("P").start_date, date(2024, 1, 3))
        self.assertEqual(stored.get("T").start_date, date(2024, 3, 1))
        self.assertEqual(stored.get("S").start_date, date(2024, 1, 13))


if __name__ == "__main__":
    unittest.main()
