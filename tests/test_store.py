import os
import tempfile
import unittest

from gptui.core import Message, Role, Store
from gptui.errors import NotFound, StorageError


class TestStore(unittest.TestCase):
    def setUp(self):
        self.store = Store(":memory:")
        self.system = Message(Role.SYSTEM, "Be brief.", 10.0, 2)
        self.store.create_thread("t1", "gpt-4", self.system)

    def tearDown(self):
        self.store.close()

    def test_create_thread_stores_system_message(self):
        self.assertEqual(self.store.get_thread_model("t1"), "gpt-4")
        self.assertEqual(self.store.load_messages("t1"), [self.system])

    def test_unknown_thread_model_raises(self):
        with self.assertRaises(NotFound):
            self.store.get_thread_model("missing")

    def test_append_returns_timestamp_and_preserves_order(self):
        stored = self.store.append_message("t1", Role.USER, "hi", 11.0, 1)
        self.assertEqual(stored, 11.0)
        self.store.append_message("t1", Role.ASSISTANT, "hello", 12.0, 1)

        roles = [m.role for m in self.store.load_messages("t1")]
        self.assertEqual(roles, [Role.SYSTEM, Role.USER, Role.ASSISTANT])

    def test_non_increasing_timestamp_is_corrected(self):
        self.store.append_message("t1", Role.USER, "one", 20.0)
        stored = self.store.append_message("t1", Role.ASSISTANT, "two", 20.0)
        self.assertGreater(stored, 20.0)
        stored_again = self.store.append_message("t1", Role.USER, "three", 5.0)
        self.assertGreater(stored_again, stored)

        stamps = [m.timestamp for m in self.store.load_messages("t1")]
        self.assertEqual(stamps, sorted(set(stamps)))

    def test_append_to_missing_thread_writes_nothing(self):
        with self.assertRaises(NotFound):
            self.store.append_message("missing", Role.USER, "hi", 1.0)
        self.assertEqual(self.store.load_messages("missing"), [])

    def test_role_is_stored_as_integer(self):
        self.store.append_message("t1", Role.ASSISTANT, "x", 11.0)
        row = self.store.conn.execute(
            "SELECT role FROM message WHERE thread_id = 't1' ORDER BY timestamp DESC"
        ).fetchone()
        self.assertEqual(row["role"], 3)

    def test_title_upsert_replaces(self):
        self.assertIsNone(self.store.get_title("t1"))
        self.store.upsert_title("t1", "First")
        self.store.upsert_title("t1", "Second")
        self.assertEqual(self.store.get_title("t1"), "Second")

    def test_list_threads_orders_by_latest_message(self):
        self.store.create_thread("t2", "gpt-3.5-turbo", Message(Role.SYSTEM, "s", 15.0))
        self.store.create_thread("t0", "gpt-4")
        self.store.append_message("t1", Role.USER, "old question", 11.0)
        self.store.append_message("t2", Role.USER, "new question", 30.0)
        self.store.upsert_title("t1", "Old thread")

        threads = self.store.list_threads()
        self.assertEqual([t.id for t in threads], ["t2", "t1", "t0"])
        self.assertEqual(threads[0].preview, "new question")
        self.assertEqual(threads[1].title, "Old thread")
        self.assertIsNone(threads[2].last_active)

    def test_list_threads_breaks_ties_by_id(self):
        self.store.create_thread("a", "gpt-4", Message(Role.SYSTEM, "s", 10.0))
        self.assertEqual([t.id for t in self.store.list_threads()], ["a", "t1"])

    def test_delete_thread_removes_everything(self):
        self.store.append_message("t1", Role.USER, "hi", 11.0)
        self.store.append_message("t1", Role.ASSISTANT, "hello", 12.0)
        self.store.append_message("t1", Role.USER, "bye", 13.0)
        self.store.upsert_title("t1", "Greeting")
        self.store.upsert_summary("t1", 0, 1, "said hi")
        self.store.upsert_summary("t1", 1, 3, "said bye")
        self.assertEqual(len(self.store.load_summaries("t1")), 2)

        self.store.delete_thread("t1")

        self.assertEqual(self.store.list_threads(), [])
        self.assertEqual(self.store.load_messages("t1"), [])
        self.assertEqual(self.store.load_summaries("t1"), [])
        self.assertIsNone(self.store.get_title("t1"))
        with self.assertRaises(NotFound):
            self.store.delete_thread("t1")

    def test_clear_removes_all_threads(self):
        self.store.create_thread("t2", "gpt-4")
        self.store.clear()
        self.assertEqual(self.store.list_threads(), [])


class TestSummaries(unittest.TestCase):
    def setUp(self):
        self.store = Store(":memory:")
        self.store.create_thread("t", "gpt-4")

    def tearDown(self):
        self.store.close()

    def ranges(self):
        return [(s.start_index, s.end_index) for s in self.store.load_summaries("t")]

    def test_superset_replaces_subsets(self):
        self.store.upsert_summary("t", 0, 2, "a")
        self.store.upsert_summary("t", 2, 4, "b")
        self.store.upsert_summary("t", 0, 6, "c")
        self.assertEqual(self.ranges(), [(0, 6)])
        self.assertEqual(self.store.load_summaries("t")[0].content, "c")

    def test_same_range_replaces_content(self):
        self.store.upsert_summary("t", 0, 2, "a")
        self.store.upsert_summary("t", 0, 2, "b")
        self.assertEqual([s.content for s in self.store.load_summaries("t")], ["b"])

    def test_partial_overlap_is_rejected(self):
        self.store.upsert_summary("t", 0, 4, "a")
        with self.assertRaises(StorageError):
            self.store.upsert_summary("t", 2, 6, "b")
        self.assertEqual(self.ranges(), [(0, 4)])

    def test_invalid_range_is_rejected(self):
        with self.assertRaises(StorageError):
            self.store.upsert_summary("t", 3, 3, "empty")

    def test_ranges_stay_disjoint(self):
        sequence = [(0, 2), (4, 6), (2, 4), (0, 6), (6, 8), (1, 3), (6, 10)]
        for start, end in sequence:
            try:
                self.store.upsert_summary("t", start, end, f"{start}-{end}")
            except StorageError:
                pass
            ranges = sorted(self.ranges())
            for (_, prev_end), (next_start, _) in zip(ranges, ranges[1:]):
                self.assertLessEqual(prev_end, next_start)

    def test_summary_for_missing_thread(self):
        with self.assertRaises(NotFound):
            self.store.upsert_summary("missing", 0, 2, "x")


class TestStoreFile(unittest.TestCase):
    def test_data_survives_reopen(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, "nested", "gpt.db")
            store = Store(path)
            store.create_thread("t", "gpt-4", Message(Role.SYSTEM, "s", 1.0))
            store.close()

            reopened = Store(path)
            self.assertEqual(reopened.get_thread_model("t"), "gpt-4")
            reopened.close()

    def test_unopenable_path_raises_storage_error(self):
        with tempfile.TemporaryDirectory() as tmp:
            with self.assertRaises(StorageError):
                Store(tmp)

    def test_closed_store_raises(self):
        store = Store(":memory:")
        store.close()
        with self.assertRaises(StorageError):
            store.list_threads()
