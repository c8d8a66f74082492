import json
import os
import tempfile
import threading
import unittest
from datetime import datetime, timedelta, timezone

from sitestore.db import SqlDbClient
from sitestore.errors import SnapshotParseError
from sitestore.mirror import InMemoryMirrorClient
from sitestore.snapshot import (
    RESTORE_ORDER,
    SNAPSHOT_NAME,
    Snapshot,
    SnapshotStore,
    decode,
    encode,
    restore,
    serialize,
)


def populate(db: SqlDbClient) -> None:
    section = db.insert_section(name="Licences", sort_order=1, is_visible=True)
    subsection = db.insert_subsection(
        section_id=section.id, name="2024", sort_order=0, is_visible=False
    )
    db.insert_block(name="hero", title="Hello", items=json.dumps([{"title": "a"}]))
    db.insert_document(
        title="Report",
        description="Annual",
        filename="abc.pdf",
        original_name="report.pdf",
        file_size=10,
        file_type="pdf",
        is_visible=True,
        sort_order=2,
        section_id=section.id,
        subsection_id=subsection.id,
    )
    db.insert_admin("admin", "hash-value")


class SnapshotCodecTests(unittest.TestCase):
    def setUp(self):
        self.db = SqlDbClient("sqlite://")
        populate(self.db)

    def test_serialize_omits_password_hashes(self):
        snapshot = serialize(self.db)
        self.assertEqual(snapshot.rows("admin_users")[0]["username"], "admin")
        self.assertNotIn("password_hash", snapshot.rows("admin_users")[0])
        self.assertNotIn("hash-value", encode(snapshot).decode("utf-8"))

    def test_encode_decode_keeps_timestamp_and_rows(self):
        snapshot = serialize(self.db)
        decoded = decode(encode(snapshot))
        self.assertEqual(decoded.timestamp, snapshot.timestamp)
        self.assertEqual(decoded.rows("documents"), snapshot.rows("documents"))

    def test_restore_then_serialize_is_idempotent(self):
        original = serialize(self.db)
        target = SqlDbClient("sqlite://")

        report = restore(decode(encode(original)), target)
        again = serialize(target)

        self.assertTrue(report.ok)
        for table in RESTORE_ORDER:
            self.assertEqual(again.rows(table), original.rows(table), table)

    def test_restore_replaces_existing_rows(self):
        target = SqlDbClient("sqlite://")
        target.insert_document(
            title="Stale",
            filename="stale.pdf",
            original_name="stale.pdf",
            is_visible=True,
            sort_order=0,
        )
        restore(serialize(self.db), target)
        self.assertEqual([d.filename for d in target.list_documents()], ["abc.pdf"])

    def test_restore_skips_absent_tables_and_admins(self):
        target = SqlDbClient("sqlite://")
        target.insert_admin("admin", "local-hash")
        snapshot = Snapshot(
            timestamp=datetime.now(timezone.utc),
            tables={"sections": [{"id": 7, "name": "Only", "sort_order": 0, "is_visible": 1}]},
        )

        report = restore(snapshot, target)

        self.assertEqual(report.restored, ["sections"])
        self.assertIn("documents", report.skipped)
        self.assertEqual(target.get_section(7).name, "Only")
        self.assertTrue(target.get_section(7).is_visible)
        self.assertEqual(target.get_admin("admin").password_hash, "local-hash")

    def test_failed_table_rolls_back_alone(self):
        target = SqlDbClient("sqlite://")
        populate(target)
        snapshot = serialize(self.db)
        # Duplicate primary keys make the documents insert fail.
        snapshot.tables["documents"] = snapshot.rows("documents") * 2
        snapshot.tables["sections"][0]["name"] = "Renamed"

        report = restore(snapshot, target)

        self.assertFalse(report.ok)
        self.assertIn("documents", report.failed)
        self.assertIn("sections", report.restored)
        self.assertEqual(target.list_sections()[0].name, "Renamed")
        self.assertEqual(len(target.list_documents()), 1)

    def test_decode_rejects_garbage(self):
        for data in (b"{", b"[]", b'{"blocks": []}', b'{"timestamp": "yesterday"}'):
            with self.assertRaises(SnapshotParseError):
                decode(data)
        with self.assertRaises(SnapshotParseError):
            decode(b'{"timestamp": "2024-01-01T00:00:00Z", "documents": {}}')


class SnapshotStoreTests(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self.tmp.cleanup)
        self.path = os.path.join(self.tmp.name, SNAPSHOT_NAME)
        self.db = SqlDbClient("sqlite://")
        populate(self.db)

    def test_save_writes_local_and_mirror_copies(self):
        mirror = InMemoryMirrorClient()
        store = SnapshotStore(self.path, mirror=mirror)

        self.assertTrue(store.capture(self.db))
        self.assertTrue(os.path.isfile(self.path))
        self.assertIn(SNAPSHOT_NAME, mirror.files)
        self.assertEqual(
            store.load_local().rows("blocks"), store.load_remote().rows("blocks")
        )

    def test_save_survives_offline_mirror(self):
        store = SnapshotStore(self.path, mirror=InMemoryMirrorClient(reachable=False))
        self.assertFalse(store.capture(self.db))
        self.assertIsNotNone(store.load_local())

    def test_corrupt_local_snapshot_is_ignored(self):
        with open(self.path, "wb") as f:
            f.write(b"{not json")
        self.assertIsNone(SnapshotStore(self.path).load_local())

    def test_missing_snapshots(self):
        store = SnapshotStore(self.path, mirror=InMemoryMirrorClient())
        self.assertIsNone(store.load_local())
        self.assertIsNone(store.load_remote())
        self.assertIsNone(SnapshotStore(self.path).load_remote())

    def test_concurrent_saves_all_land(self):
        store = SnapshotStore(self.path)
        snapshot = serialize(self.db)
        errors = []

        def save_many():
            for _ in range(50):
                try:
                    store.save(snapshot)
                except OSError as exc:
                    errors.append(exc)

        threads = [threading.Thread(target=save_many) for _ in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        self.assertEqual(errors, [])
        self.assertEqual(store.load_local().rows("documents"), snapshot.rows("documents"))
        self.assertEqual(os.listdir(self.tmp.name), [SNAPSHOT_NAME])

    def test_older_snapshot_keeps_its_timestamp(self):
        store = SnapshotStore(self.path)
        stamp = datetime.now(timezone.utc) - timedelta(days=3)
        store.save(Snapshot(timestamp=stamp, tables={}))
        self.assertEqual(store.load_local().timestamp, stamp)


if __name__ == "__main__":
    unittest.main()
