import os
import tempfile
import unittest
from datetime import datetime, timedelta, timezone

from sitestore.blocks import BLOCK_NAMES
from sitestore.db import SqlDbClient
from sitestore.files import FileService
from sitestore.local_store import LocalFileStore
from sitestore.mirror import InMemoryMirrorClient
from sitestore.reconcile import Reconciler, select_snapshot
from sitestore.snapshot import SNAPSHOT_NAME, Snapshot, SnapshotStore, encode, serialize

PNG_MAGIC = b"\x89PNG\r\n\x1a\n"
BROCHURE = PNG_MAGIC + b"\x00" * (500 - len(PNG_MAGIC))
PDF = b"%PDF-1.4\n" + b"1" * 20


def snapshot_with_section(name: str, timestamp: datetime) -> Snapshot:
    return Snapshot(
        timestamp=timestamp,
        tables={
            "sections": [{"id": 1, "name": name, "sort_order": 0, "is_visible": True}],
            "subsections": [],
            "blocks": [],
            "documents": [],
        },
    )


class SelectSnapshotTests(unittest.TestCase):
    def test_newer_remote_wins_and_ties_keep_local(self):
        now = datetime.now(timezone.utc)
        local = Snapshot(timestamp=now)
        newer = Snapshot(timestamp=now + timedelta(seconds=1))
        same = Snapshot(timestamp=now)

        self.assertEqual(select_snapshot(local, newer), ("remote", newer))
        self.assertEqual(select_snapshot(local, same), ("local", local))
        self.assertEqual(select_snapshot(None, same), ("remote", same))
        self.assertEqual(select_snapshot(local, None), ("local", local))
        self.assertEqual(select_snapshot(None, None), (None, None))


class ReconcilerTests(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self.tmp.cleanup)
        self.db = SqlDbClient("sqlite://")
        self.local = LocalFileStore(os.path.join(self.tmp.name, "uploads"))
        self.mirror = InMemoryMirrorClient()
        self.snapshots = SnapshotStore(
            os.path.join(self.tmp.name, SNAPSHOT_NAME), mirror=self.mirror
        )

    def reconciler(self, mirror=None, **kwargs):
        return Reconciler(
            self.db,
            self.local,
            self.snapshots,
            mirror if mirror is not None else self.mirror,
            **kwargs,
        )

    def test_empty_host_rebuilds_from_mirror_listing(self):
        self.mirror.files["brochure.png"] = BROCHURE

        report = self.reconciler().run()

        self.assertTrue(report.resynced)
        documents = self.db.list_documents()
        self.assertEqual([d.filename for d in documents], ["brochure.png"])
        self.assertEqual(documents[0].file_type, "image")
        self.assertEqual(documents[0].title, "brochure")
        files = FileService(self.db, self.local, self.snapshots, self.mirror)
        self.assertEqual(len(files.resolve("brochure.png")), 500)

    def test_newer_mirror_snapshot_wins(self):
        now = datetime.now(timezone.utc)
        self.snapshots.save(snapshot_with_section("Local", now))
        self.mirror.files[SNAPSHOT_NAME] = encode(
            snapshot_with_section("Remote", now + timedelta(minutes=5))
        )

        report = self.reconciler().run()

        self.assertEqual(report.snapshot_source, "remote")
        self.assertEqual([s.name for s in self.db.list_sections()], ["Remote"])

    def test_tied_snapshots_keep_local(self):
        now = datetime.now(timezone.utc)
        self.snapshots.save(snapshot_with_section("Local", now))
        self.mirror.files[SNAPSHOT_NAME] = encode(snapshot_with_section("Remote", now))

        report = self.reconciler().run()

        self.assertEqual(report.snapshot_source, "local")
        self.assertEqual([s.name for s in self.db.list_sections()], ["Local"])

    def test_unreachable_mirror_uses_local_state(self):
        self.snapshots.save(snapshot_with_section("Local", datetime.now(timezone.utc)))
        offline = InMemoryMirrorClient(reachable=False)

        report = self.reconciler(mirror=offline).run()

        self.assertFalse(report.mirror_reachable)
        self.assertEqual(report.snapshot_source, "local")
        self.assertEqual([s.name for s in self.db.list_sections()], ["Local"])

    def test_full_resync_is_listing_authoritative(self):
        self.db.insert_document(
            title="Gone",
            filename="gone.pdf",
            original_name="gone.pdf",
            is_visible=True,
            sort_order=0,
        )
        self.mirror.files["a.pdf"] = PDF
        self.mirror.files["b.png"] = BROCHURE

        self.reconciler(resync_mode="always").run()

        filenames = sorted(d.filename for d in self.db.list_documents())
        self.assertEqual(filenames, ["a.pdf", "b.png"])

    def test_auto_mode_keeps_existing_rows(self):
        self.db.insert_document(
            title="Kept",
            filename="kept.pdf",
            original_name="kept.pdf",
            is_visible=True,
            sort_order=0,
        )
        self.mirror.files["a.pdf"] = PDF

        report = self.reconciler().run()

        self.assertFalse(report.resynced)
        self.assertEqual(report.downloaded, ["a.pdf"])
        self.assertEqual([d.filename for d in self.db.list_documents()], ["kept.pdf"])
        self.assertTrue(self.local.exists("a.pdf"))

    def test_never_mode_does_not_touch_rows(self):
        self.mirror.files["a.pdf"] = PDF
        report = self.reconciler(resync_mode="never").run()
        self.assertFalse(report.resynced)
        self.assertEqual(self.db.count_documents(), 0)

    def test_corrupt_mirror_files_are_skipped(self):
        self.mirror.files["bad.pdf"] = b"garbage"
        self.mirror.files["good.pdf"] = PDF

        report = self.reconciler(resync_mode="never").run()

        self.assertEqual(report.corrupt, ["bad.pdf"])
        self.assertFalse(self.local.exists("bad.pdf"))
        self.assertTrue(self.local.exists("good.pdf"))

    def test_block_images_are_not_resynced_as_documents(self):
        self.db.insert_block(name="about", image="/uploads/photo.png")
        self.mirror.files["photo.png"] = BROCHURE
        self.mirror.files["a.pdf"] = PDF

        self.reconciler(resync_mode="always").run()

        self.assertEqual([d.filename for d in self.db.list_documents()], ["a.pdf"])
        self.assertTrue(self.local.exists("photo.png"))

    def test_seeds_blocks_and_admin_then_saves_snapshot(self):
        report = self.reconciler(admin_username="root", admin_password="secret1").run()

        self.assertEqual(sorted(report.seeded_blocks), sorted(BLOCK_NAMES))
        self.assertTrue(report.seeded_admin)
        self.assertIsNotNone(self.db.get_admin("root"))
        self.assertTrue(report.snapshot_saved)
        self.assertIn(SNAPSHOT_NAME, self.mirror.files)

        second = self.reconciler(admin_username="root", admin_password="other").run()
        self.assertEqual(second.seeded_blocks, [])
        self.assertFalse(second.seeded_admin)

    def test_snapshot_restore_keeps_seeded_admin_password(self):
        self.reconciler(admin_username="admin", admin_password="first1").run()
        before = self.db.get_admin("admin").password_hash
        self.snapshots.save(serialize(self.db))

        self.reconciler(admin_username="admin", admin_password="second").run()

        self.assertEqual(self.db.get_admin("admin").password_hash, before)

    def test_rejects_unknown_resync_mode(self):
        with self.assertRaises(ValueError):
            self.reconciler(resync_mode="sometimes")


if __name__ == "__main__":
    unittest.main()
