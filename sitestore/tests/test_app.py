import os
import tempfile
import unittest
from unittest.mock import patch

from fastapi.testclient import TestClient

from sitestore.app import create_app
from sitestore.dependencies import get_local_store, get_mirror_client, reset_dependencies

REPORT = b"%PDF-1.4\n%"
PNG = b"\x89PNG\r\n\x1a\n" + b"\x02" * 24


class BackendApiTests(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self.tmp.cleanup)
        env = patch.dict(
            os.environ,
            {
                "SITESTORE_DATA_DIR": self.tmp.name,
                "SITESTORE_IN_MEMORY_MIRROR": "true",
                "JWT_SECRET": "test-secret",
                "ADMIN_USERNAME": "admin",
                "ADMIN_PASSWORD": "admin123",
            },
        )
        env.start()
        self.addCleanup(env.stop)
        reset_dependencies()
        self.addCleanup(reset_dependencies)

        self.client = TestClient(create_app())
        self.client.__enter__()
        self.addCleanup(self.client.__exit__, None, None, None)

    def auth_headers(self, password="admin123"):
        response = self.client.post(
            "/api/login", json={"username": "admin", "password": password}
        )
        self.assertEqual(response.status_code, 200)
        return {"Authorization": f"Bearer {response.json()['token']}"}

    def upload(self, files, **form):
        return self.client.post(
            "/api/admin/documents",
            files=files,
            data=form,
            headers=self.auth_headers(),
        )

    def test_health(self):
        response = self.client.get("/api/health")
        self.assertEqual(response.status_code, 200)
        payload = response.json()
        self.assertEqual(payload["status"], "ok")
        self.assertEqual(payload["jwtSecret"], "configured")
        self.assertEqual(payload["mirror"], "enabled")

    def test_login_and_verify_token(self):
        headers = self.auth_headers()
        response = self.client.get("/api/verify-token", headers=headers)
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["user"]["username"], "admin")

        bad = self.client.post(
            "/api/login", json={"username": "admin", "password": "wrong"}
        )
        self.assertEqual(bad.status_code, 401)
        empty = self.client.post("/api/login", json={"username": "", "password": ""})
        self.assertEqual(empty.status_code, 400)

    def test_admin_routes_require_token(self):
        self.assertEqual(self.client.get("/api/admin/documents").status_code, 401)
        forged = {"Authorization": "Bearer not-a-token"}
        self.assertEqual(
            self.client.get("/api/admin/documents", headers=forged).status_code, 403
        )

    def test_upload_list_download_delete(self):
        response = self.upload(
            [("file", ("report.pdf", REPORT, "application/pdf"))], title="Report"
        )
        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.json()["count"], 1)

        documents = self.client.get("/api/documents").json()
        self.assertEqual(len(documents), 1)
        document = documents[0]
        self.assertEqual(document["title"], "Report")
        self.assertEqual(document["file_type"], "pdf")
        self.assertEqual(document["downloadUrl"], f"/api/download/{document['filename']}")

        # Mirroring ran as a background task after the response.
        self.assertEqual(get_mirror_client().files[document["filename"]], REPORT)

        download = self.client.get(
            document["downloadUrl"], params={"original": "report.pdf"}
        )
        self.assertEqual(download.status_code, 200)
        self.assertEqual(download.content, REPORT)
        self.assertEqual(download.headers["content-type"], "application/pdf")
        self.assertTrue(download.headers["content-disposition"].startswith("attachment"))
        self.assertIn("no-store", download.headers["cache-control"])

        preview = self.client.get(document["downloadUrl"], params={"mode": "preview"})
        self.assertTrue(preview.headers["content-disposition"].startswith("inline"))

        deleted = self.client.delete(
            f"/api/admin/documents/{document['id']}", headers=self.auth_headers()
        )
        self.assertEqual(deleted.status_code, 200)
        self.assertEqual(self.client.get(document["downloadUrl"]).status_code, 404)

    def test_download_repairs_missing_local_file(self):
        self.upload([("file", ("photo.png", PNG, "image/png"))])
        filename = self.client.get("/api/documents").json()[0]["filename"]
        os.remove(get_local_store().path_for(filename))

        response = self.client.get(f"/api/download/{filename}")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.content, PNG)
        self.assertTrue(get_local_store().exists(filename))

    def test_multiple_files_and_invalid_uploads(self):
        response = self.upload(
            [
                ("file", ("a.pdf", REPORT, "application/pdf")),
                ("file", ("b.png", PNG, "image/png")),
            ],
            title="Set",
            is_visible="false",
        )
        self.assertEqual(response.status_code, 201)
        self.assertEqual(self.client.get("/api/documents").json(), [])
        titles = [
            d["title"]
            for d in self.client.get(
                "/api/admin/documents", headers=self.auth_headers()
            ).json()
        ]
        self.assertEqual(sorted(titles), ["Set 1", "Set 2"])

        bad = self.upload([("file", ("fake.pdf", b"hello", "application/pdf"))])
        self.assertEqual(bad.status_code, 400)
        self.assertEqual(bad.json()["error"], "ValidationError")

        missing = self.client.post(
            "/api/admin/documents", data={"title": "x"}, headers=self.auth_headers()
        )
        self.assertEqual(missing.status_code, 400)

    def test_update_and_reorder_documents(self):
        self.upload(
            [
                ("file", ("a.pdf", REPORT, "application/pdf")),
                ("file", ("b.pdf", REPORT, "application/pdf")),
            ]
        )
        headers = self.auth_headers()
        first, second = self.client.get("/api/documents").json()

        response = self.client.put(
            "/api/admin/documents/reorder",
            json={"order": [second["id"], first["id"]]},
            headers=headers,
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(
            [d["id"] for d in self.client.get("/api/documents").json()],
            [second["id"], first["id"]],
        )

        response = self.client.put(
            f"/api/admin/documents/{first['id']}",
            json={"title": "Renamed", "description": "About"},
            headers=headers,
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["document"]["title"], "Renamed")

        missing = self.client.put(
            "/api/admin/documents/999", json={"title": "x"}, headers=headers
        )
        self.assertEqual(missing.status_code, 404)

    def test_blocks(self):
        blocks = self.client.get("/api/blocks").json()
        self.assertEqual(len(blocks), 7)

        legal = self.client.get("/api/blocks/documents-legal").json()
        self.assertEqual(legal["items"], {"legal_info": ""})

        headers = self.auth_headers()
        response = self.client.put(
            f"/api/admin/blocks/{legal['id']}",
            json={"items": {"legal_info": "Licence 42"}},
            headers=headers,
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(
            self.client.get("/api/blocks/documents-legal").json()["items"],
            {"legal_info": "Licence 42"},
        )

        self.assertEqual(self.client.get("/api/blocks/unknown").status_code, 404)

    def test_block_image_upload(self):
        response = self.client.post(
            "/api/admin/blocks/upload-image",
            files={"image": ("banner.png", PNG, "image/png")},
            headers=self.auth_headers(),
        )
        self.assertEqual(response.status_code, 200)
        url = response.json()["url"]
        self.assertTrue(url.startswith("/uploads/"))

        served = self.client.get(url)
        self.assertEqual(served.status_code, 200)
        self.assertEqual(served.content, PNG)
        self.assertEqual(self.client.get("/api/documents").json(), [])

    def test_sections(self):
        headers = self.auth_headers()
        section = self.client.post(
            "/api/admin/sections", json={"name": "Licences"}, headers=headers
        )
        self.assertEqual(section.status_code, 201)
        section_id = section.json()["id"]
        sub = self.client.post(
            "/api/admin/subsections",
            json={"section_id": section_id, "name": "2024"},
            headers=headers,
        )
        self.assertEqual(sub.status_code, 201)

        tree = self.client.get("/api/sections").json()
        self.assertEqual(tree[0]["name"], "Licences")
        self.assertEqual(tree[0]["subsections"][0]["name"], "2024")

        self.upload(
            [("file", ("a.pdf", REPORT, "application/pdf"))],
            section_id=str(section_id),
            subsection_id=str(sub.json()["id"]),
        )
        self.assertEqual(self.client.get("/api/documents").json()[0]["section_id"], section_id)

        deleted = self.client.delete(f"/api/admin/sections/{section_id}", headers=headers)
        self.assertEqual(deleted.status_code, 200)
        self.assertEqual(self.client.get("/api/sections").json(), [])
        document = self.client.get("/api/documents").json()[0]
        self.assertIsNone(document["section_id"])
        self.assertIsNone(document["subsection_id"])

        orphan = self.client.post(
            "/api/admin/subsections", json={"name": "x"}, headers=headers
        )
        self.assertEqual(orphan.status_code, 400)

    def test_change_password(self):
        headers = self.auth_headers()
        short = self.client.post(
            "/api/admin/change-password",
            json={"currentPassword": "admin123", "newPassword": "abc"},
            headers=headers,
        )
        self.assertEqual(short.status_code, 400)

        wrong = self.client.post(
            "/api/admin/change-password",
            json={"currentPassword": "nope", "newPassword": "longer-secret"},
            headers=headers,
        )
        self.assertEqual(wrong.status_code, 401)

        ok = self.client.post(
            "/api/admin/change-password",
            json={"currentPassword": "admin123", "newPassword": "longer-secret"},
            headers=headers,
        )
        self.assertEqual(ok.status_code, 200)
        self.auth_headers(password="longer-secret")

    def test_server_info_and_sync(self):
        headers = self.auth_headers()
        self.upload([("file", ("a.pdf", REPORT, "application/pdf"))])

        info = self.client.get("/api/server-info", headers=headers).json()
        self.assertEqual(info["documents"]["total"], 1)
        self.assertGreaterEqual(info["storage"]["uploads"], len(REPORT))

        get_mirror_client().files["extra.pdf"] = REPORT
        response = self.client.post("/api/admin/sync-mirror", headers=headers)
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["downloaded"], 1)
        self.assertTrue(get_local_store().exists("extra.pdf"))

    def test_sync_reports_unreachable_mirror(self):
        headers = self.auth_headers()
        get_mirror_client().reachable = False
        response = self.client.post("/api/admin/sync-mirror", headers=headers)
        self.assertEqual(response.status_code, 502)


if __name__ == "__main__":
    unittest.main()
