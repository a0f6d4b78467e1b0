import json
import os
import sys
import unittest


ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
SRC = os.path.join(ROOT, "src")
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)
if SRC not in sys.path:
    sys.path.insert(0, SRC)

from fastapi.testclient import TestClient
from jose import jwt

from app.main import create_app
from app.settings import Settings
from app.stores import MemoryRecordStore
from descriptor_store import MemoryDescriptorStore
from model_errors import CollaboratorFailure

SECRET = "api-test-secret"

TASK_MODEL = {
    "name": "Task",
    "fields": [{"name": "title", "type": "string", "required": True}],
    "rbac": {"Manager": ["create", "read"]},
}

NOTE_MODEL = {
    "name": "Note",
    "fields": [{"name": "body", "type": "string"}, {"name": "userId", "type": "string"}],
    "ownerField": "userId",
    "rbac": {"Manager": ["create", "read", "update", "delete"]},
}


def _headers(user_id: str, role: str) -> dict:
    token = jwt.encode({"sub": user_id, "role": role}, SECRET, algorithm="HS256")
    return {"Authorization": f"Bearer {token}"}


ADMIN = _headers("admin-1", "Admin")
MANAGER_1 = _headers("u1", "Manager")
MANAGER_2 = _headers("u2", "Manager")


class ExplodingRecordStore(MemoryRecordStore):
    def find_all(self, model_key: str) -> list[dict]:
        raise CollaboratorFailure("record store unavailable")

    def insert(self, model_key: str, record: dict) -> dict:
        raise RuntimeError("boom")


class ApiTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.descriptors = MemoryDescriptorStore()
        self.records = MemoryRecordStore()
        self.app = create_app(
            Settings(jwt_secret=SECRET),
            descriptor_store=self.descriptors,
            record_store=self.records,
        )
        self.client = TestClient(self.app)

    def _publish(self, model: dict) -> dict:
        res = self.client.post("/api/models", json=model, headers=ADMIN)
        self.assertEqual(res.status_code, 201, res.json())
        return res.json()["data"]


class TestAuthEnvelope(ApiTestCase):
    def test_health_is_public(self) -> None:
        res = self.client.get("/health")
        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.json(), {"ok": True, "models": 0})

    def test_missing_token(self) -> None:
        res = self.client.get("/api/models")
        self.assertEqual(res.status_code, 401)
        body = res.json()
        self.assertFalse(body["ok"])
        self.assertEqual(body["error"], "Authentication required")
        self.assertEqual(body["errors"][0]["code"], "AUTH_REQUIRED")

    def test_invalid_token(self) -> None:
        res = self.client.get("/api/models", headers={"Authorization": "Bearer junk"})
        self.assertEqual(res.status_code, 401)
        self.assertEqual(res.json()["errors"][0]["code"], "AUTH_INVALID_TOKEN")

    def test_me(self) -> None:
        res = self.client.get("/api/auth/me", headers=MANAGER_1)
        self.assertEqual(res.json()["data"], {"id": "u1", "role": "Manager", "email": None})

    def test_disabled_auth_acts_as_admin(self) -> None:
        app = create_app(Settings(disable_auth=True), descriptor_store=MemoryDescriptorStore(), record_store=MemoryRecordStore())
        client = TestClient(app)
        res = client.post("/api/models", json=TASK_MODEL)
        self.assertEqual(res.status_code, 201, res.json())


class TestModelEndpoints(ApiTestCase):
    def test_publish_requires_admin(self) -> None:
        res = self.client.post("/api/models", json=TASK_MODEL, headers=MANAGER_1)
        self.assertEqual(res.status_code, 403)
        self.assertEqual(self.descriptors.list_all(), [])

    def test_publish_normalizes_and_persists(self) -> None:
        model = self._publish(TASK_MODEL)
        self.assertEqual(model["tableName"], "tasks")
        self.assertTrue(model["timestamps"])
        self.assertEqual(json.loads(self.descriptors.read_one("task"))["name"], "Task")

    def test_publish_duplicate_rejected(self) -> None:
        self._publish(TASK_MODEL)
        res = self.client.post("/api/models", json={**TASK_MODEL, "name": "TASK"}, headers=ADMIN)
        self.assertEqual(res.status_code, 400)
        self.assertEqual(res.json()["errors"][0]["code"], "MODEL_EXISTS")

    def test_invalid_schema(self) -> None:
        bad = {**TASK_MODEL, "fields": [{"name": "title", "type": "text"}]}
        res = self.client.post("/api/models", json=bad, headers=ADMIN)
        self.assertEqual(res.status_code, 400)
        body = res.json()
        self.assertEqual(body["errors"][0]["code"], "INVALID_SCHEMA")
        self.assertIn("invalid field type", body["error"])
        self.assertEqual(self.client.get("/api/models", headers=ADMIN).json()["count"], 0)

    def test_malformed_json(self) -> None:
        res = self.client.post("/api/models", content=b"{nope", headers={**ADMIN, "Content-Type": "application/json"})
        self.assertEqual(res.status_code, 400)
        self.assertEqual(res.json()["errors"][0]["code"], "INVALID_SCHEMA")

    def test_reserved_names(self) -> None:
        res = self.client.post("/api/models", json={**TASK_MODEL, "name": "Models"}, headers=ADMIN)
        self.assertEqual(res.status_code, 400)

    def test_list_and_get(self) -> None:
        self._publish(TASK_MODEL)
        listing = self.client.get("/api/models", headers=MANAGER_1).json()
        self.assertEqual(listing["count"], 1)
        summary = listing["data"][0]
        self.assertEqual(summary["name"], "Task")
        self.assertEqual(summary["fieldCount"], 1)
        res = self.client.get("/api/models/tAsK", headers=MANAGER_1)
        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.json()["data"]["rbac"], {"Manager": ["create", "read"]})
        self.assertEqual(self.client.get("/api/models/nope", headers=MANAGER_1).status_code, 404)

    def test_update_preserves_created_at(self) -> None:
        first = self._publish(TASK_MODEL)
        changed = {**TASK_MODEL, "rbac": {"Manager": ["all"]}}
        res = self.client.put("/api/models/task", json=changed, headers=ADMIN)
        self.assertEqual(res.status_code, 200, res.json())
        model = res.json()["data"]
        self.assertEqual(model["createdAt"], first["createdAt"])
        self.assertGreater(model["updatedAt"], first["updatedAt"])
        self.assertEqual(model["rbac"], {"Manager": ["all"]})
        self.assertEqual(self.client.put("/api/models/ghost", json=changed, headers=ADMIN).status_code, 404)

    def test_delete_model_keeps_orphan_records(self) -> None:
        self._publish(TASK_MODEL)
        created = self.client.post("/api/Task", json={"title": "keep me"}, headers=MANAGER_1).json()["data"]
        res = self.client.delete("/api/models/Task", headers=ADMIN)
        self.assertEqual(res.status_code, 200)
        self.assertEqual(self.client.get("/api/Task", headers=MANAGER_1).status_code, 404)
        self.assertEqual(self.client.delete("/api/models/Task", headers=ADMIN).status_code, 404)
        self._publish(TASK_MODEL)
        records = self.client.get("/api/task", headers=MANAGER_1).json()["data"]
        self.assertEqual([r["id"] for r in records], [created["id"]])


class TestRecordEndpoints(ApiTestCase):
    def test_end_to_end_task_scenario(self) -> None:
        self._publish(TASK_MODEL)
        res = self.client.post("/api/Task", json={"title": "buy milk"}, headers=MANAGER_1)
        self.assertEqual(res.status_code, 201, res.json())
        listing = self.client.get("/api/Task", headers=MANAGER_1).json()
        self.assertEqual(listing["count"], 1)
        record = listing["data"][0]
        self.assertEqual(record["title"], "buy milk")
        self.assertTrue(record["id"])
        res = self.client.delete(f"/api/Task/{record['id']}", headers=MANAGER_1)
        self.assertEqual(res.status_code, 403)
        self.assertEqual(res.json()["errors"][0]["code"], "FORBIDDEN")
        self.assertEqual(self.client.get("/api/Task", headers=MANAGER_1).json()["count"], 1)

    def test_unknown_model(self) -> None:
        for method, path in (("get", "/api/ghost"), ("post", "/api/ghost"), ("get", "/api/ghost/1"), ("delete", "/api/ghost/1")):
            res = getattr(self.client, method)(path, headers=ADMIN)
            self.assertEqual(res.status_code, 404, path)
            self.assertEqual(res.json()["errors"][0]["code"], "MODEL_NOT_FOUND")

    def test_unknown_role_denied(self) -> None:
        self._publish(TASK_MODEL)
        res = self.client.get("/api/Task", headers=_headers("x", "Guest"))
        self.assertEqual(res.status_code, 403)

    def test_get_one_and_missing(self) -> None:
        self._publish(TASK_MODEL)
        created = self.client.post("/api/Task", json={"title": "plain"}, headers=MANAGER_1).json()["data"]
        self.assertEqual(created["title"], "plain")
        res = self.client.get(f"/api/task/{created['id']}", headers=MANAGER_2)
        self.assertEqual(res.json()["data"], created)
        missing = self.client.get("/api/task/does-not-exist", headers=MANAGER_1)
        self.assertEqual(missing.status_code, 404)
        self.assertEqual(missing.json()["errors"][0]["code"], "RECORD_NOT_FOUND")

    def test_ownership_gate(self) -> None:
        self._publish(NOTE_MODEL)
        created = self.client.post("/api/Note", json={"body": "mine"}, headers=MANAGER_1).json()["data"]
        self.assertEqual(created["userId"], "u1")
        record_id = created["id"]

        res = self.client.put(f"/api/Note/{record_id}", json={"body": "hijack"}, headers=MANAGER_2)
        self.assertEqual(res.status_code, 403)
        res = self.client.delete(f"/api/Note/{record_id}", headers=MANAGER_2)
        self.assertEqual(res.status_code, 403)

        res = self.client.put(f"/api/Note/{record_id}", json={"body": "edited", "userId": "u2"}, headers=MANAGER_1)
        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.json()["data"]["body"], "edited")
        self.assertEqual(res.json()["data"]["userId"], "u1")

        # visibility is not restricted by ownership
        self.assertEqual(self.client.get("/api/Note", headers=MANAGER_2).json()["count"], 1)

        res = self.client.delete(f"/api/Note/{record_id}", headers=ADMIN)
        self.assertEqual(res.status_code, 200)
        self.assertEqual(self.client.get("/api/Note", headers=ADMIN).json()["count"], 0)

    def test_body_is_the_record(self) -> None:
        self._publish({"name": "Envelope", "fields": [{"name": "record", "type": "json"}], "rbac": {"Manager": ["all"]}})
        res = self.client.post("/api/Envelope", json={"record": {"a": 1}}, headers=MANAGER_1)
        self.assertEqual(res.status_code, 201, res.json())
        created = res.json()["data"]
        self.assertEqual(created["record"], {"a": 1})
        self.assertNotIn("a", created)
        res = self.client.put(f"/api/Envelope/{created['id']}", json={"record": {"b": 2}}, headers=MANAGER_1)
        self.assertEqual(res.json()["data"]["record"], {"b": 2})

    def test_mutating_missing_record(self) -> None:
        self._publish(NOTE_MODEL)
        self._publish({**TASK_MODEL, "name": "Chore", "rbac": {"Manager": ["all"]}})
        self.assertEqual(self.client.put("/api/Note/nope", json={"body": "x"}, headers=MANAGER_1).status_code, 404)
        self.assertEqual(self.client.put("/api/Chore/nope", json={"title": "x"}, headers=MANAGER_1).status_code, 404)
        self.assertEqual(self.client.delete("/api/Chore/nope", headers=ADMIN).status_code, 404)

    def test_invalid_record_value(self) -> None:
        self._publish({**TASK_MODEL, "fields": [{"name": "points", "type": "number"}]})
        res = self.client.post("/api/Task", json={"points": "lots"}, headers=MANAGER_1)
        self.assertEqual(res.status_code, 400)
        self.assertEqual(res.json()["errors"][0]["code"], "INVALID_RECORD")


class TestStartupAndFailures(unittest.TestCase):
    def test_startup_loads_descriptors_and_reports_failures(self) -> None:
        descriptors = MemoryDescriptorStore({"task": json.dumps(TASK_MODEL), "broken": "{"})
        app = create_app(Settings(jwt_secret=SECRET), descriptor_store=descriptors, record_store=MemoryRecordStore())
        with TestClient(app) as client:
            self.assertEqual(client.get("/health").json()["models"], 1)
            self.assertEqual(client.get("/api/Task", headers=MANAGER_1).status_code, 200)
            result = app.state.load_result
            self.assertEqual(result.loaded, ["Task"])
            self.assertEqual([name for name, _ in result.failures], ["broken"])

    def test_collaborator_failures(self) -> None:
        app = create_app(Settings(jwt_secret=SECRET), descriptor_store=MemoryDescriptorStore(), record_store=ExplodingRecordStore())
        client = TestClient(app, raise_server_exceptions=False)
        self.assertEqual(client.post("/api/models", json=TASK_MODEL, headers=ADMIN).status_code, 201)

        res = client.get("/api/Task", headers=MANAGER_1)
        self.assertEqual(res.status_code, 500)
        self.assertEqual(res.json()["errors"][0]["code"], "COLLABORATOR_FAILURE")

        res = client.post("/api/Task", json={"title": "x"}, headers=MANAGER_1)
        self.assertEqual(res.status_code, 500)
        body = res.json()
        self.assertEqual(body["errors"][0]["code"], "INTERNAL_ERROR")
        self.assertEqual(body["error"], "Unexpected server error")


if __name__ == "__main__":
    unittest.main()
