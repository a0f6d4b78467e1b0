import os
import sys
import unittest


ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
SRC = os.path.join(ROOT, "src")
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)
if SRC not in sys.path:
    sys.path.insert(0, SRC)

from app.stores import MemoryRecordStore
from model_errors import InvalidRecord, RecordNotFound
from record_service import RecordService
from schema_validator import validate_and_normalize


def _model(**overrides):
    raw = {
        "name": "Task",
        "fields": [
            {"name": "title", "type": "string", "required": True},
            {"name": "points", "type": "number", "default": 1},
            {"name": "done", "type": "boolean", "default": False},
            {"name": "due", "type": "date"},
        ],
        "rbac": {"Manager": ["create", "read"]},
    }
    raw.update(overrides)
    return validate_and_normalize(raw)


class TestRecordService(unittest.TestCase):
    def setUp(self) -> None:
        self.store = MemoryRecordStore()
        self.service = RecordService(self.store)

    def test_create_assigns_id_defaults_and_timestamps(self) -> None:
        record = self.service.create("Task", {"title": "buy milk"}, "u1", _model())
        self.assertTrue(record["id"])
        self.assertEqual(record["title"], "buy milk")
        self.assertEqual(record["points"], 1)
        self.assertIs(record["done"], False)
        self.assertEqual(record["createdAt"], record["updatedAt"])
        self.assertEqual(self.service.find_by_id("task", record["id"]), record)

    def test_create_ignores_client_id(self) -> None:
        record = self.service.create("Task", {"id": "mine", "title": "x"}, "u1", _model())
        self.assertNotEqual(record["id"], "mine")

    def test_timestamps_disabled(self) -> None:
        record = self.service.create("Task", {"title": "x"}, "u1", _model(timestamps=False))
        self.assertNotIn("createdAt", record)
        self.assertNotIn("updatedAt", record)

    def test_create_coerces_and_passes_extra_fields(self) -> None:
        record = self.service.create("Task", {"title": "x", "points": "5", "done": "true", "color": "red"}, "u1", _model())
        self.assertEqual(record["points"], 5)
        self.assertIs(record["done"], True)
        self.assertEqual(record["color"], "red")

    def test_required_is_advisory(self) -> None:
        record = self.service.create("Task", {}, "u1", _model())
        self.assertNotIn("title", record)

    def test_invalid_value_rejected(self) -> None:
        with self.assertRaises(InvalidRecord) as ctx:
            self.service.create("Task", {"title": "x", "due": "someday"}, "u1", _model())
        self.assertEqual(ctx.exception.path, "due")
        with self.assertRaises(InvalidRecord):
            self.service.create("Task", ["not", "an", "object"], "u1", _model())
        self.assertEqual(self.service.find_all("Task"), [])

    def test_owner_field_stamped_with_caller(self) -> None:
        model = _model(ownerField="userId")
        record = self.service.create("Task", {"title": "x"}, "u1", model)
        self.assertEqual(record["userId"], "u1")
        forged = self.service.create("Task", {"title": "y", "userId": "u7"}, "u1", model, "Manager")
        self.assertEqual(forged["userId"], "u1")
        on_behalf = self.service.create("Task", {"title": "z", "userId": "u7"}, "admin-1", model, "Admin")
        self.assertEqual(on_behalf["userId"], "u7")

    def test_owner_field_kept_on_update(self) -> None:
        model = _model(ownerField="userId")
        record = self.service.create("Task", {"title": "x"}, "u1", model, "Manager")
        updated = self.service.update("Task", record["id"], {"title": "y", "userId": "u2"}, model, "Manager")
        self.assertEqual(updated["title"], "y")
        self.assertEqual(updated["userId"], "u1")
        reassigned = self.service.update("Task", record["id"], {"userId": "u2"}, model, "Admin")
        self.assertEqual(reassigned["userId"], "u2")

    def test_find_all_scoped_by_model_key(self) -> None:
        self.service.create("Task", {"title": "a"}, "u1", _model())
        self.service.create("TASK", {"title": "b"}, "u2", _model())
        self.service.create("Note", {"title": "c"}, "u1", _model(name="Note"))
        titles = sorted(r["title"] for r in self.service.find_all("task", "u1", "Manager", _model()))
        self.assertEqual(titles, ["a", "b"])

    def test_update_shallow_merge(self) -> None:
        model = _model()
        record = self.service.create("Task", {"title": "a", "due": "2026-01-01"}, "u1", model)
        updated = self.service.update("Task", record["id"], {"points": "3", "createdAt": "1999-01-01"}, model)
        self.assertEqual(updated["title"], "a")
        self.assertEqual(updated["due"], "2026-01-01")
        self.assertEqual(updated["points"], 3)
        self.assertEqual(updated["createdAt"], record["createdAt"])
        self.assertGreaterEqual(updated["updatedAt"], record["updatedAt"])
        self.assertEqual(updated["id"], record["id"])

    def test_update_missing_raises(self) -> None:
        with self.assertRaises(RecordNotFound):
            self.service.update("Task", "nope", {"title": "x"}, _model())

    def test_delete(self) -> None:
        record = self.service.create("Task", {"title": "a"}, "u1", _model())
        self.service.delete("Task", record["id"])
        self.assertIsNone(self.service.find_by_id("Task", record["id"]))
        with self.assertRaises(RecordNotFound):
            self.service.delete("Task", record["id"])


if __name__ == "__main__":
    unittest.main()
