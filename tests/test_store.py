"""Document store: loading, fallback, persistence and the two mutation primitives."""

from __future__ import annotations

import asyncio
import json
import threading

import pytest
from pydantic import ValidationError

import operations
from database import DocumentStore, FileStorage, MemoryStorage, MongoStorage, STORAGE_KEY
from schemas import Project, default_document


class BrokenStorage(MemoryStorage):
    def __init__(self, fail_reads=False, fail_writes=False):
        super().__init__()
        self.fail_reads = fail_reads
        self.fail_writes = fail_writes

    def get(self, key):
        if self.fail_reads:
            raise OSError("storage offline")
        return super().get(key)

    def set(self, key, value):
        if self.fail_writes:
            raise OSError("quota exceeded")
        super().set(key, value)


class FakeCollection:
    name = "documents"

    def __init__(self):
        self.docs = {}

    def find_one(self, filt):
        return self.docs.get(filt["_id"])

    def replace_one(self, filt, doc, upsert=False):
        assert upsert
        self.docs[filt["_id"]] = doc


def _new_project(pid="p_new"):
    return Project(id=pid, title="Chatbot", description="Helpdesk bot", group="Group C", deadline="2026-01-10")


class TestLoad:
    def test_empty_storage_yields_default(self, store):
        assert [p.id for p in store.projects] == ["p1", "p2"]
        assert store.document == default_document()

    @pytest.mark.parametrize("raw", [
        "{not json",
        "{}",
        json.dumps({"projects": "nope"}),
        json.dumps({"projects": [{"id": "x"}]}),
        json.dumps([1, 2, 3]),
    ])
    def test_malformed_blob_yields_default(self, raw):
        store = DocumentStore(MemoryStorage({STORAGE_KEY: raw}))
        assert [p.id for p in store.projects] == ["p1", "p2"]

    def test_duplicate_project_ids_yield_default(self, store, storage):
        doc = json.loads(default_document().model_dump_json(by_alias=True))
        doc["projects"][1]["id"] = "p1"
        storage.set(STORAGE_KEY, json.dumps(doc))
        assert [p.id for p in DocumentStore(storage).projects] == ["p1", "p2"]

    def test_read_failure_yields_default(self):
        store = DocumentStore(BrokenStorage(fail_reads=True))
        assert store.document == default_document()

    def test_blob_uses_camel_case_keys(self, store, storage):
        store.save(store.document)
        blob = json.loads(storage.get(STORAGE_KEY))
        assert "dueDate" in blob["projects"][0]["milestones"][0]
        assert "submittedAt" in blob["projects"][0]["submission"]


class TestRoundTrip:
    def test_reload_reproduces_projects(self, store, storage):
        operations.toggle_task(store, "p1", "t2")
        operations.add_milestone(store, "p2", "Pilot", "2025-12-15")
        asyncio.run(operations.submit_work(store, "p1", "https://github.com/x/attendance", "v1", delay=0))
        operations.record_evaluation(store, "p1", 91, "Solid work")

        reloaded = DocumentStore(storage)
        assert reloaded.document == store.document
        assert reloaded.get_project("p1").submission.marks == 91

    def test_file_storage_round_trip(self, tmp_path):
        storage = FileStorage(str(tmp_path / "data"))
        store = DocumentStore(storage)
        operations.add_task(store, "p2", "Order sensors", "Neha")

        assert (tmp_path / "data" / f"{STORAGE_KEY}.json").exists()
        assert DocumentStore(FileStorage(str(tmp_path / "data"))).document == store.document

    def test_mongo_storage_round_trip(self):
        collection = FakeCollection()
        store = DocumentStore(MongoStorage(collection))
        operations.toggle_milestone(store, "p1", "m2")

        assert collection.docs[STORAGE_KEY]["_id"] == STORAGE_KEY
        assert DocumentStore(MongoStorage(collection)).document == store.document


class TestSave:
    def test_write_failure_is_swallowed(self):
        store = DocumentStore(BrokenStorage(fail_writes=True))
        operations.toggle_task(store, "p1", "t1")
        # In-memory state stays authoritative.
        assert store.get_project("p1").tasks[0].done is False

    def test_every_mutation_is_persisted(self, store, storage):
        operations.add_task(store, "p1", "Write report", "")
        blob = json.loads(storage.get(STORAGE_KEY))
        assert blob["projects"][0]["tasks"][-1]["text"] == "Write report"


class TestPrimitives:
    def test_update_project_replaces_only_target(self, store):
        before = store.document
        after = store.update_project("p1", lambda p: p.model_copy(update={"title": "Renamed"}))

        assert after is store.document
        assert after.projects[0].title == "Renamed"
        assert after.projects[1] is before.projects[1]
        assert before.projects[0].title == "AI Attendance System"

    def test_update_unknown_project_is_noop(self, store, storage):
        before = store.document
        after = store.update_project("nope", lambda p: p.model_copy(update={"title": "X"}))
        assert after is before
        assert storage.get(STORAGE_KEY) is None

    def test_create_project_appends(self, store):
        store.create_project(_new_project())
        assert [p.id for p in store.projects] == ["p1", "p2", "p_new"]

    def test_create_project_rejects_taken_id(self, store):
        with pytest.raises(ValidationError):
            store.create_project(_new_project("p1"))
        assert len(store.projects) == 2

    def test_reset_restores_default(self, store):
        store.create_project(_new_project())
        store.reset()
        assert store.document == default_document()


class TestBrowserBlob:
    def _blob(self, marks):
        doc = json.loads(default_document().model_dump_json(by_alias=True))
        doc["projects"][0]["title"] = "Attendance v2"
        doc["projects"][0]["status"] = "Submitted"
        doc["projects"][0]["submission"] = {
            "link": "https://github.com/x/attendance",
            "note": "",
            "submittedAt": "2025-12-01T10:00:00.000Z",
            "marks": marks,
            "remark": "",
        }
        return json.dumps(doc)

    def test_empty_marks_box_loads_as_ungraded(self):
        store = DocumentStore(MemoryStorage({STORAGE_KEY: self._blob("")}))
        project = store.get_project("p1")
        assert project.title == "Attendance v2"
        assert project.submission.marks is None
        assert project.submission.submitted_at is not None

    def test_marks_typed_as_text_are_numbers(self):
        store = DocumentStore(MemoryStorage({STORAGE_KEY: self._blob("88")}))
        assert store.get_project("p1").submission.marks == 88

    def test_out_of_range_marks_still_reset(self):
        store = DocumentStore(MemoryStorage({STORAGE_KEY: self._blob("140")}))
        assert store.get_project("p1").title == "AI Attendance System"


class TestConcurrentMutations:
    def test_parallel_task_additions_are_all_kept(self, store, storage):
        def worker(n):
            for i in range(100):
                operations.add_task(store, "p2", f"worker {n} task {i}")

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        tasks = store.get_project("p2").tasks
        assert len(tasks) == 802
        assert len({t.id for t in tasks}) == 802
        assert len(DocumentStore(storage).get_project("p2").tasks) == 802

    def test_parallel_project_creation(self, store):
        def worker():
            for _ in range(20):
                operations.create_project(store, "Robotics", "Line follower", "Group C", "2026-02-01")

        threads = [threading.Thread(target=worker) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(store.projects) == 82
