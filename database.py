"""
Persistence for the project document.

The tracker keeps its entire state in one JSON blob stored under a fixed key
in a key-value backend. ``DocumentStore`` owns the in-memory snapshot and is
the only place a project may be replaced or appended; every change is written
back to storage on a best-effort basis.
"""

import logging
import os
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Callable, Dict, List, Optional

from pydantic import ValidationError
from pymongo import MongoClient

from schemas import Document, Project, default_document

logger = logging.getLogger(__name__)

STORAGE_KEY = os.getenv("STORAGE_KEY", "group_project_manager_v1")
DATA_DIR = os.getenv("DATA_DIR", os.path.join(os.getcwd(), "data"))
DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME", "projectsphere")


# -------------------- Key-value backends -------------------- #

class KeyValueStorage(ABC):
    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        pass

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        pass

    def describe(self) -> Dict[str, str]:
        return {"backend": type(self).__name__}


class MemoryStorage(KeyValueStorage):
    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self.records: Dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self.records.get(key)

    def set(self, key: str, value: str) -> None:
        self.records[key] = value


class FileStorage(KeyValueStorage):
    """One ``<key>.json`` file per record inside ``directory``."""

    def __init__(self, directory: str):
        self.directory = Path(directory)

    def _path(self, key: str) -> Path:
        return self.directory / f"{key}.json"

    def get(self, key: str) -> Optional[str]:
        path = self._path(key)
        if not path.exists():
            return None
        return path.read_text(encoding="utf-8")

    def set(self, key: str, value: str) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        path = self._path(key)
        tmp = path.with_suffix(".json.tmp")
        tmp.write_text(value, encoding="utf-8")
        os.replace(tmp, path)

    def describe(self) -> Dict[str, str]:
        return {"backend": "FileStorage", "directory": str(self.directory)}


class MongoStorage(KeyValueStorage):
    """Records live in a collection as ``{_id: key, value: blob}``."""

    def __init__(self, collection):
        self.collection = collection

    def get(self, key: str) -> Optional[str]:
        doc = self.collection.find_one({"_id": key})
        if not doc:
            return None
        return doc.get("value")

    def set(self, key: str, value: str) -> None:
        self.collection.replace_one({"_id": key}, {"_id": key, "value": value}, upsert=True)

    def describe(self) -> Dict[str, str]:
        return {"backend": "MongoStorage", "collection": getattr(self.collection, "name", "?")}


def get_storage() -> KeyValueStorage:
    if DATABASE_URL:
        client = MongoClient(DATABASE_URL)
        return MongoStorage(client[DATABASE_NAME]["documents"])
    return FileStorage(DATA_DIR)


# -------------------- Document store -------------------- #

ProjectTransform = Callable[[Project], Project]


class DocumentStore:
    def __init__(self, storage: KeyValueStorage, key: str = STORAGE_KEY):
        self.storage = storage
        self.key = key
        # Held across read, transform and install.
        self.lock = threading.RLock()
        self._document = self.load()

    @property
    def document(self) -> Document:
        return self._document

    @property
    def projects(self) -> List[Project]:
        return self._document.projects

    def get_project(self, project_id: str) -> Optional[Project]:
        return next((p for p in self._document.projects if p.id == project_id), None)

    def load(self) -> Document:
        """Read the stored document, falling back to the seed document.

        Missing records, unreadable storage and blobs that do not validate as a
        ``Document`` all degrade to ``default_document()``; nothing is raised.
        """
        try:
            raw = self.storage.get(self.key)
        except Exception as exc:
            logger.warning("Storage read failed for %s, using default document: %s", self.key, exc)
            return default_document()
        if not raw:
            logger.info("No stored document under %s, using default document", self.key)
            return default_document()
        try:
            document = Document.model_validate_json(raw)
        except ValidationError as exc:
            logger.warning("Stored document under %s is malformed, using default document: %s",
                           self.key, exc.error_count())
            return default_document()
        logger.info("Loaded %d projects from %s", len(document.projects), self.key)
        return document

    def save(self, document: Document) -> None:
        try:
            self.storage.set(self.key, document.model_dump_json(by_alias=True))
        except Exception as exc:
            logger.warning("Storage write failed for %s, keeping in-memory state: %s", self.key, exc)

    def _commit(self, document: Document) -> Document:
        self._document = document
        self.save(document)
        return document

    def update_project(self, project_id: str, transform: ProjectTransform) -> Document:
        with self.lock:
            current = self._document
            changed = False
            projects = []
            for p in current.projects:
                if p.id == project_id:
                    new = transform(p)
                    changed = new is not p
                    projects.append(new)
                else:
                    projects.append(p)
            if not changed:
                return current
            logger.debug("Updated project %s", project_id)
            return self._commit(current.model_copy(update={"projects": projects}))

    def create_project(self, project: Project) -> Document:
        with self.lock:
            # Document validation rejects an id that is already taken.
            document = Document(projects=[*self._document.projects, project])
            logger.debug("Created project %s", project.id)
            return self._commit(document)

    def reset(self) -> Document:
        logger.info("Resetting %s to default document", self.key)
        with self.lock:
            return self._commit(default_document())
