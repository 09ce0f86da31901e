"""Project document store.

Every workflow mutation goes through :meth:`patch_project`, which loads the
current document, applies a transform and persists the result as one unit.
The in-memory store serialises patches behind a re-entrant lock; the
PostgreSQL store uses a ``version`` column for optimistic concurrency and
retries the whole cycle when another writer wins.
"""

from __future__ import annotations

import copy
import json
import logging
import threading
from typing import Any, Callable, Dict, List, Optional, Protocol

from config.settings import settings
from models.checklist import utc_now
from models.project import Project
from services.errors import ConcurrencyConflictError, ProjectNotFoundError

logger = logging.getLogger(__name__)

ProjectUpdater = Callable[[Project], Optional[Project]]

DDL = """
CREATE SCHEMA IF NOT EXISTS proc;

CREATE TABLE IF NOT EXISTS proc.sourcing_projects (
    id TEXT PRIMARY KEY,
    document JSONB NOT NULL,
    version INTEGER NOT NULL DEFAULT 0,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE INDEX IF NOT EXISTS sourcing_projects_updated_idx
    ON proc.sourcing_projects (updated_at DESC);
"""


class ProjectRepository(Protocol):
    def get_project_by_id(self, project_id: str) -> Optional[Project]: ...

    def save_project(self, project: Project) -> Project: ...

    def patch_project(self, project_id: str, updater: ProjectUpdater) -> Project: ...

    def list_projects(self) -> List[Project]: ...

    def delete_project(self, project_id: str) -> bool: ...


def _apply(project: Project, updater: ProjectUpdater) -> Project:
    updated = updater(project)
    if updated is None:
        updated = project
    updated.version = project.version + 1
    updated.updated_at = utc_now()
    return updated


class InMemoryProjectRepository:
    """Process-local store holding serialised project documents."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._documents: Dict[str, Dict[str, Any]] = {}

    def get_project_by_id(self, project_id: str) -> Optional[Project]:
        with self._lock:
            document = self._documents.get(project_id)
            if document is None:
                return None
            return Project.from_document(copy.deepcopy(document))

    def save_project(self, project: Project) -> Project:
        with self._lock:
            self._documents[project.id] = project.to_document()
        return project

    def patch_project(self, project_id: str, updater: ProjectUpdater) -> Project:
        with self._lock:
            current = self.get_project_by_id(project_id)
            if current is None:
                raise ProjectNotFoundError(project_id)
            updated = _apply(current, updater)
            self._documents[project_id] = updated.to_document()
            return updated

    def list_projects(self) -> List[Project]:
        with self._lock:
            projects = [Project.from_document(copy.deepcopy(doc)) for doc in self._documents.values()]
        return sorted(projects, key=lambda item: item.updated_at, reverse=True)

    def delete_project(self, project_id: str) -> bool:
        with self._lock:
            return self._documents.pop(project_id, None) is not None


class PostgresProjectRepository:
    """Projects stored as JSONB documents in ``proc.sourcing_projects``."""

    def __init__(
        self,
        *,
        conn_factory: Optional[Callable[[], Any]] = None,
        max_retries: Optional[int] = None,
    ) -> None:
        if conn_factory is None:
            from services.db import get_conn

            conn_factory = get_conn
        self._conn_factory = conn_factory
        self.max_retries = max_retries or settings.project_patch_max_retries
        self._schema_ready = False

    def init_schema(self) -> None:
        with self._conn_factory() as conn:
            cur = conn.cursor()
            for statement in filter(None, (stmt.strip() for stmt in DDL.split(";"))):
                cur.execute(statement)
            cur.close()
            conn.commit()
        self._schema_ready = True

    def _ensure_schema(self) -> None:
        if not self._schema_ready:
            self.init_schema()

    @staticmethod
    def _load_document(raw: Any) -> Dict[str, Any]:
        if isinstance(raw, dict):
            return raw
        if isinstance(raw, (bytes, bytearray)):
            raw = raw.decode()
        return json.loads(raw)

    def _fetch(self, project_id: str) -> Optional[Project]:
        with self._conn_factory() as conn:
            cur = conn.cursor()
            cur.execute(
                "SELECT document, version FROM proc.sourcing_projects WHERE id=%s",
                (project_id,),
            )
            row = cur.fetchone()
            cur.close()
        if not row:
            return None
        project = Project.from_document(self._load_document(row[0]))
        project.version = int(row[1])
        return project

    def get_project_by_id(self, project_id: str) -> Optional[Project]:
        self._ensure_schema()
        return self._fetch(project_id)

    def save_project(self, project: Project) -> Project:
        self._ensure_schema()
        with self._conn_factory() as conn:
            cur = conn.cursor()
            cur.execute(
                """
                INSERT INTO proc.sourcing_projects (id, document, version, created_at, updated_at)
                VALUES (%s, %s, %s, %s, %s)
                ON CONFLICT (id) DO UPDATE
                SET document = EXCLUDED.document,
                    version = EXCLUDED.version,
                    updated_at = EXCLUDED.updated_at
                """,
                (
                    project.id,
                    json.dumps(project.to_document()),
                    project.version,
                    project.created_at,
                    project.updated_at,
                ),
            )
            cur.close()
            conn.commit()
        return project

    def patch_project(self, project_id: str, updater: ProjectUpdater) -> Project:
        self._ensure_schema()
        for attempt in range(1, self.max_retries + 1):
            current = self._fetch(project_id)
            if current is None:
                raise ProjectNotFoundError(project_id)
            expected_version = current.version
            updated = _apply(current, updater)
            with self._conn_factory() as conn:
                cur = conn.cursor()
                cur.execute(
                    """
                    UPDATE proc.sourcing_projects
                    SET document=%s, version=%s, updated_at=%s
                    WHERE id=%s AND version=%s
                    """,
                    (
                        json.dumps(updated.to_document()),
                        updated.version,
                        updated.updated_at,
                        project_id,
                        expected_version,
                    ),
                )
                rowcount = cur.rowcount
                cur.close()
                conn.commit()
            if rowcount == 1:
                return updated
            logger.warning(
                "Version conflict patching project %s (attempt %s/%s)",
                project_id,
                attempt,
                self.max_retries,
            )
        raise ConcurrencyConflictError(project_id, self.max_retries)

    def list_projects(self) -> List[Project]:
        self._ensure_schema()
        with self._conn_factory() as conn:
            cur = conn.cursor()
            cur.execute(
                "SELECT document, version FROM proc.sourcing_projects ORDER BY updated_at DESC"
            )
            rows = cur.fetchall()
            cur.close()
        projects: List[Project] = []
        for document, version in rows:
            project = Project.from_document(self._load_document(document))
            project.version = int(version)
            projects.append(project)
        return projects

    def delete_project(self, project_id: str) -> bool:
        self._ensure_schema()
        with self._conn_factory() as conn:
            cur = conn.cursor()
            cur.execute("DELETE FROM proc.sourcing_projects WHERE id=%s", (project_id,))
            deleted = cur.rowcount
            cur.close()
            conn.commit()
        return bool(deleted)


def build_project_repository() -> ProjectRepository:
    """Return the PostgreSQL store when a database is configured."""

    from services.db import database_configured

    if database_configured():
        return PostgresProjectRepository()
    logger.info("No database configured; using in-memory project repository")
    return InMemoryProjectRepository()
