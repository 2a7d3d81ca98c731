"""
MangaFlow - Project Store.

Single owner of every project, page and panel. The in-memory snapshot is a
tuple of immutable MangaProject objects; each mutation computes a new
snapshot from the *current* one and swaps it in, then rewrites the whole
snapshot to disk.

Storage: SQLite key/value table holding one record (`mangaflow_projects`)
with the JSON array of all projects. Loaded once at startup; a missing or
corrupt record means an empty store.

Mutations are plain synchronous methods. On a single asyncio loop that makes
each one atomic with respect to generation attempts suspended elsewhere, so
concurrent writers to different panels never conflict and writers to the
same field simply land last-writer-wins.
"""

import json
import logging
import os
import sqlite3
from dataclasses import replace
from pathlib import Path
from typing import Callable, Iterable, Optional

from mangaflow.models import (
    MangaPage,
    MangaProject,
    Panel,
    ProjectSpec,
    new_id,
)

logger = logging.getLogger(__name__)

DEFAULT_DATA_DIR = "data"
STORAGE_KEY = "mangaflow_projects"

# Fields a caller may patch directly. Status and image only move through
# the panel state machine (apply_to_panel).
PATCH_FIELDS = ("prompt", "caption")


def data_dir() -> Path:
    """Directory for the database, log file and image cache."""
    return Path(os.environ.get("MANGAFLOW_DATA_DIR", DEFAULT_DATA_DIR))


# ============================================================
# Pure snapshot functions
# ============================================================

def map_project(
    projects: tuple[MangaProject, ...],
    project_id: str,
    fn: Callable[[MangaProject], MangaProject],
) -> tuple[MangaProject, ...]:
    return tuple(fn(p) if p.id == project_id else p for p in projects)


def map_panel(
    projects: tuple[MangaProject, ...],
    project_id: str,
    panel_id: str,
    fn: Callable[[Panel], Panel],
) -> tuple[MangaProject, ...]:
    """New snapshot where only the target panel (and its ancestors) are copied."""
    def update(project: MangaProject) -> MangaProject:
        panel = project.find_panel(panel_id)
        if panel is None:
            return project
        return project.replace_panel(panel_id, fn(panel))

    return map_project(projects, project_id, update)


def normalize_patch(patch: dict) -> dict:
    """Validate patch keys against the editable panel fields."""
    for key, value in patch.items():
        if key not in PATCH_FIELDS:
            raise ValueError(f"Panel field {key!r} cannot be patched directly")
        if not isinstance(value, str):
            raise ValueError(f"Panel field {key!r} must be text")
    return dict(patch)


# ============================================================
# Store
# ============================================================

class ProjectStore:
    """
    Process-lifetime store of all projects.

    Usage:
        store = ProjectStore()
        project = store.create_project(spec)
        store.update_panel(project.id, panel_id, {"caption": "New caption"})
        store.delete_project(project.id)
    """

    def __init__(self, db_path: Path | str | None = None):
        self.db_path = Path(db_path) if db_path else data_dir() / "mangaflow.db"
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()
        self._projects: tuple[MangaProject, ...] = self._load()
        logger.info(f"Project store loaded: {len(self._projects)} projects ({self.db_path})")

    # ------------------------------------------------------------------
    # Database
    # ------------------------------------------------------------------

    def _init_db(self):
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS kv_store (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                )
            """)

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(str(self.db_path))

    def _load(self) -> tuple[MangaProject, ...]:
        try:
            with self._connect() as conn:
                row = conn.execute(
                    "SELECT value FROM kv_store WHERE key=?", (STORAGE_KEY,)
                ).fetchone()
        except sqlite3.Error as e:
            logger.error(f"Failed to read saved projects: {e}")
            return ()

        if row is None:
            return ()

        try:
            records = json.loads(row[0])
        except (TypeError, ValueError) as e:
            logger.error(f"Saved projects are not valid JSON, starting empty: {e}")
            return ()
        if not isinstance(records, list):
            logger.error("Saved projects are not a list, starting empty")
            return ()

        projects = []
        for record in records:
            try:
                projects.append(MangaProject.from_dict(record))
            except (KeyError, TypeError, ValueError, AttributeError) as e:
                logger.warning(f"Skipping malformed saved project: {e}")
        return tuple(projects)

    def _save(self):
        payload = json.dumps([p.to_dict() for p in self._projects])
        try:
            with self._connect() as conn:
                conn.execute(
                    "INSERT OR REPLACE INTO kv_store (key, value) VALUES (?, ?)",
                    (STORAGE_KEY, payload),
                )
        except sqlite3.Error as e:
            logger.error(f"Failed to persist projects: {e}")

    def _commit(self, projects: Iterable[MangaProject]):
        """Swap in a new snapshot and write it out."""
        self._projects = tuple(projects)
        self._save()

    # ------------------------------------------------------------------
    # Reads (always the current snapshot)
    # ------------------------------------------------------------------

    @property
    def projects(self) -> tuple[MangaProject, ...]:
        return self._projects

    def get_project(self, project_id: str) -> Optional[MangaProject]:
        for project in self._projects:
            if project.id == project_id:
                return project
        return None

    def get_panel(self, project_id: str, panel_id: str) -> Optional[Panel]:
        project = self.get_project(project_id)
        return project.find_panel(panel_id) if project else None

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def create_project(self, spec: ProjectSpec) -> MangaProject:
        """Prepend a new project with one page of idle panels."""
        panels = tuple(
            Panel(
                id=new_id(),
                prompt=entry["prompt"],
                caption=entry.get("caption", ""),
            )
            for entry in spec.panels
        )
        project = MangaProject(
            id=new_id(),
            title=spec.title,
            description=spec.description,
            style=spec.style,
            pages=(MangaPage(id=new_id(), panels=panels),),
        )
        self._commit((project,) + self._projects)
        logger.info(f"Project created: '{project.title}' ({project.id}), {len(panels)} panels")
        return project

    def update_panel(self, project_id: str, panel_id: str, patch: dict):
        """Replace only the named fields of one panel."""
        changes = normalize_patch(patch)
        self.apply_to_panel(project_id, panel_id, lambda panel: replace(panel, **changes))

    def apply_to_panel(
        self,
        project_id: str,
        panel_id: str,
        fn: Callable[[Panel], Panel],
    ) -> Optional[Panel]:
        """
        Apply fn to the panel as it is right now and store the result.

        Returns the new panel, or None when the project or panel no longer
        exists (nothing is written in that case).
        """
        if self.get_panel(project_id, panel_id) is None:
            logger.warning(f"Panel {panel_id} in project {project_id} not found; update dropped")
            return None
        self._commit(map_panel(self._projects, project_id, panel_id, fn))
        return self.get_panel(project_id, panel_id)

    def delete_project(self, project_id: str):
        if self.get_project(project_id) is None:
            logger.warning(f"Project {project_id} not found; nothing deleted")
            return
        self._commit(p for p in self._projects if p.id != project_id)
        logger.info(f"Project deleted: {project_id}")
