"""
MangaFlow - Studio.

The surface a UI (or the CLI) talks to. Wires the storyline generator,
project store, panel generator and image client together, and tracks
which project is selected.

Bulk generation started by on_create_project runs as a background asyncio
task; drain() waits for all of them.
"""

import asyncio
import logging
from typing import Optional

from mangaflow.models import MangaProject, MangaStyle, PanelStatus, ProjectSpec
from mangaflow.modelscope_client import ModelScopeClient
from mangaflow.panel_generator import BulkResult, PanelGenerator
from mangaflow.project_store import ProjectStore
from mangaflow.storyline import StorylineError, generate_storyline

logger = logging.getLogger(__name__)


class MangaStudio:
    """
    Usage:
        studio = MangaStudio()
        project = await studio.on_create_project("Neon Horizon", "A courier...", "CLASSIC_SHONEN")
        await studio.drain()
        await studio.close()
    """

    def __init__(
        self,
        store: Optional[ProjectStore] = None,
        image_client=None,
        storyline=generate_storyline,
    ):
        self.store = store or ProjectStore()
        self._image_client = image_client
        self._generator: Optional[PanelGenerator] = None
        self._storyline = storyline
        self.current_project_id: Optional[str] = None
        self._bulk_tasks: set[asyncio.Task] = set()

    @property
    def image_client(self):
        """Created on first use so read-only callers never need an API key."""
        if self._image_client is None:
            self._image_client = ModelScopeClient()
        return self._image_client

    @property
    def generator(self) -> PanelGenerator:
        if self._generator is None:
            self._generator = PanelGenerator(self.store, self.image_client)
        return self._generator

    @property
    def projects(self) -> tuple[MangaProject, ...]:
        return self.store.projects

    @property
    def current_project(self) -> Optional[MangaProject]:
        if self.current_project_id is None:
            return None
        return self.store.get_project(self.current_project_id)

    def select_project(self, project_id: Optional[str]):
        if project_id is not None and self.store.get_project(project_id) is None:
            raise KeyError(f"Unknown project: {project_id}")
        self.current_project_id = project_id

    async def on_create_project(
        self,
        title: str,
        premise: str,
        style=MangaStyle.CLASSIC_SHONEN,
        generate: bool = True,
    ) -> Optional[MangaProject]:
        """
        Create a project from a premise and start generating its panels.

        Returns the stored project (all panels idle at this point), or None
        when the storyline could not be built; nothing is stored then.
        """
        if not premise.strip():
            logger.warning("Project creation needs a premise")
            return None

        style = MangaStyle.parse(style)
        try:
            storyline = await self._storyline(premise, style)
        except StorylineError as e:
            logger.error(f"Storyline generation failed, project not created: {e}")
            return None

        project = self.store.create_project(ProjectSpec(
            title=title.strip() or storyline["title"],
            description=premise.strip(),
            style=style,
            panels=tuple(storyline["panels"]),
        ))
        self.current_project_id = project.id

        if generate:
            self.start_bulk_generation(project.id)
        return project

    def start_bulk_generation(self, project_id: str) -> asyncio.Task:
        task = asyncio.create_task(self.generator.generate_all_panels(project_id))
        self._bulk_tasks.add(task)
        task.add_done_callback(self._bulk_tasks.discard)
        return task

    async def drain(self) -> list[BulkResult]:
        """Wait for every running bulk pass to finish."""
        results = []
        while self._bulk_tasks:
            tasks = list(self._bulk_tasks)
            results.extend(await asyncio.gather(*tasks))
            self._bulk_tasks.difference_update(tasks)
        return results

    async def on_regenerate_panel(self, project_id: str, panel_id: str) -> Optional[PanelStatus]:
        return await self.generator.regenerate_panel(project_id, panel_id)

    def on_update_panel(self, panel_id: str, caption: Optional[str] = None, prompt: Optional[str] = None):
        """Edit caption and/or prompt of a panel in the selected project."""
        if self.current_project_id is None:
            logger.warning("No project selected; panel update ignored")
            return
        patch = {}
        if caption is not None:
            patch["caption"] = caption
        if prompt is not None:
            patch["prompt"] = prompt
        if patch:
            self.store.update_panel(self.current_project_id, panel_id, patch)

    def on_delete_project(self, project_id: str):
        self.store.delete_project(project_id)
        if self.current_project_id == project_id:
            self.current_project_id = None

    async def close(self):
        await self.drain()
        if self._image_client is not None:
            await self._image_client.close()
