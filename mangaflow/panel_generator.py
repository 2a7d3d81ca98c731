"""
MangaFlow - Panel generator.

Runs generation attempts against the project store:

- regenerate_panel(): one attempt for one panel
  (mark generating -> generate image -> mark completed/error)
- generate_all_panels(): the bulk pass run after a project is created.
  Panels go strictly one at a time, in page order, to stay inside the
  image service's rate limits. A failed panel does not stop the run.

Nothing read from the store is reused across an await: prompt and style
are read again right before each attempt, and the outcome is written
through apply_to_panel against whatever the panel looks like by then.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from mangaflow.models import PanelStatus
from mangaflow.panel_state import InvalidTransitionError, finish_generation, start_generation
from mangaflow.project_store import ProjectStore

logger = logging.getLogger(__name__)


@dataclass
class BulkResult:
    """Outcome counts of one bulk pass."""
    project_id: str
    completed: int = 0
    failed: int = 0
    skipped: int = 0

    @property
    def attempted(self) -> int:
        return self.completed + self.failed


class PanelGenerator:
    """Drives the image client for panels held in a ProjectStore."""

    def __init__(self, store: ProjectStore, image_client):
        self.store = store
        self.image_client = image_client

    async def regenerate_panel(self, project_id: str, panel_id: str) -> Optional[PanelStatus]:
        """
        Run one generation attempt for a panel.

        Returns:
            The panel's status after the attempt, or None if the panel
            (or its project) no longer exists.
        """
        panel = self.store.apply_to_panel(project_id, panel_id, start_generation)
        if panel is None:
            return None

        image_url = None
        try:
            project = self.store.get_project(project_id)
            if project is not None:
                image_url = await self.image_client.generate_panel_image(panel.prompt, project.style.value)
        except Exception as e:
            # The panel must still leave GENERATING
            logger.error(f"Panel {panel_id} generation raised {type(e).__name__}: {e}")

        # Re-read through the store: the panel may have been edited, regenerated
        # or deleted while the attempt was in flight.
        finished = self.store.apply_to_panel(
            project_id, panel_id, lambda current: finish_generation(current, image_url)
        )
        if finished is None:
            logger.warning(f"Panel {panel_id} disappeared during generation; result discarded")
            return None

        logger.info(f"Panel {panel_id} -> {finished.status.value}")
        return finished.status

    async def generate_all_panels(self, project_id: str) -> BulkResult:
        """Generate every panel of the project's page, one after another."""
        result = BulkResult(project_id=project_id)
        project = self.store.get_project(project_id)
        if project is None:
            logger.warning(f"Project {project_id} not found; bulk generation skipped")
            return result

        panel_ids = [panel.id for panel in project.panels]
        logger.info(f"Bulk generation for '{project.title}': {len(panel_ids)} panels")

        for i, panel_id in enumerate(panel_ids, 1):
            if self.store.get_project(project_id) is None:
                logger.warning(f"Project {project_id} deleted; stopping after {i - 1} panels")
                result.skipped += len(panel_ids) - (i - 1)
                break

            logger.info(f"Generating panel {i}/{len(panel_ids)}")
            try:
                status = await self.regenerate_panel(project_id, panel_id)
            except InvalidTransitionError as e:
                logger.error(f"Panel {i} skipped: {e}")
                status = None
            except Exception as e:
                logger.error(f"Panel {i} failed with {type(e).__name__}: {e}")
                status = PanelStatus.ERROR

            if status == PanelStatus.COMPLETED:
                result.completed += 1
            elif status == PanelStatus.ERROR:
                result.failed += 1
            else:
                result.skipped += 1

        logger.info(
            f"Bulk generation done: {result.completed} completed, "
            f"{result.failed} failed, {result.skipped} skipped"
        )
        return result
