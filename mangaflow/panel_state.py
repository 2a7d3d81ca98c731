"""
MangaFlow - Panel state machine.

    idle | completed | error  -->  generating  -->  completed  (image locator)
                                               -->  error      (no result)

Transitions are pure functions Panel -> Panel, handed to
ProjectStore.apply_to_panel so they are evaluated against the panel as it
is in the store at the moment of writing.

Two attempts on the same panel may overlap (a user regeneration racing a
bulk run). Which result the panel ends up showing is not defined: a second
start while generating is accepted as a re-entry, and an outcome landing on
a panel another attempt already resolved is written last-writer-wins. Both
cases are logged.
"""

import logging
from dataclasses import replace
from typing import Optional

from mangaflow.models import Panel, PanelStatus

logger = logging.getLogger(__name__)

TRANSITIONS = {
    PanelStatus.IDLE: {PanelStatus.GENERATING},
    PanelStatus.COMPLETED: {PanelStatus.GENERATING},
    PanelStatus.ERROR: {PanelStatus.GENERATING},
    PanelStatus.GENERATING: {PanelStatus.COMPLETED, PanelStatus.ERROR},
}


class InvalidTransitionError(Exception):
    """Raised for a status move the state machine does not allow."""

    def __init__(self, panel_id: str, current: PanelStatus, target: PanelStatus):
        self.panel_id = panel_id
        self.current = current
        self.target = target
        super().__init__(
            f"Panel {panel_id}: cannot move from {current.value} to {target.value}"
        )


def can_transition(current: PanelStatus, target: PanelStatus) -> bool:
    return target in TRANSITIONS.get(current, set())


def transition(panel: Panel, target: PanelStatus, image_url: Optional[str] = None) -> Panel:
    """Strict single-step transition."""
    if not can_transition(panel.status, target):
        raise InvalidTransitionError(panel.id, panel.status, target)
    if (target == PanelStatus.COMPLETED) != bool(image_url):
        raise InvalidTransitionError(panel.id, panel.status, target)
    return replace(panel, status=target, image_url=image_url or None)


def start_generation(panel: Panel) -> Panel:
    """Move a panel into GENERATING. Any previous image is dropped."""
    if panel.status == PanelStatus.GENERATING:
        logger.warning(f"Panel {panel.id} is already generating; overlapping attempt started")
        return panel
    return transition(panel, PanelStatus.GENERATING)


def finish_generation(panel: Panel, image_url: Optional[str]) -> Panel:
    """Resolve an attempt: COMPLETED with a locator, ERROR without one."""
    target = PanelStatus.COMPLETED if image_url else PanelStatus.ERROR
    if panel.status == PanelStatus.GENERATING:
        return transition(panel, target, image_url)
    if panel.status == PanelStatus.IDLE:
        raise InvalidTransitionError(panel.id, panel.status, target)

    # Another attempt already resolved this panel
    logger.warning(
        f"Panel {panel.id} was already {panel.status.value}; "
        f"overwriting with {target.value} from a later attempt"
    )
    return replace(panel, status=target, image_url=image_url or None)
