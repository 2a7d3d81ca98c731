"""
MangaFlow - premise to illustrated manga panels.

A premise and a style become a four-panel storyline; each panel is then
illustrated through the ModelScope async image API, one panel at a time.
Projects persist locally between runs.

Usage:
    from mangaflow import MangaStudio

    studio = MangaStudio()
    project = await studio.on_create_project(
        title="Neon Horizon",
        premise="A courier races across a flooded megacity...",
        style="CLASSIC_SHONEN",
    )
    await studio.drain()
"""

from mangaflow.models import MangaPage, MangaProject, MangaStyle, Panel, PanelStatus
from mangaflow.modelscope_client import ModelScopeClient
from mangaflow.project_store import ProjectStore
from mangaflow.studio import MangaStudio

__all__ = [
    "MangaStudio",
    "ModelScopeClient",
    "ProjectStore",
    "MangaProject",
    "MangaPage",
    "Panel",
    "PanelStatus",
    "MangaStyle",
]
