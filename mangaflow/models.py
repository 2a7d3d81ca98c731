"""
MangaFlow - Data models.

Immutable dataclasses for the project tree:
Panel -> MangaPage -> MangaProject.

Every update builds new instances (dataclasses.replace), so a snapshot
handed out by the store can never change underneath its reader.
"""

import time
import uuid
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Optional


# ============================================================
# Visual styles
# ============================================================

class MangaStyle(Enum):
    """Closed set of visual styles. The value is fed into image prompts."""

    CLASSIC_SHONEN = "Classic Shonen (Dynamic, detailed, ink lines)"
    SEINEN_NOIR = "Seinen Noir (High contrast, gritty, realistic shades)"
    KAWAII_SHOUJO = "Kawaii Shoujo (Soft lines, floral patterns, dreamy)"
    CYBERPUNK_MECHA = "Cyberpunk Mecha (Neon accents, sharp metal, futuristic)"
    GOTHIC_HORROR = "Gothic Horror (Dark, eerie, victorian vibes)"

    @classmethod
    def parse(cls, value) -> "MangaStyle":
        """Accept a MangaStyle, its tag name, or its label."""
        if isinstance(value, cls):
            return value
        text = str(value).strip()
        if text.upper() in cls.__members__:
            return cls[text.upper()]
        return cls(text)

    @property
    def short_name(self) -> str:
        return self.value.split(" ")[0]


DEFAULT_STYLE = MangaStyle.CLASSIC_SHONEN


class PanelStatus(Enum):
    IDLE = "idle"
    GENERATING = "generating"
    COMPLETED = "completed"
    ERROR = "error"


TERMINAL_STATUSES = (PanelStatus.COMPLETED, PanelStatus.ERROR)


def new_id() -> str:
    return str(uuid.uuid4())


def now_ms() -> int:
    return int(time.time() * 1000)


# ============================================================
# Tree
# ============================================================

@dataclass(frozen=True)
class Panel:
    """One illustrated unit of the story."""
    id: str
    prompt: str                       # Text fed to the image service
    caption: str = ""                 # User-editable, independent of prompt
    image_url: Optional[str] = None   # Set only while status is COMPLETED
    status: PanelStatus = PanelStatus.IDLE

    def __post_init__(self):
        if (self.image_url is not None) != (self.status == PanelStatus.COMPLETED):
            raise ValueError(
                f"Panel {self.id}: image_url must be set exactly when completed "
                f"(status={self.status.value}, image_url={self.image_url!r})"
            )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "prompt": self.prompt,
            "caption": self.caption,
            "imageUrl": self.image_url,
            "status": self.status.value,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Panel":
        return cls(
            id=str(data["id"]),
            prompt=str(data.get("prompt", "")),
            caption=str(data.get("caption", "")),
            image_url=data.get("imageUrl"),
            status=PanelStatus(data.get("status", "idle")),
        )


@dataclass(frozen=True)
class MangaPage:
    id: str
    panels: tuple[Panel, ...] = ()

    def __post_init__(self):
        ids = [p.id for p in self.panels]
        if len(ids) != len(set(ids)):
            raise ValueError(f"Page {self.id}: duplicate panel ids")

    def to_dict(self) -> dict:
        return {"id": self.id, "panels": [p.to_dict() for p in self.panels]}

    @classmethod
    def from_dict(cls, data: dict) -> "MangaPage":
        return cls(
            id=str(data["id"]),
            panels=tuple(Panel.from_dict(p) for p in data.get("panels", [])),
        )


@dataclass(frozen=True)
class MangaProject:
    """A comic series: title, premise, style and its pages of panels."""
    id: str
    title: str
    description: str
    style: MangaStyle = DEFAULT_STYLE
    created_at: int = field(default_factory=now_ms)   # Epoch milliseconds
    pages: tuple[MangaPage, ...] = ()

    def __post_init__(self):
        ids = [p.id for page in self.pages for p in page.panels]
        if len(ids) != len(set(ids)):
            raise ValueError(f"Project {self.id}: panel ids must be unique")

    @property
    def panels(self) -> tuple[Panel, ...]:
        """Panels of the first page (the only page in this version)."""
        return self.pages[0].panels if self.pages else ()

    def find_panel(self, panel_id: str) -> Optional[Panel]:
        for page in self.pages:
            for panel in page.panels:
                if panel.id == panel_id:
                    return panel
        return None

    def replace_panel(self, panel_id: str, new_panel: Panel) -> "MangaProject":
        """Copy-on-write: new project with one panel swapped out."""
        pages = tuple(
            replace(page, panels=tuple(
                new_panel if panel.id == panel_id else panel
                for panel in page.panels
            ))
            for page in self.pages
        )
        return replace(self, pages=pages)

    def status_counts(self) -> dict[str, int]:
        counts = {status.value: 0 for status in PanelStatus}
        for panel in self.panels:
            counts[panel.status.value] += 1
        return counts

    def format_for_review(self) -> str:
        """Human-readable summary of the project and its panels."""
        lines = [
            f"PROJECT: {self.title}",
            f"{'=' * 50}",
            f"ID: {self.id}",
            f"Style: {self.style.value}",
            f"Premise: {self.description}",
            "",
            f"PANELS ({len(self.panels)}):",
            "-" * 40,
        ]
        for i, p in enumerate(self.panels, 1):
            lines.append(f"Panel {i} [{p.status.value}] {p.id}")
            lines.append(f"  Caption: {p.caption}")
            lines.append(f"  Prompt: {p.prompt[:120]}")
            if p.image_url:
                lines.append(f"  Image: {p.image_url}")
            lines.append("")
        return "\n".join(lines)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "style": self.style.value,
            "createdAt": self.created_at,
            "pages": [page.to_dict() for page in self.pages],
        }

    @classmethod
    def from_dict(cls, data: dict) -> "MangaProject":
        return cls(
            id=str(data["id"]),
            title=str(data.get("title", "")),
            description=str(data.get("description", "")),
            style=MangaStyle.parse(data.get("style", DEFAULT_STYLE.value)),
            created_at=int(data.get("createdAt", 0)),
            pages=tuple(MangaPage.from_dict(p) for p in data.get("pages", [])),
        )


@dataclass(frozen=True)
class ProjectSpec:
    """Input to ProjectStore.create_project: storyline output plus form fields."""
    title: str
    description: str
    style: MangaStyle
    panels: tuple[dict, ...]   # Each: {"prompt": ..., "caption": ...}
