"""
MangaFlow - Storyline generator.

Expands a premise into a four-beat panel breakdown. Deterministic: the same
premise and style always give the same prompts and captions. Swap in a text
model here when one is available; callers only rely on the return shape.
"""

from mangaflow.models import MangaStyle

UNTITLED = "Untitled Manga"

STORY_BEATS = [
    ("Opening scene: {premise}. Establish the setting and mood in {style} style.",
     "The story begins..."),
    ("Character introduction: {premise}. Show the main character in {style} style.",
     "Our hero appears"),
    ("Action or conflict: {premise}. Dramatic moment in {style} style.",
     "The challenge arises"),
    ("Climax or resolution: {premise}. Powerful conclusion in {style} style.",
     "The moment of truth"),
]


class StorylineError(Exception):
    """Raised when a premise cannot be turned into a storyline."""


async def generate_storyline(premise: str, style: MangaStyle) -> dict:
    """
    Build the panel breakdown for a premise.

    Returns:
        {"title": str, "panels": [{"prompt": str, "caption": str}, ...]}
    """
    premise = premise.strip()
    if not premise:
        raise StorylineError("Premise is empty")

    style_label = MangaStyle.parse(style).value
    panels = [
        {"prompt": prompt.format(premise=premise, style=style_label), "caption": caption}
        for prompt, caption in STORY_BEATS
    ]
    return {
        "title": " ".join(premise.split()[:3]) or UNTITLED,
        "panels": panels,
    }
