"""
CLI entry point for MangaFlow.

Usage:
    python -m mangaflow create "Neon Horizon" "A courier races..." --style CLASSIC_SHONEN
    python -m mangaflow list                                  # Projects, newest first
    python -m mangaflow show <project_id>                     # Panels, captions, images
    python -m mangaflow regenerate <project_id> <panel_id>    # Retry one panel
    python -m mangaflow caption <project_id> <panel_id> "text"
    python -m mangaflow prompt <project_id> <panel_id> "text"
    python -m mangaflow delete <project_id>
    python -m mangaflow styles

Reads MODELSCOPE_API_KEY and MANGAFLOW_DATA_DIR from the environment or .env.
"""

import argparse
import asyncio
import logging
import sys
from datetime import datetime

from dotenv import find_dotenv, load_dotenv

# Load environment variables before anything else; search from the working directory
load_dotenv(find_dotenv(usecwd=True))

from mangaflow.models import MangaStyle
from mangaflow.project_store import ProjectStore, data_dir
from mangaflow.studio import MangaStudio


def _configure_logging(verbose: bool):
    log_dir = data_dir()
    log_dir.mkdir(parents=True, exist_ok=True)
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        handlers=[
            logging.StreamHandler(),
            logging.FileHandler(log_dir / "mangaflow.log", encoding="utf-8"),
        ],
    )


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="mangaflow", description="Premise to illustrated manga panels")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    create = sub.add_parser("create", help="Create a project and generate its panels")
    create.add_argument("title")
    create.add_argument("premise")
    create.add_argument("--style", default=MangaStyle.CLASSIC_SHONEN.name,
                        choices=[s.name for s in MangaStyle])
    create.add_argument("--no-generate", action="store_true", help="Store panels without generating images")

    sub.add_parser("list", help="List projects")
    sub.add_parser("styles", help="List visual styles")

    show = sub.add_parser("show", help="Show one project")
    show.add_argument("project_id")

    regen = sub.add_parser("regenerate", help="Regenerate one panel")
    regen.add_argument("project_id")
    regen.add_argument("panel_id")

    for name in ("caption", "prompt"):
        edit = sub.add_parser(name, help=f"Edit a panel {name}")
        edit.add_argument("project_id")
        edit.add_argument("panel_id")
        edit.add_argument("text")

    delete = sub.add_parser("delete", help="Delete a project")
    delete.add_argument("project_id")
    return parser


def _print_projects(store: ProjectStore):
    if not store.projects:
        print("No projects yet.")
        return
    for project in store.projects:
        created = datetime.fromtimestamp(project.created_at / 1000).strftime("%Y-%m-%d")
        counts = project.status_counts()
        summary = ", ".join(f"{n} {status}" for status, n in counts.items() if n)
        print(f"{project.id}  {created}  [{project.style.short_name}] {project.title}  ({summary})")


async def run(args) -> int:
    studio = MangaStudio(store=ProjectStore())
    try:
        if args.command == "styles":
            for style in MangaStyle:
                print(f"{style.name:<16} {style.value}")
            return 0

        if args.command == "list":
            _print_projects(studio.store)
            return 0

        if args.command == "create":
            project = await studio.on_create_project(
                args.title, args.premise, args.style, generate=not args.no_generate,
            )
            if project is None:
                print("Project was not created.")
                return 1
            await studio.drain()
            print(studio.store.get_project(project.id).format_for_review())
            return 0

        project = studio.store.get_project(args.project_id)
        if project is None:
            print(f"Unknown project: {args.project_id}")
            return 1

        if args.command == "show":
            print(project.format_for_review())
        elif args.command == "regenerate":
            status = await studio.on_regenerate_panel(project.id, args.panel_id)
            if status is None:
                print(f"Unknown panel: {args.panel_id}")
                return 1
            print(f"Panel {args.panel_id}: {status.value}")
        elif args.command in ("caption", "prompt"):
            if project.find_panel(args.panel_id) is None:
                print(f"Unknown panel: {args.panel_id}")
                return 1
            studio.select_project(project.id)
            studio.on_update_panel(args.panel_id, **{args.command: args.text})
            print(f"Panel {args.panel_id} {args.command} updated.")
        elif args.command == "delete":
            studio.on_delete_project(project.id)
            print(f"Deleted: {project.title}")
        return 0
    finally:
        await studio.close()


def main():
    args = _build_parser().parse_args()
    _configure_logging(args.verbose)
    sys.exit(asyncio.run(run(args)))


if __name__ == "__main__":
    main()
