"""CLI commands for clipforge using Typer and Rich.

- create: Create a draft project from a clips file and/or a prehook style
- generate: Run the pipeline for a draft project with live progress
- status: Show project and per-clip status
- list: List all projects in a table
- script: Print the prehook clips for a style without creating a project
- delete: Delete a project that is not running
"""

import asyncio
import uuid
from pathlib import Path
from typing import Optional

import typer
import yaml
from pydantic import ValidationError
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from clipforge import validate_dependencies
from clipforge.db import init_database
from clipforge.errors import ClipforgeError
from clipforge.orchestrator.registry import PipelineRegistry
from clipforge.orchestrator.state import PIPELINE_STATES
from clipforge.pipeline.script_templates import extract_pain_point, generate_script, supported_styles
from clipforge.schemas.project import (
    ClipInput,
    ClipStatus,
    CreateProjectRequest,
    ProjectSettings,
    ProjectSnapshot,
    ProjectStatus,
    ScriptRequest,
)
from clipforge.schemas.script import Product
from clipforge.services.generation import get_provider
from clipforge.services.progress import ProgressPublisher
from clipforge.services.project_store import ProjectStore

app = typer.Typer(name="clipforge", help="Multi-clip video generation from ordered clip prompts")
console = Console()


def _parse_uuid(value: str) -> uuid.UUID:
    try:
        return uuid.UUID(value)
    except ValueError:
        console.print(f"[red]Error:[/red] Invalid project UUID: {value}")
        raise typer.Exit(code=1)


def _load_clips(path: Path) -> list[ClipInput]:
    """Read clip prompts from a YAML or JSON file (a list, or {"clips": [...]})."""
    with open(path) as f:
        data = yaml.safe_load(f) or []
    if isinstance(data, dict):
        data = data.get("clips", [])
    if not isinstance(data, list):
        raise ValueError(f"{path} must contain a list of clips")
    return [ClipInput.model_validate(item) for item in data]


@app.command()
def create(
    clips_file: Optional[Path] = typer.Option(None, "--clips", "-c", exists=True, help="YAML/JSON file of clip prompts"),
    name: Optional[str] = typer.Option(None, "--name", "-n", help="Project name"),
    style: Optional[str] = typer.Option(None, "--style", "-s", help=f"Prehook style ({', '.join(supported_styles())})"),
    product_name: str = typer.Option("", "--product", help="Product name for the prehook script"),
    audience: str = typer.Option("", "--audience", help="Target audience description"),
    avatar: str = typer.Option("", "--avatar", help="On-screen character description"),
    aspect_ratio: str = typer.Option("9:16", "--aspect-ratio", "-a", help="Final video aspect ratio"),
    title: str = typer.Option("", "--title", help="Title text drawn over the final video"),
    border: float = typer.Option(0.0, "--border", help="Border width in percent of the frame"),
):
    """Create a draft project.

    Script clips (from --style) come first, followed by the clips in --clips.
    """
    try:
        clips = _load_clips(clips_file) if clips_file else []
        script = None
        if style:
            script = ScriptRequest(
                style=style,
                product=Product(name=product_name, target_audience=audience),
                avatar_description=avatar,
            )
        request = CreateProjectRequest(
            name=name,
            clips=clips,
            script=script,
            settings=ProjectSettings(
                aspect_ratio=aspect_ratio,
                title_text=title,
                border_width_percent=border,
            ),
        )
    except (ValidationError, ValueError, OSError) as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(code=1)

    asyncio.run(_create_async(request))


async def _create_async(request: CreateProjectRequest):
    """Async implementation of create command."""
    await init_database()
    try:
        snapshot = await ProjectStore().create_project(request)
    except ClipforgeError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(code=1)

    console.print(f"[green]Created project:[/green] {snapshot.id} ({snapshot.clip_count} clips)")
    console.print(f"Run it with: python -m clipforge generate {snapshot.id}")


@app.command()
def generate(
    project_id: str = typer.Argument(..., help="Project UUID to generate"),
):
    """Generate every clip of a draft project and compile the final video.

    Press Ctrl-C to cancel; finished clips are kept.
    """
    # Fail-fast dependency validation
    try:
        validate_dependencies()
    except RuntimeError as e:
        console.print(f"[red]Error:[/red] {str(e)}")
        raise typer.Exit(code=1)

    asyncio.run(_generate_async(_parse_uuid(project_id)))


def _progress_line(snapshot: ProjectSnapshot, elapsed: Optional[int] = None) -> str:
    active = next(
        (c for c in snapshot.clips if c.status in (ClipStatus.IMAGE_GENERATING, ClipStatus.VIDEO_GENERATING)),
        None,
    )
    line = f"[bold green]{snapshot.status.value}[/bold green] {snapshot.completed_clips}/{snapshot.clip_count} clips done"
    if active is not None:
        stage = "image" if active.status == ClipStatus.IMAGE_GENERATING else "video"
        retries = f" (retry {active.retry_count})" if active.retry_count else ""
        line += f", clip {active.index}: generating {stage}{retries}"
        if elapsed is not None and active.status == ClipStatus.VIDEO_GENERATING:
            line += f" [dim]{elapsed}s[/dim]"
    return line


async def _generate_async(project_id: uuid.UUID):
    """Async implementation of generate command."""
    await init_database()

    store = ProjectStore()
    publisher = ProgressPublisher()
    registry = PipelineRegistry(store, publisher, get_provider())

    try:
        snapshot = await registry.start_generation(project_id)
    except ClipforgeError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(code=1)

    console.print(f"[yellow]Generating project:[/yellow] {snapshot.name} ({snapshot.clip_count} clips)")

    try:
        with console.status(_progress_line(snapshot)) as status:
            async with publisher.subscribe(project_id, snapshot) as subscription:
                async for event in subscription:
                    snapshot = event.snapshot
                    if event.type == "video_progress":
                        status.update(_progress_line(snapshot, (event.data or {}).get("elapsed")))
                        continue
                    status.update(_progress_line(snapshot))
                    if event.clip_index is not None:
                        clip = snapshot.clip(event.clip_index)
                        if clip.status == ClipStatus.DONE:
                            console.print(f"[green]✓[/green] Clip {clip.index} done")
                        elif clip.status == ClipStatus.FAILED:
                            console.print(f"[red]✗[/red] Clip {clip.index} failed: {clip.error}")
        await registry.wait(project_id)

    except (KeyboardInterrupt, asyncio.CancelledError):
        console.print()
        console.print("[yellow]Cancelling; waiting for the current step to finish...[/yellow]")
        if registry.is_running(project_id):
            await registry.cancel(project_id)
            await registry.wait(project_id)
        console.print("[yellow]Project cancelled.[/yellow] Finished clips were kept.")
        raise typer.Exit(code=130)

    finally:
        await registry.shutdown()

    snapshot = await store.get_snapshot(project_id)
    if snapshot.status == ProjectStatus.COMPLETED:
        console.print(f"[green]✓[/green] Video generation complete!")
        console.print(f"[green]Output:[/green] {snapshot.final_video_ref}")
    else:
        console.print(f"[red]✗ Pipeline ended {snapshot.status.value}:[/red] {snapshot.error_message}")
        raise typer.Exit(code=1)


@app.command()
def status(
    project_id: str = typer.Argument(..., help="Project UUID"),
):
    """Show detailed project status and per-clip progress."""
    asyncio.run(_status_async(_parse_uuid(project_id)))


async def _status_async(project_id: uuid.UUID):
    """Async implementation of status command."""
    await init_database()
    store = ProjectStore()

    try:
        project = await store.get_snapshot(project_id)
    except ClipforgeError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(code=1)
    latest_run = await store.latest_run(project_id)

    status_color = _get_status_color(project.status)
    info_lines = [
        f"[bold]ID:[/bold] {project.id}",
        f"[bold]Name:[/bold] {project.name}",
        f"[bold]Status:[/bold] [{status_color}]{project.status.value}[/{status_color}]",
        f"[bold]Stage:[/bold] {PIPELINE_STATES[project.status]}",
        f"[bold]Style:[/bold] {project.style or 'custom'}",
        f"[bold]Aspect Ratio:[/bold] {project.settings.aspect_ratio}",
        f"[bold]Clips:[/bold] {project.completed_clips}/{project.clip_count} done",
        f"[bold]Created:[/bold] {project.created_at.strftime('%Y-%m-%d %H:%M:%S')}",
    ]
    if project.status == ProjectStatus.COMPLETED and project.final_video_ref:
        info_lines.append(f"[bold]Output:[/bold] [green]{project.final_video_ref}[/green]")
    if project.error_message:
        info_lines.append(f"[bold]Error:[/bold] [red]{project.error_message}[/red]")

    if latest_run and latest_run.total_duration_seconds:
        duration = latest_run.total_duration_seconds
        if duration < 60:
            duration_str = f"{duration:.1f}s"
        else:
            mins = int(duration // 60)
            secs = duration % 60
            duration_str = f"{mins}m {secs:.1f}s"
        info_lines.append(f"[bold]Last Run Duration:[/bold] {duration_str}")

    console.print(Panel("\n".join(info_lines), title="[bold]Project Status[/bold]", border_style="blue"))

    table = Table(show_header=True, header_style="bold blue")
    table.add_column("#", justify="right")
    table.add_column("Status")
    table.add_column("Retries", justify="right")
    table.add_column("Prompt")
    table.add_column("Error")
    for clip in project.clips:
        prompt = clip.image_prompt or clip.video_prompt
        prompt_display = prompt if len(prompt) <= 50 else prompt[:47] + "..."
        color = _get_clip_color(clip.status)
        table.add_row(
            str(clip.index),
            f"[{color}]{clip.status.value}[/{color}]",
            str(clip.retry_count),
            prompt_display,
            clip.error or "",
        )
    console.print(table)


@app.command(name="list")
def list_projects():
    """List all projects."""
    asyncio.run(_list_async())


async def _list_async():
    """Async implementation of list command."""
    await init_database()
    projects = await ProjectStore().list_projects()

    if not projects:
        console.print("[yellow]No projects found[/yellow]")
        return

    table = Table(show_header=True, header_style="bold blue")
    table.add_column("ID", style="dim")
    table.add_column("Name")
    table.add_column("Status")
    table.add_column("Clips", justify="right")
    table.add_column("Created")

    for project in projects:
        status_color = _get_status_color(project.status)
        table.add_row(
            str(project.id)[:8] + "...",
            project.name if len(project.name) <= 50 else project.name[:47] + "...",
            f"[{status_color}]{project.status.value}[/{status_color}]",
            f"{project.completed_clips}/{project.clip_count}",
            project.created_at.strftime("%Y-%m-%d %H:%M"),
        )

    console.print(table)


@app.command()
def script(
    style: str = typer.Argument(..., help=f"Prehook style ({', '.join(supported_styles())})"),
    product_name: str = typer.Option("", "--product", help="Product name"),
    audience: str = typer.Option("", "--audience", help="Target audience description"),
    avatar: str = typer.Option(..., "--avatar", help="On-screen character description"),
):
    """Print the two prehook clips for a style."""
    try:
        clips = generate_script(style, Product(name=product_name, target_audience=audience), avatar)
    except ClipforgeError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(code=1)

    console.print(f"[bold]Pain point:[/bold] {extract_pain_point(audience)}")
    for clip in clips:
        console.print(Panel(
            f"[bold]Image:[/bold] {clip.image_prompt}\n\n"
            f"[bold]Video:[/bold] {clip.video_prompt}\n\n"
            f"[bold]Voice:[/bold] {clip.voice_line}",
            title=f"[bold]Clip {clip.clip_number} ({clip.timestamp}) {clip.section}[/bold]",
            border_style="blue",
        ))


@app.command()
def delete(
    project_id: str = typer.Argument(..., help="Project UUID to delete"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
):
    """Delete a project and its clips."""
    project_uuid = _parse_uuid(project_id)
    if not yes:
        typer.confirm(f"Delete project {project_uuid}?", abort=True)
    asyncio.run(_delete_async(project_uuid))


async def _delete_async(project_id: uuid.UUID):
    """Async implementation of delete command."""
    await init_database()
    try:
        await ProjectStore().delete_project(project_id)
    except ClipforgeError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(code=1)
    console.print(f"[green]Deleted project:[/green] {project_id}")


def _get_status_color(status: ProjectStatus) -> str:
    """Get Rich color for a project status.

    Color coding:
    - completed: green
    - error: red
    - in-progress states: yellow
    - draft, cancelled: dim
    """
    if status == ProjectStatus.COMPLETED:
        return "green"
    elif status == ProjectStatus.ERROR:
        return "red"
    elif status in (ProjectStatus.GENERATING, ProjectStatus.COMPILING):
        return "yellow"
    elif status in (ProjectStatus.DRAFT, ProjectStatus.CANCELLED):
        return "dim"
    else:
        return "white"


def _get_clip_color(status: ClipStatus) -> str:
    if status == ClipStatus.DONE:
        return "green"
    if status == ClipStatus.FAILED:
        return "red"
    if status in (ClipStatus.IMAGE_GENERATING, ClipStatus.VIDEO_GENERATING):
        return "yellow"
    return "dim"
