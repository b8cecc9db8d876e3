"""CLI commands for learnsync.

Commands:
- login / logout / status: session lifecycle
- courses / course: catalog browsing
- progress / complete / reset: lesson progress
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, TypeVar

import typer
from rich.console import Console

from learnsync.api.errors import ApiError
from learnsync.catalog.queries import CourseFilters, SortKey
from learnsync.client import LearningClient, get_client, reset_client
from learnsync.progress.engine import UnknownLessonError

T = TypeVar("T")

app = typer.Typer(
    name="learnsync",
    help="Session and learning-progress client for the e-learning backend.",
    no_args_is_help=True,
)

console = Console()


def _run(action: Callable[[LearningClient], Awaitable[T]]) -> T:
    """Run an async action against the global client, then close it."""

    async def runner() -> T:
        client = get_client()
        try:
            return await action(client)
        finally:
            await client.close()
            reset_client()

    return asyncio.run(runner())


async def _require_session(client: LearningClient) -> None:
    session = await client.start()
    if not session.is_authenticated:
        console.print("[red]✗ Not logged in. Run 'learnsync login' first.[/red]")
        raise typer.Exit(code=1)


def _fail(error: ApiError) -> None:
    console.print(f"[red]✗ {error.message}[/red]")
    raise typer.Exit(code=1)


# =============================================================================
# SESSION COMMANDS
# =============================================================================


@app.command()
def login(
    email: str = typer.Argument(..., help="Account email"),
    password: str = typer.Option(
        ..., "--password", "-p", prompt=True, hide_input=True, help="Account password"
    ),
) -> None:
    """Log in and store the session credential."""

    async def action(client: LearningClient) -> None:
        result = await client.auth.login(email, password)
        if not result.success:
            console.print(f"[red]✗ {result.message}[/red]")
            for field_name, message in result.errors.items():
                console.print(f"  [dim]{field_name}:[/dim] {message}")
            raise typer.Exit(code=1)

        user = result.user
        console.print(f"[green]✓ {result.message}[/green]")
        if user is not None:
            console.print(f"  [dim]user:[/dim] {user.name or user.email}")
            console.print(f"  [dim]role:[/dim] {user.role}")

    _run(action)


@app.command()
def logout() -> None:
    """Log out and clear stored credentials."""

    async def action(client: LearningClient) -> None:
        await client.start()
        await client.auth.logout()
        console.print("[green]✓ Logged out[/green]")

    _run(action)


@app.command()
def status() -> None:
    """Show the current session."""

    async def action(client: LearningClient) -> None:
        session = await client.start()
        if not session.is_authenticated:
            console.print("[yellow]⚠ Not logged in[/yellow]")
            raise typer.Exit(code=1)
        console.print(f"[green]✓ Logged in as {session.name or session.email}[/green]")
        console.print(f"  [dim]email:[/dim] {session.email}")
        console.print(f"  [dim]role:[/dim]  {session.role}")

    _run(action)


# =============================================================================
# CATALOG COMMANDS
# =============================================================================


@app.command()
def courses(
    page: int = typer.Option(1, "--page", help="Page number"),
    limit: int | None = typer.Option(None, "--limit", "-n", help="Courses per page"),
    search: str | None = typer.Option(None, "--search", "-s", help="Search text"),
    category: str | None = typer.Option(None, "--category", "-c", help="Category"),
    level: str | None = typer.Option(None, "--level", "-l", help="Course level"),
    sort_by: str = typer.Option(
        SortKey.NEWEST.value,
        "--sort",
        help="newest, oldest, price-low, price-high, rating, popularity",
    ),
) -> None:
    """List courses."""
    from rich.table import Table

    async def action(client: LearningClient) -> None:
        await client.start()
        filters = CourseFilters(
            page=page,
            limit=limit or client.config.fetch.default_page_size,
            search=search,
            category=category,
            level=level,
            sort_by=sort_by,
        )
        result = await client.catalog.fetch_courses(filters)
        if not result.ok:
            console.print(f"[red]✗ {client.catalog.state.error or 'Request cancelled'}[/red]")
            raise typer.Exit(code=1)

        page_data = result.data
        table = Table(title="Courses")
        table.add_column("ID", style="dim")
        table.add_column("Title")
        table.add_column("Level")
        table.add_column("Price", justify="right")
        table.add_column("Rating", justify="right")
        for course in page_data.items:
            table.add_row(
                course.id,
                course.title,
                course.level or "-",
                f"{course.price:.2f}",
                f"{course.rating:.1f}",
            )
        console.print(table)
        pagination = page_data.pagination
        console.print(
            f"[dim]Page {pagination.current_page}/{pagination.total_pages}"
            f" · {pagination.total_items} courses[/dim]"
        )

    _run(action)


@app.command()
def course(
    course_id: str = typer.Argument(..., help="Course ID"),
) -> None:
    """Show a course with its lessons and completion."""

    async def action(client: LearningClient) -> None:
        await _require_session(client)
        detail, progress = await client.open_course(course_id)
        if detail is None:
            console.print(f"[red]✗ {client.catalog.state.error or 'Course not found'}[/red]")
            raise typer.Exit(code=1)

        console.print(f"[bold]{detail.title}[/bold] [dim]({detail.id})[/dim]")
        for section in detail.sections:
            console.print(f"\n[bold]{section.title}[/bold]")
            for lesson in section.lessons:
                mark = "[green]✓[/green]" if lesson.id in progress.completed_lesson_ids else " "
                console.print(f"  {mark} {lesson.title} [dim]{lesson.id}[/dim]")
        console.print(
            f"\n[dim]{progress.completed_count}/{progress.total_lessons} lessons"
            f" · {progress.percentage}%[/dim]"
        )

    _run(action)


# =============================================================================
# PROGRESS COMMANDS
# =============================================================================


@app.command()
def progress(
    course_id: str = typer.Argument(..., help="Course ID"),
) -> None:
    """Show completion statistics for a course."""

    async def action(client: LearningClient) -> None:
        await _require_session(client)
        await client.open_course(course_id)
        stats = client.progress.get_progress_stats(course_id)
        current = client.progress.get_progress(course_id)

        console.print(f"[bold]Progress for {course_id}[/bold]")
        console.print(f"  [dim]completed:[/dim] {stats.completed_count}/{stats.total_lessons}")
        console.print(f"  [dim]percentage:[/dim] {stats.percentage}%")
        console.print(f"  [dim]remaining:[/dim] {stats.remaining}")
        if current is not None:
            console.print(f"  [dim]status:[/dim] {current.status.name.lower()}")
        next_lesson = client.progress.next_incomplete_lesson(course_id)
        if next_lesson:
            console.print(f"  [dim]next lesson:[/dim] {next_lesson}")

    _run(action)


@app.command()
def complete(
    course_id: str = typer.Argument(..., help="Course ID"),
    lesson_id: str = typer.Argument(..., help="Lesson ID"),
) -> None:
    """Mark a lesson as completed."""

    async def action(client: LearningClient) -> None:
        await _require_session(client)
        await client.open_course(course_id)
        try:
            updated = await client.progress.mark_lesson_complete(course_id, lesson_id)
        except UnknownLessonError as e:
            console.print(f"[red]✗ {e}[/red]")
            raise typer.Exit(code=1)
        except ApiError as e:
            console.print(f"[yellow]⚠ Saved locally only: {e.message}[/yellow]")
            raise typer.Exit(code=1)

        console.print(f"[green]✓ Lesson {lesson_id} completed[/green]")
        console.print(
            f"  [dim]course:[/dim] {updated.completed_count}/{updated.total_lessons}"
            f" ({updated.percentage}%)"
        )

    _run(action)


@app.command()
def reset(
    course_id: str = typer.Argument(..., help="Course ID"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
) -> None:
    """Reset all progress of a course."""
    if not yes and not typer.confirm(f"Reset all progress for {course_id}?"):
        console.print("[dim]Cancelled[/dim]")
        raise typer.Exit(code=0)

    async def action(client: LearningClient) -> None:
        await _require_session(client)
        try:
            await client.progress.reset_course_progress(course_id)
        except ApiError as e:
            _fail(e)
        console.print(f"[green]✓ Progress reset for {course_id}[/green]")

    _run(action)
