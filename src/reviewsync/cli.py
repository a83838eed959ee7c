"""CLI entry point for Reviewsync."""

import asyncio
import json
from pathlib import Path

import click
from rich.console import Console
from rich.table import Table

from reviewsync.models.config import DEFAULT_CONFIG_PATH, Config
from reviewsync.models.form import FormIdentity, FormKind
from reviewsync.models.section import RaterRosterPayload, RaterSummaryPayload
from reviewsync.services.exceptions import ReviewSyncError
from reviewsync.services.form_workflow import FormWorkflow, OpenForm
from reviewsync.services.review_service import ReviewService
from reviewsync.services.session import SessionClient
from reviewsync.utils.logging import configure_logging, get_logger


logger = get_logger(__name__)
console = Console()


def load_config(path: Path) -> Config:
    """
    Load configuration from the given path.

    Raises:
        click.ClickException: If config is missing, has invalid permissions, or validation fails
    """
    try:
        config = Config.load(path)
        logger.info("config_loaded", path=str(path))
        return config
    except FileNotFoundError as e:
        logger.error("config_not_found", path=str(path))
        raise click.ClickException(str(e))
    except PermissionError as e:
        logger.error("config_permission_error", path=str(path))
        raise click.ClickException(str(e))
    except Exception as e:
        logger.error("config_validation_error", error=str(e))
        raise click.ClickException(f"Configuration validation failed:\n{e}")


def parse_assignments(values: tuple[str, ...], option: str) -> list[tuple[str, str]]:
    """Split repeated ``KEY=VALUE`` options."""
    pairs = []
    for value in values:
        key, sep, text = value.partition("=")
        if not sep or not key:
            raise click.BadParameter(f"Expected KEY=VALUE, got {value!r}", param_hint=option)
        pairs.append((key.strip(), text))
    return pairs


def _run(config: Config, action):
    """Run an async action with a SessionClient, mapping library errors to CLI errors."""

    async def runner():
        async with SessionClient(config.server, config.session) as client:
            return await action(ReviewService(client))

    try:
        return asyncio.run(runner())
    except ReviewSyncError as e:
        logger.error("command_failed", error=str(e), error_type=type(e).__name__)
        raise click.ClickException(str(e))


async def _open(service: ReviewService, content_id: int, data_id: int, kind: str) -> OpenForm:
    user = await service.get_current_user()
    identity = FormIdentity(form_content_id=content_id, form_data_id=data_id)
    return await FormWorkflow(service).open(identity, FormKind(kind), actor_user_id=user.user_id)


@click.group()
@click.version_option(version="0.1.0", prog_name="reviewsync")
@click.option(
    "--config",
    "config_path",
    type=click.Path(path_type=Path, dir_okay=False),
    default=DEFAULT_CONFIG_PATH,
    show_default=True,
    help="Path to config.yaml",
)
@click.pass_context
def cli(ctx: click.Context, config_path: Path):
    """Reviewsync: read and update performance-review forms over OData."""
    configure_logging()
    ctx.obj = {"config_path": config_path}


@cli.command()
@click.pass_context
def whoami(ctx: click.Context):
    """Show the user the session resolves to."""
    config = load_config(ctx.obj["config_path"])
    user = _run(config, lambda service: service.get_current_user())

    console.print(f"[bold]{user.display_name or user.user_id}[/bold]")
    console.print(f"  userId: {user.user_id}")
    if user.email:
        console.print(f"  email:  {user.email}")


@cli.command()
@click.option("--user", "user_id", help="userId whose folders to list (default: current user)")
@click.pass_context
def inbox(ctx: click.Context, user_id: str | None):
    """List forms in the review folders."""
    config = load_config(ctx.obj["config_path"])

    async def action(service: ReviewService):
        target = user_id or (await service.get_current_user()).user_id
        return await service.list_forms(target)

    forms = _run(config, action)
    if not forms:
        click.echo("No forms found.")
        return

    table = Table(title="Review forms")
    table.add_column("Folder")
    table.add_column("Content ID", justify="right")
    table.add_column("Data ID", justify="right")
    table.add_column("Title")
    table.add_column("Step")
    for form in forms:
        table.add_row(
            form.folder_name or "",
            str(form.form_content_id),
            str(form.form_data_id),
            form.title,
            form.current_step or "",
        )
    console.print(table)


def _display_form(open_form: OpenForm) -> None:
    form = open_form.form
    console.print(f"[bold]{form.title or 'Untitled form'}[/bold] ({open_form.kind.value})")

    for failure in open_form.load_failures:
        console.print(f"[yellow]Partially loaded:[/yellow] {failure}")

    if open_form.route_steps:
        steps = " > ".join(
            f"[bold]{step.step_name}[/bold]" if step.current else step.step_name
            for step in open_form.route_steps
        )
        console.print(f"Route: {steps}")

    for section in form.sections:
        if isinstance(section.payload, RaterSummaryPayload):
            table = Table(title=section.title)
            table.add_column("Category")
            table.add_column("Rating", justify="right")
            table.add_column("Of max", justify="right")
            for score in section.payload.scores:
                table.add_row(score.category, score.display_rating, score.percent_label)
            console.print(table)
            continue

        if isinstance(section.payload, RaterRosterPayload):
            table = Table(title=section.title)
            table.add_column("Rater")
            table.add_column("Category")
            table.add_column("Status")
            for participant in section.payload.participants:
                table.add_row(participant.full_name, participant.category or "", participant.status or "")
            console.print(table)
            continue

        if not section.editable:
            console.print(f"[dim]{section.title}[/dim]")
            continue

        table = Table(title=section.title)
        table.add_column("Key")
        table.add_column("Item")
        table.add_column("Rating", justify="right")
        table.add_column("Permission")
        table.add_column("From")
        table.add_column("Comment")

        names = {item.key: item.name for item in section.items}
        if section.edit_key:
            names = {section.edit_key: section.title}

        for key in section.edit_keys:
            record = open_form.edits.get(key)
            if record is None:
                continue
            table.add_row(
                key,
                names.get(key, ""),
                record.rating or "-",
                f"{record.rating_permission.value}/{record.comment_permission.value}",
                record.rating_provenance.value,
                record.comment,
            )
        console.print(table)


@cli.command()
@click.argument("content_id", type=int)
@click.argument("data_id", type=int)
@click.option("--kind", type=click.Choice(["pm", "360"]), default="pm", show_default=True)
@click.pass_context
def show(ctx: click.Context, content_id: int, data_id: int, kind: str):
    """Show a form's sections, resolved ratings and permissions."""
    config = load_config(ctx.obj["config_path"])
    open_form = _run(config, lambda service: _open(service, content_id, data_id, kind))
    _display_form(open_form)


@cli.command()
@click.argument("content_id", type=int)
@click.argument("data_id", type=int)
@click.option("--kind", type=click.Choice(["pm", "360"]), default="pm", show_default=True)
@click.option("--set", "ratings", multiple=True, metavar="KEY=RATING", help="Set a rating")
@click.option("--comment", "comments", multiple=True, metavar="KEY=TEXT", help="Set a comment")
@click.option("--dry-run", is_flag=True, help="Print the upsert document instead of saving")
@click.option("--submit", is_flag=True, help="Advance (PM) or complete (360) after saving")
@click.pass_context
def rate(
    ctx: click.Context,
    content_id: int,
    data_id: int,
    kind: str,
    ratings: tuple[str, ...],
    comments: tuple[str, ...],
    dry_run: bool,
    submit: bool,
):
    """
    Apply ratings/comments to a form and save them.

    Examples:
        reviewsync rate 1234 5678 --set obj_0_101=4.5 --comment summary="Solid year"
        reviewsync rate 1234 5678 --kind 360 --set comp_0_7=4 --dry-run
    """
    config = load_config(ctx.obj["config_path"])
    edits = [("rating", key, value) for key, value in parse_assignments(ratings, "--set")]
    edits += [("comment", key, value) for key, value in parse_assignments(comments, "--comment")]

    async def action(service: ReviewService):
        open_form = await _open(service, content_id, data_id, kind)
        workflow = FormWorkflow(service)

        for field, key, value in edits:
            try:
                applied = open_form.edits.set(key, field, value)
            except ValueError as e:
                raise click.BadParameter(str(e), param_hint="--set")
            if not applied:
                console.print(f"[yellow]Skipped[/yellow] {field} for {key}: not writable or unknown key")

        if dry_run:
            return workflow.build_payload(open_form), None

        if submit:
            return None, await workflow.submit(open_form)
        return None, await workflow.save(open_form)

    document, saved = _run(config, action)

    if dry_run:
        click.echo(json.dumps(document, indent=2))
        return

    if not saved:
        click.echo("Nothing to save.")
    else:
        click.echo(f"Saved {len(saved)} entit{'y' if len(saved) == 1 else 'ies'}.")
    if submit:
        click.echo("Form submitted.")


def main():
    """Main entry point for setuptools console script."""
    cli()


if __name__ == "__main__":
    main()
