"""CLI for inspecting and resubmitting archived queue messages."""

import click

from list_mirror.exceptions import ListMirrorError
from list_mirror.schemas.messages import MessageKind, parse_message
from list_mirror.storage.dead_letter import (
    CONNECTION_FAILED_PREFIX,
    PROCESSING_ERROR_PREFIX,
    DeadLetterStore,
    build_dead_letter_store,
)
from list_mirror.utils.config import get_settings

PREFIX_CHOICES = {
    "connection": CONNECTION_FAILED_PREFIX,
    "processing": PROCESSING_ERROR_PREFIX,
    "all": "",
}


def _store() -> DeadLetterStore:
    return build_dead_letter_store(get_settings())


def _enqueue(message: str, kind: str) -> None:
    # Deferred: importing the task module configures the Celery app.
    from list_mirror.tasks.sync import enqueue_message

    enqueue_message(message, kind)


@click.group()
def cli() -> None:
    """Manage messages archived by the sync worker."""


@cli.command("list")
@click.option(
    "--reason",
    type=click.Choice(sorted(PREFIX_CHOICES)),
    default="all",
    show_default=True,
    help="Only list messages archived for this reason",
)
def list_dead_letters(reason: str) -> None:
    """Print archived message keys, oldest first."""
    keys = _store().list_keys(PREFIX_CHOICES[reason])
    if not keys:
        click.echo("No archived messages.")
        return
    for key in keys:
        click.echo(key)
    click.echo(f"\n{len(keys)} archived message(s)")


@cli.command("show")
@click.argument("key")
def show_dead_letter(key: str) -> None:
    """Print the original text of one archived message."""
    try:
        click.echo(_store().read(key))
    except ListMirrorError as exc:
        raise click.ClickException(str(exc)) from exc


@cli.command("resubmit")
@click.argument("keys", nargs=-1)
@click.option(
    "--reason",
    type=click.Choice(sorted(PREFIX_CHOICES)),
    default=None,
    help="Resubmit every message archived for this reason instead of listed keys",
)
@click.option(
    "--kind",
    type=click.Choice([kind.value for kind in MessageKind]),
    default=MessageKind.NOTIFICATION.value,
    show_default=True,
    help="Message kind to tag the resubmitted messages with",
)
@click.option("--keep", is_flag=True, help="Keep archived copies after resubmitting")
def resubmit_dead_letters(keys: tuple[str, ...], reason: str | None, kind: str, keep: bool) -> None:
    """Re-enqueue archived messages once connectivity is restored."""
    store = _store()
    selected = list(keys)
    if reason is not None:
        selected.extend(store.list_keys(PREFIX_CHOICES[reason]))
    if not selected:
        raise click.UsageError("Provide KEYS or --reason")

    failures = 0
    for key in dict.fromkeys(selected):
        try:
            message = store.read(key)
            parse_message(kind, message)
            _enqueue(message, kind)
        except Exception as exc:
            failures += 1
            click.echo(f"✗ {key}: {exc}", err=True)
            continue
        if not keep:
            store.delete(key)
        click.echo(f"✓ {key}")

    if failures:
        raise click.ClickException(f"{failures} message(s) could not be resubmitted")


if __name__ == "__main__":
    cli()
