"""
Command-line interface for the desk.

Drives the same controllers a graphical shell would: uploads and deletes go
through the optimistic update protocol and report through notifications.
"""

import asyncio
import logging
from pathlib import Path
from typing import Awaitable, Callable, Iterable, Optional

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from cloud_store.gateway import StorageGateway
from cloud_store.provider_factory import StorageProviderFactory
from shared.config import config_dir, default_config, load_config, save_config
from shared.errors import DeskError
from shared.models import DeskConfig, StorageProvider
from shared.validators import UploadedFile
from .desktop import Desktop

console = Console()
err_console = Console(stderr=True)

LEVEL_STYLES = {
    'success': "[green]✓[/green]",
    'info': "[cyan]i[/cyan]",
    'warning': "[yellow]![/yellow]",
}


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=err_console, rich_tracebacks=True, show_path=verbose)],
        force=True,
    )


def _print_notification(level: str, message: str) -> None:
    # Errors are reported once, by _run
    if level != 'error':
        console.print(f"{LEVEL_STYLES.get(level, '')} {message}")


def _run(coro: Awaitable):
    try:
        return asyncio.run(coro)
    except (DeskError, KeyError, ValueError) as e:
        message = e.args[0] if isinstance(e, KeyError) and e.args else e
        console.print(f"[red]✗ {message}[/red]")
        raise SystemExit(1)


async def _with_app(app_name: str, action: Callable):
    config = load_config()
    gateway = await StorageGateway.from_config(config, config_dir())
    async with gateway:
        desktop = Desktop(gateway, config)
        controller = desktop.app(app_name)
        controller.notify(_print_notification)
        await desktop.open_app(app_name)
        return await action(controller)


def _resolve_id(ids: Iterable[str], prefix: str) -> str:
    """Accept any unambiguous id prefix."""
    matches = [item_id for item_id in ids if item_id.startswith(prefix)]
    if len(matches) == 1:
        return matches[0]
    if not matches:
        raise KeyError(f"No item with id {prefix}")
    raise KeyError(f"Id prefix {prefix} is ambiguous")


@click.group()
@click.version_option(version="1.0.0")
@click.option('--verbose', '-v', is_flag=True, help='Show debug logging')
def cli(verbose):
    """
    Personal desk: photos, date ideas and music, synced to your storage.
    """
    _setup_logging(verbose)


@cli.command()
@click.option('--provider', type=click.Choice([p.value for p in StorageProvider]),
              default='local', show_default=True,
              help='r2=Cloudflare, b2=Backblaze, s3=Amazon, generic=any S3, local=folder')
@click.option('--endpoint', default=None, help='Endpoint URL, R2 account id, or folder for local')
@click.option('--bucket', default='default', show_default=True)
@click.option('--region', default=None)
@click.option('--access-key-id', default='', help='Not needed for local storage')
@click.option('--secret-access-key', default='', help='Not needed for local storage')
def init(provider, endpoint, bucket, region, access_key_id, secret_access_key):
    """
    Write the configuration and run a sync test.
    """
    provider_enum = StorageProvider(provider)
    if provider_enum != StorageProvider.LOCAL:
        if not access_key_id:
            access_key_id = click.prompt('Access key id')
        if not secret_access_key:
            secret_access_key = click.prompt('Secret access key', hide_input=True)
    if endpoint is None:
        endpoint = default_config().endpoint if provider_enum == StorageProvider.LOCAL else ''

    config = DeskConfig(
        provider=provider_enum,
        endpoint=endpoint,
        bucket=bucket,
        access_key_id=access_key_id,
        secret_access_key=secret_access_key,
        region=region,
    )

    async def _check():
        gateway = await StorageGateway.from_config(config, config_dir())
        async with gateway:
            return await gateway.self_test()

    ok, message = _run(_check())
    path = save_config(config)

    console.print(Panel.fit(
        f"[bold]{StorageProviderFactory.get_provider_name(provider_enum)}[/bold]\n"
        f"Bucket: {bucket}\n"
        f"Config: {path}\n\n"
        + (f"[green]✓ {message}[/green]" if ok else f"[yellow]! {message}[/yellow]"),
        title="Desk configured",
        border_style="cyan" if ok else "yellow",
    ))


@cli.command()
@click.option('--test/--no-test', default=False, help='Also run a write/read/delete test')
def status(test):
    """Show connectivity and backend status."""
    config = load_config()

    async def _status():
        gateway = await StorageGateway.from_config(config, config_dir())
        async with gateway:
            current = gateway.connection_status()
            result = await gateway.self_test() if test else None
            return current, result

    current, result = _run(_status())

    table = Table(show_header=False)
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    table.add_row("Provider", StorageProviderFactory.get_provider_name(config.provider))
    table.add_row("Bucket", config.bucket)
    table.add_row("Online", "[green]yes[/green]" if current.online else "[red]no[/red]")
    table.add_row("Backend", "[green]reachable[/green]" if current.backend_reachable else "[red]unreachable[/red]")
    table.add_row("User id", current.user_id)
    if result is not None:
        ok, message = result
        table.add_row("Sync test", f"[green]{message}[/green]" if ok else f"[red]{message}[/red]")
    console.print(table)


def _upload(app_name: str, files: Iterable[str]) -> None:
    uploads = [UploadedFile.from_path(path) for path in files]

    async def _action(controller):
        return await controller.upload_many(uploads)

    tally = _run(_with_app(app_name, _action))
    for name, error in tally['errors']:
        console.print(f"[red]✗ {name}: {error}[/red]")
    if tally['failed']:
        raise SystemExit(1)


def _delete(app_name: str, item_id: str) -> None:
    async def _action(controller):
        target = _resolve_id((item.id for item in controller.items), item_id)
        return await controller.delete(target)

    _run(_with_app(app_name, _action))


@cli.group()
def photos():
    """Photo gallery."""
    pass


@photos.command('upload')
@click.argument('files', nargs=-1, required=True, type=click.Path(exists=True, dir_okay=False))
def photos_upload(files):
    """Upload one or more images."""
    _upload('photos', files)


@photos.command('list')
def photos_list():
    """List stored photos, newest first."""
    view = _run(_with_app('photos', _render))

    table = Table(show_header=True, header_style="bold magenta", title="Photos")
    table.add_column("ID", style="cyan")
    table.add_column("Name")
    table.add_column("Size", justify="right")
    table.add_column("Dimensions")
    table.add_column("Uploaded")
    for item in view['items']:
        table.add_row(item['id'][:8], item['name'], item['size'],
                      item.get('dimensions', '-'), item['uploaded'][:19])
    console.print(table)
    console.print(f"{view['stats']['count']} photo(s)")


@photos.command('delete')
@click.argument('item_id')
def photos_delete(item_id):
    """Delete a photo by id (a unique prefix is enough)."""
    _delete('photos', item_id)


@cli.group()
def music():
    """Music player library."""
    pass


@music.command('upload')
@click.argument('files', nargs=-1, required=True, type=click.Path(exists=True, dir_okay=False))
def music_upload(files):
    """Upload one or more audio files."""
    _upload('music', files)


@music.command('list')
def music_list():
    """List stored tracks."""
    view = _run(_with_app('music', _render))

    table = Table(show_header=True, header_style="bold magenta", title="Music")
    table.add_column("ID", style="cyan")
    table.add_column("Title")
    table.add_column("Artist")
    table.add_column("Duration", justify="right")
    table.add_column("Size", justify="right")
    for item in view['items']:
        table.add_row(item['id'][:8], item['title'], item['artist'] or '-',
                      item['duration'], item['size'])
    console.print(table)
    console.print(f"{view['stats']['count']} track(s)")


@music.command('delete')
@click.argument('item_id')
def music_delete(item_id):
    """Delete a track by id (a unique prefix is enough)."""
    _delete('music', item_id)


async def _render(controller):
    return controller.render()


def _notes(action: Callable) -> Optional[object]:
    return _run(_with_app('notes', action))


def _note_id(controller, prefix: str) -> str:
    return _resolve_id((entry.id for entry in controller.collection), prefix)


@cli.group()
def notes():
    """Date ideas list."""
    pass


@notes.command('add')
@click.argument('content')
def notes_add(content):
    """Add an idea."""
    async def _action(controller):
        return await controller.add(content)
    _notes(_action)


@notes.command('list')
def notes_list():
    """List ideas, newest first."""
    view = _notes(_render)

    table = Table(show_header=True, header_style="bold magenta", title="Date Ideas")
    table.add_column("ID", style="cyan")
    table.add_column("Done")
    table.add_column("Idea")
    table.add_column("Created")
    for item in view['items']:
        table.add_row(item['id'][:8], "✓" if item['completed'] else "",
                      item['content'], item['created'][:10])
    console.print(table)
    stats = view['stats']
    console.print(f"{stats['total']} idea(s), {stats['completed']} completed, {stats['active']} active")


@notes.command('edit')
@click.argument('entry_id')
@click.argument('content')
def notes_edit(entry_id, content):
    """Replace the text of an idea."""
    async def _action(controller):
        return await controller.edit(_note_id(controller, entry_id), content)
    _notes(_action)


@notes.command('toggle')
@click.argument('entry_id')
def notes_toggle(entry_id):
    """Mark an idea done, or not done."""
    async def _action(controller):
        return await controller.toggle(_note_id(controller, entry_id))
    entry = _notes(_action)
    console.print(f"[green]✓[/green] {'Completed' if entry.completed else 'Reopened'}: {entry.preview(60)}")


@notes.command('delete')
@click.argument('entry_id')
def notes_delete(entry_id):
    """Delete an idea."""
    async def _action(controller):
        return await controller.delete(_note_id(controller, entry_id))
    _notes(_action)


@notes.command('clear-completed')
def notes_clear_completed():
    """Remove every completed idea."""
    async def _action(controller):
        return await controller.clear_completed()
    _notes(_action)


@notes.command('export')
@click.option('--output', '-o', type=click.Path(dir_okay=False, writable=True), default=None,
              help='Write to a file instead of the terminal')
def notes_export(output):
    """Export ideas as plain text."""
    async def _action(controller):
        return controller.export_text()

    text = _notes(_action)
    if output:
        Path(output).write_text(text)
        console.print(f"[green]✓[/green] Exported to {output}")
    else:
        click.echo(text, nl=False)


def main():
    cli()


if __name__ == '__main__':
    main()
