"""Command-line entry point for the vault."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from pathlib import Path

import click

from cloud_vault import __version__
from cloud_vault.config import load_config
from cloud_vault.operations.mutations import UploadItem
from cloud_vault.orchestration.session import VaultSession, vault_session_from_config
from cloud_vault.results import OperationResult

logger = logging.getLogger(__name__)


def collect_upload_items(paths: tuple[str, ...]) -> list[UploadItem]:
    """Expand files and directories into upload items.

    Files inside a directory keep their path relative to the directory's
    parent, so ``photos/2024/a.jpg`` lands under ``photos/2024/``.
    """
    items: list[UploadItem] = []
    for raw in paths:
        path = Path(raw)
        if path.is_dir():
            items.extend(
                UploadItem.from_path(child, root=path.parent)
                for child in sorted(path.rglob("*"))
                if child.is_file()
            )
        else:
            items.append(UploadItem.from_path(path))
    return items


def _run(ctx: click.Context, action: Callable[[VaultSession], Awaitable[OperationResult]]) -> None:
    """Build a session, run one action, print its message and set the exit code."""

    async def _main() -> OperationResult:
        async with vault_session_from_config(load_config()) as session:
            return await action(session)

    result = asyncio.run(_main())
    if result.ok:
        click.echo(result.message)
    else:
        click.echo(result.message, err=True)
        ctx.exit(1)


def _print_entries(folders: tuple[str, ...], files: tuple[str, ...]) -> None:
    for folder in folders:
        click.echo(f"{folder}/")
    for name in files:
        click.echo(name)


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging output")
@click.version_option(version=__version__)
def main(verbose: bool) -> None:
    """cloud-vault: list, upload, download, bin and restore vault files."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%H:%M:%S",
    )


@main.command(name="ls")
@click.argument("path", default="")
@click.pass_context
def list_folder(ctx: click.Context, path: str) -> None:
    """List the folders and files at PATH (root by default)."""

    async def action(session: VaultSession) -> OperationResult:
        result = await session.navigate(path)
        if result.ok:
            _print_entries(session.state.folders, session.state.files)
        return result

    _run(ctx, action)


@main.command(name="bin")
@click.pass_context
def list_bin(ctx: click.Context) -> None:
    """List files in the bin."""

    async def action(session: VaultSession) -> OperationResult:
        result = await session.refresh_bin()
        if result.ok:
            _print_entries((), session.state.bin_files)
        return result

    _run(ctx, action)


@main.command()
@click.argument("name")
@click.option("--in", "parent", default="", help="Folder to create NAME in")
@click.pass_context
def mkdir(ctx: click.Context, name: str, parent: str) -> None:
    """Create folder NAME."""

    async def action(session: VaultSession) -> OperationResult:
        session.state.navigate(parent)
        return await session.create_folder(name)

    _run(ctx, action)


@main.command()
@click.argument("files", nargs=-1, required=True, type=click.Path(exists=True))
@click.option("--to", "destination", default="", help="Destination folder")
@click.pass_context
def upload(ctx: click.Context, files: tuple[str, ...], destination: str) -> None:
    """Upload FILES (directories are uploaded recursively)."""
    items = collect_upload_items(files)

    async def action(session: VaultSession) -> OperationResult:
        session.state.navigate(destination)
        return await session.upload(items)

    _run(ctx, action)


@main.command()
@click.argument("path")
@click.pass_context
def get(ctx: click.Context, path: str) -> None:
    """Download one file."""
    _run(ctx, lambda session: session.download(path))


@main.command(name="get-many")
@click.argument("paths", nargs=-1, required=True)
@click.option("--from", "folder", default="", help="Folder the files are listed in")
@click.pass_context
def get_many(ctx: click.Context, paths: tuple[str, ...], folder: str) -> None:
    """Download several files from one folder as a single archive."""

    async def action(session: VaultSession) -> OperationResult:
        listed = await session.navigate(folder)
        if not listed.ok:
            return listed
        for path in paths:
            selected = session.select(path)
            if not selected.ok:
                return selected
        return await session.download_selected()

    _run(ctx, action)


@main.command(name="rm")
@click.argument("path")
@click.pass_context
def move_to_bin(ctx: click.Context, path: str) -> None:
    """Move a file to the bin."""
    _run(ctx, lambda session: session.move_to_bin(path))


@main.command()
@click.argument("path")
@click.pass_context
def restore(ctx: click.Context, path: str) -> None:
    """Restore a file from the bin."""
    _run(ctx, lambda session: session.restore_from_bin(path))


@main.command(name="sign-in")
@click.pass_context
def sign_in(ctx: click.Context) -> None:
    """Sign in with a device code and cache the account."""
    _run(ctx, lambda session: session.sign_in(click.echo))


@main.command(name="sign-out")
@click.pass_context
def sign_out(ctx: click.Context) -> None:
    """Forget the cached account."""
    _run(ctx, lambda session: session.sign_out())
