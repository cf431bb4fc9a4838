"""Link commands: link, pull, unlink, links list/sync/repair."""

from __future__ import annotations

import shutil
from pathlib import Path

import click
from rich.table import Table

from ._common import console, handle_errors, home_option, open_vault
from ..errors import NotFound, PermissionDenied
from ..models import LinkType


def register_link_commands(main: click.Group) -> None:
    """Register the link commands."""

    @main.command("link")
    @click.argument("file_id")
    @click.argument("target", type=click.Path())
    @home_option
    @click.option("--copy", "as_copy", is_flag=True, help="Write a plaintext copy instead of a symlink.")
    @click.option("--auto-sync", is_flag=True, help="Refresh the copy whenever the file changes.")
    @handle_errors
    def link_cmd(file_id, target, home, as_copy, auto_sync):
        """Project a vault file into a working directory.

        Encrypted files can only be copied.
        """
        vault = open_vault(home)
        record = vault.manifest.find(file_id)
        mode = LinkType.COPY if (as_copy or record.encrypted) else LinkType.SYMLINK
        try:
            link = vault.link(file_id, target, mode, auto_sync=auto_sync)
        except PermissionDenied as exc:
            console.print(f"[yellow]{exc}; falling back to a copy.[/]")
            link = vault.link(file_id, target, LinkType.COPY, auto_sync=auto_sync)
        console.print(f"[green]Linked[/] {link.target_path} [dim]({link.type.value})[/]")

    @main.command("pull")
    @home_option
    @click.option("--env", "environment", default=None, help="Environment to use when several exist.")
    @click.option("--output", "-o", default=".env", show_default=True, help="Where to write the file.")
    @click.option("--symlink", is_flag=True, help="Symlink instead of copying (plaintext files only).")
    @click.option("--force", "-f", is_flag=True, help="Overwrite an existing file without asking.")
    @click.option("--dir", "directory", type=click.Path(file_okay=False), default=".",
                  help="Project directory; its name selects the vault project.")
    @handle_errors
    def pull_cmd(home, environment, output, symlink, force, directory):
        """Bring this directory's env file in from the vault.

        The project is detected from the directory name.
        """
        vault = open_vault(home)
        project_dir = Path(directory).resolve()
        matches = vault.files_for_directory(project_dir)
        if not matches:
            raise NotFound("No env files for project", project_dir.name)

        if environment:
            chosen = [r for r in matches if (r.environment or "").lower() == environment.lower()]
            if not chosen:
                available = ", ".join(r.environment or "default" for r in matches)
                raise NotFound(f"Environment not found (available: {available})", environment)
            record = chosen[0]
        elif len(matches) == 1:
            record = matches[0]
        else:
            ids = [r.id for r in matches]
            for index, fid in enumerate(ids, 1):
                console.print(f"  {index}. [cyan]{fid}[/]")
            choice = click.prompt("Select file", type=click.IntRange(1, len(ids)), default=1)
            record = matches[choice - 1]

        target = Path(output) if Path(output).is_absolute() else project_dir / output
        if target.exists() and not target.is_symlink():
            if not force and not click.confirm(f"{target.name} already exists. Overwrite?", default=False):
                return
            backup = target.with_name(target.name + ".backup")
            shutil.copy2(target, backup)
            console.print(f"[dim]Backed up existing file to {backup.name}[/]")

        mode = LinkType.SYMLINK if symlink and not record.encrypted else LinkType.COPY
        if symlink and record.encrypted:
            console.print("[yellow]Encrypted files cannot be symlinked; using a copy.[/]")
        link = vault.link(record.id, target, mode)
        console.print(f"[green]Pulled[/] [cyan]{record.id}[/] to {link.target_path}")

    @main.command("unlink")
    @click.argument("target", type=click.Path())
    @home_option
    @handle_errors
    def unlink_cmd(target, home):
        """Remove a link and its file."""
        if open_vault(home, need_secret=False).unlink(target):
            console.print(f"[green]Unlinked[/] {target}")
        else:
            console.print(f"[yellow]{target} was not linked.[/]")

    @main.group("links", invoke_without_command=True)
    @home_option
    @click.pass_context
    @handle_errors
    def links_group(ctx, home):
        """List registered links."""
        if ctx.invoked_subcommand is not None:
            return
        vault = open_vault(home, need_secret=False)
        links = vault.links.list_links()
        if not links:
            console.print("[dim]No links.[/]")
            return
        table = Table(show_header=True, header_style="bold")
        table.add_column("Target")
        table.add_column("Source", style="cyan")
        table.add_column("Type")
        table.add_column("Health")
        for link in links:
            health = vault.links.validate_link(link)
            colour = "green" if health.value == "valid" else "red"
            sync = " (auto)" if link.auto_sync else ""
            table.add_row(link.target_path, link.source_id, link.type.value + sync,
                          f"[{colour}]{health.value}[/]")
        console.print(table)

    @links_group.command("sync")
    @home_option
    @handle_errors
    def links_sync(home):
        """Rewrite every copy from its source."""
        vault = open_vault(home)
        reports = vault.links.sync_all_copies(vault.secret)
        if not reports:
            console.print("[dim]No copies to sync. Symlinks are always current.[/]")
            return
        for source_id, report in reports.items():
            console.print(f"  [cyan]{source_id}[/]: {report.updated} updated")
            for failure in report.failures:
                console.print(f"    [red]{failure}[/]")

    @links_group.command("repair")
    @home_option
    @handle_errors
    def links_repair(home):
        """Recreate broken links and drop links to deleted files."""
        vault = open_vault(home)
        report = vault.links.repair_links(vault.secret)
        console.print(f"  Repaired: {report.repaired}  Removed: {report.removed}")
        for error in report.errors:
            console.print(f"    [red]{error}[/]")
