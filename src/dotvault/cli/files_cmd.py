"""File commands: add, show, set, unset, rm, import, export, list, edit."""

from __future__ import annotations

from typing import Optional

import click
from rich.table import Table

from ._common import console, handle_errors, home_option, open_vault, parse_assignments
from ..editor import EditorCatalog, EditorSpec
from ..errors import EditorError, NotFound
from ..files import DEFAULT_NAME


def register_files_commands(main: click.Group) -> None:
    """Register the file management commands."""

    @main.command("add")
    @click.argument("project")
    @click.argument("environment")
    @click.argument("assignments", nargs=-1)
    @home_option
    @click.option("--name", default=DEFAULT_NAME, show_default=True)
    @click.option("--description", "-d", default=None)
    @click.option("--mutable", is_flag=True, help="Do not lock the file.")
    @handle_errors
    def add_cmd(project, environment, assignments, home, name, description, mutable):
        """Create a file from KEY=value arguments.

        Examples:

            dotvault add app development PORT=3000 DEBUG=true
        """
        vault = open_vault(home)
        record = vault.create(
            project, environment, parse_assignments(assignments),
            name=name, description=description,
            immutable=False if mutable else None,
        )
        console.print(f"[green]Created[/] [cyan]{record.id}[/]")

    @main.command("show")
    @click.argument("file_id")
    @home_option
    @click.option("--reveal", is_flag=True, help="Print values instead of masking them.")
    @handle_errors
    def show_cmd(file_id, home, reveal):
        """Print the variables of a file."""
        vault = open_vault(home)
        variables = vault.read(file_id)
        table = Table(title=file_id, show_header=True, header_style="bold")
        table.add_column("Key", style="cyan")
        table.add_column("Value")
        for key, value in variables.items():
            table.add_row(key, value if reveal else "*" * min(len(value), 8))
        console.print(table)

    @main.command("get")
    @click.argument("file_id")
    @click.argument("key")
    @home_option
    @handle_errors
    def get_cmd(file_id, key, home):
        """Print one variable's value."""
        value = open_vault(home).get_variable(file_id, key)
        if value is None:
            raise NotFound("Variable not found", f"{file_id}:{key}")
        click.echo(value)

    @main.command("set")
    @click.argument("file_id")
    @click.argument("assignments", nargs=-1, required=True)
    @home_option
    @handle_errors
    def set_cmd(file_id, assignments, home):
        """Set one or more KEY=value variables."""
        vault = open_vault(home)
        variables = vault.read(file_id)
        variables.update(parse_assignments(assignments))
        vault.update(file_id, variables)
        console.print(f"[green]Updated[/] [cyan]{file_id}[/]")

    @main.command("unset")
    @click.argument("file_id")
    @click.argument("key")
    @home_option
    @handle_errors
    def unset_cmd(file_id, key, home):
        """Remove a variable."""
        if open_vault(home).unset_variable(file_id, key):
            console.print(f"[green]Removed[/] {key} from [cyan]{file_id}[/]")
        else:
            console.print(f"[yellow]{key} is not set in {file_id}[/]")

    @main.command("rm")
    @click.argument("file_id")
    @home_option
    @click.option("--yes", "-y", is_flag=True, help="Skip confirmation.")
    @handle_errors
    def rm_cmd(file_id, home, yes):
        """Delete a file and every link to it."""
        vault = open_vault(home, need_secret=False)
        links = vault.links.links_for(file_id)
        if links:
            console.print("[yellow]Linked files that will also be removed:[/]")
            for link in links:
                console.print(f"    {link.target_path} [dim]({link.type.value})[/]")
        if not yes and not click.confirm(f"Delete {file_id}?", default=False):
            return
        vault.delete(file_id)
        console.print(f"[green]Deleted[/] [cyan]{file_id}[/]")

    @main.command("import")
    @click.argument("source", type=click.Path())
    @click.argument("project")
    @click.argument("environment")
    @home_option
    @click.option("--name", default=DEFAULT_NAME, show_default=True)
    @click.option("--description", "-d", default=None)
    @handle_errors
    def import_cmd(source, project, environment, home, name, description):
        """Import an existing .env file."""
        vault = open_vault(home)
        record = vault.import_file(source, project, environment, name=name, description=description)
        console.print(f"[green]Imported[/] {source} as [cyan]{record.id}[/]")

    @main.command("export")
    @click.argument("file_id")
    @click.argument("target", type=click.Path())
    @home_option
    @handle_errors
    def export_cmd(file_id, target, home):
        """Write a plaintext copy (not tracked as a link)."""
        path = open_vault(home).export(file_id, target)
        console.print(f"[green]Exported[/] [cyan]{file_id}[/] to {path}")

    @main.command("list")
    @click.argument("project", required=False)
    @home_option
    @handle_errors
    def list_cmd(project: Optional[str], home):
        """List tracked files, optionally for one project."""
        vault = open_vault(home, need_secret=False)
        files = vault.list_files(project)
        if not files:
            console.print("[dim]No files tracked.[/]")
            return
        table = Table(show_header=True, header_style="bold")
        table.add_column("ID", style="cyan")
        table.add_column("Encrypted")
        table.add_column("Immutable")
        table.add_column("Updated", style="dim")
        for record in files:
            table.add_row(
                record.id,
                "yes" if record.encrypted else "no",
                "yes" if record.immutable else "no",
                record.updated_at.strftime("%Y-%m-%d %H:%M"),
            )
        console.print(table)

    @main.command("edit")
    @click.argument("file_id")
    @home_option
    @click.option("--editor", "editor_cmd", default=None, help="Editor command to use.")
    @handle_errors
    def edit_cmd(file_id, home, editor_cmd):
        """Edit a file in an external editor."""
        vault = open_vault(home)
        if editor_cmd:
            editor = EditorSpec.from_command(editor_cmd, editor_cmd)
        else:
            editors = EditorCatalog().list_editors()
            if not editors:
                raise EditorError("No editor found, pass --editor or set $EDITOR")
            editor = editors[0]
        if vault.edit(file_id, editor):
            console.print(f"[green]Saved[/] [cyan]{file_id}[/]")
        else:
            console.print("[dim]No changes.[/]")
