#!/usr/bin/env python3
"""
devkb: CLI for the DevKB knowledge base

Usage:
    devkb serve                        # Run the HTTP API
    devkb add --type=code --title=...  # Create entry
    devkb search "query"               # Search entries
    devkb get kb-000001                # Read an entry
    devkb stats                        # Show statistics
"""

from __future__ import annotations

import difflib
import json
import logging
import sys
from typing import Any, NoReturn

import click
from click.exceptions import ClickException, UsageError

from . import __version__ as DEVKB_VERSION
from .models import ENTRY_TYPES


def format_table(rows: list[dict], columns: list[str], max_widths: dict | None = None) -> str:
    """Format rows as a simple table."""
    if not rows:
        return ""

    max_widths = max_widths or {}
    widths = {col: len(col) for col in columns}

    def cell(row: dict, col: str) -> str:
        val = str(row.get(col, ""))
        limit = max_widths.get(col, 50)
        if len(val) > limit:
            val = val[: limit - 3] + "..."
        return val

    for row in rows:
        for col in columns:
            widths[col] = max(widths[col], len(cell(row, col)))

    header = "  ".join(col.upper().ljust(widths[col]) for col in columns)
    separator = "  ".join("-" * widths[col] for col in columns)

    lines = [header, separator]
    for row in rows:
        lines.append("  ".join(cell(row, col).ljust(widths[col]) for col in columns))

    return "\n".join(lines)


def _dump(data: Any) -> Any:
    from fastapi.encoders import jsonable_encoder

    return jsonable_encoder(data, by_alias=True)


def output(data, as_json: bool = False):
    """Output data as JSON or formatted text."""
    if as_json:
        click.echo(json.dumps(_dump(data), indent=2, ensure_ascii=False))
    else:
        click.echo(data)


def _handle_error(ctx: click.Context, error: Exception) -> NoReturn:
    """Report an error, as JSON when --json-errors is set, and exit 1."""
    from .errors import DevKBError, format_error_json

    json_errors = ctx.obj.get("json_errors", False) if ctx.obj else False

    if isinstance(error, DevKBError):
        if json_errors:
            click.echo(error.to_json(), err=True)
        else:
            click.echo(f"Error: {error.message}", err=True)
    else:
        if json_errors:
            click.echo(format_error_json("INTERNAL_ERROR", str(error)), err=True)
        else:
            click.echo(f"Error: {error}", err=True)

    sys.exit(1)


def get_error_code_for_exception(exc: Exception) -> str:
    """Map Click exceptions to error codes."""
    # MissingParameter subclasses BadParameter
    if isinstance(exc, click.MissingParameter):
        return "MISSING_ARGUMENT"
    elif isinstance(exc, click.BadParameter):
        return "INVALID_ARGUMENT"
    elif isinstance(exc, click.NoSuchOption):
        return "UNKNOWN_OPTION"
    elif isinstance(exc, UsageError):
        return "USAGE_ERROR"
    return "CLI_ERROR"


class JsonErrorGroup(click.Group):
    """Click group that formats usage errors as JSON when --json-errors is set.

    Also suggests the closest command name for typos.
    """

    def resolve_command(self, ctx, args):
        try:
            return super().resolve_command(ctx, args)
        except UsageError as e:
            cmd_name = args[0] if args else ""
            if cmd_name and "No such command" in str(e):
                matches = difflib.get_close_matches(
                    cmd_name, self.list_commands(ctx), n=1, cutoff=0.6
                )
                if matches:
                    raise UsageError(f"No such command '{cmd_name}'. Did you mean '{matches[0]}'?")
            raise

    def invoke(self, ctx):
        try:
            return super().invoke(ctx)
        except ClickException as e:
            if ctx.params.get("json_errors"):
                from .errors import format_error_json

                code = get_error_code_for_exception(e)
                click.echo(format_error_json(code, e.format_message()), err=True)
                raise SystemExit(1)
            raise

    def main(self, args=None, prog_name=None, complete_var=None, standalone_mode=True, **extra):
        """Report parse errors (before invoke runs) as JSON too.

        --json-errors is accepted anywhere on the command line and moved to
        the front so click treats it as the group option.
        """
        argv = list(args) if args is not None else sys.argv[1:]
        if "--json-errors" not in argv:
            return super().main(args, prog_name, complete_var, standalone_mode, **extra)

        from .errors import format_error_json

        argv = ["--json-errors", *(a for a in argv if a != "--json-errors")]
        try:
            return super().main(argv, prog_name, complete_var, standalone_mode=False, **extra)
        except ClickException as e:
            code = get_error_code_for_exception(e)
            click.echo(format_error_json(code, e.format_message()), err=True)
            raise SystemExit(1)
        except click.exceptions.Abort:
            click.echo(format_error_json("ABORTED", "Aborted"), err=True)
            raise SystemExit(1)


def _get_kb(ctx: click.Context):
    """Build the knowledge base for the selected data directory."""
    from .core import KnowledgeBase
    from .errors import DevKBError

    try:
        return KnowledgeBase(ctx.obj["config"])
    except DevKBError as e:
        _handle_error(ctx, e)


def _entry_row(entry) -> dict:
    return {
        "id": entry.id,
        "type": entry.type,
        "title": entry.title,
        "tags": ", ".join(entry.tags),
        "created": entry.created_at.strftime("%Y-%m-%d %H:%M"),
    }


def _split_tags(tags: str | None) -> list[str]:
    return [t.strip() for t in tags.split(",") if t.strip()] if tags else []


# ─────────────────────────────────────────────────────────────────────────────
# Commands
# ─────────────────────────────────────────────────────────────────────────────


@click.group(cls=JsonErrorGroup)
@click.version_option(version=DEVKB_VERSION, prog_name="devkb")
@click.option(
    "--data-dir",
    type=click.Path(file_okay=False),
    envvar="DEVKB_DATA_DIR",
    help="Data directory (default: .devkb)",
)
@click.option("--json-errors", is_flag=True, help="Report errors as JSON on stderr")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(ctx: click.Context, data_dir: str | None, json_errors: bool, verbose: bool):
    """DevKB knowledge base: store, search and serve knowledge entries."""
    from .config import load_config
    from .errors import ConfigurationError

    ctx.ensure_object(dict)
    ctx.obj["json_errors"] = json_errors

    try:
        config = load_config(data_dir, log_level="DEBUG" if verbose else None)
    except ConfigurationError as e:
        _handle_error(ctx, e)

    if verbose:
        logging.getLogger("devkb").setLevel(logging.DEBUG)
    ctx.obj["config"] = config


@cli.command()
@click.option("--host", help="Interface to bind (default: 127.0.0.1)")
@click.option("--port", "-p", type=click.IntRange(1, 65535), help="Port (default: 3001)")
@click.pass_context
def serve(ctx: click.Context, host: str | None, port: int | None):
    """Run the HTTP API server."""
    from .webapp.api import serve as run_server

    config = ctx.obj["config"]
    updates = {k: v for k, v in {"host": host, "port": port}.items() if v is not None}
    run_server(config.model_copy(update=updates))


@cli.command()
@click.option(
    "--type", "entry_type",
    type=click.Choice(ENTRY_TYPES),
    required=True,
    help="Entry type",
)
@click.option("--title", required=True, help="Entry title")
@click.option("--content", help="Entry content (or use --file / stdin)")
@click.option("--file", "file_", type=click.File("r", encoding="utf-8"), help="Read content from file ('-' for stdin)")
@click.option("--tags", help="Comma-separated tags")
@click.option("--source", default="cli", show_default=True, help="Provenance label")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def add(
    ctx: click.Context,
    entry_type: str,
    title: str,
    content: str | None,
    file_,
    tags: str | None,
    source: str,
    as_json: bool,
):
    """Add an entry to the knowledge base.

    \b
    Examples:
      devkb add --type=decision --title="Use JWT" --tags=auth,jwt --content="..."
      devkb add --type=code --title="Retry helper" --file=notes.md
    """
    from .errors import DevKBError

    if content is not None and file_ is not None:
        raise UsageError("Use either --content or --file, not both.")
    if file_ is not None:
        content = file_.read()

    kb = _get_kb(ctx)
    try:
        entry = kb.create_entry(entry_type, title, content or "", _split_tags(tags), source)
    except DevKBError as e:
        _handle_error(ctx, e)

    if as_json:
        output(entry, as_json=True)
    else:
        click.echo(f"Created {entry.id}: {entry.title}")


@cli.command()
@click.argument("entry_id")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def get(ctx: click.Context, entry_id: str, as_json: bool):
    """Show a single entry."""
    from .errors import DevKBError

    kb = _get_kb(ctx)
    try:
        entry = kb.get_entry(entry_id)
    except DevKBError as e:
        _handle_error(ctx, e)

    if as_json:
        output(entry, as_json=True)
        return

    click.echo(f"# {entry.title}\n")
    click.echo(f"**Type:** {entry.type}")
    click.echo(f"**Tags:** {', '.join(entry.tags)}")
    click.echo(f"**Source:** {entry.source}")
    click.echo(f"**Created:** {entry.created_at.isoformat()}")
    click.echo("\n---\n")
    click.echo(entry.content)


@cli.command("list")
@click.option("--type", "entry_type", type=click.Choice(ENTRY_TYPES), help="Filter by type")
@click.option("--tag", help="Filter by tag")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def list_cmd(ctx: click.Context, entry_type: str | None, tag: str | None, as_json: bool):
    """List entries, newest first."""
    entries = _get_kb(ctx).list_entries(type=entry_type, tag=tag)

    if as_json:
        output(entries, as_json=True)
    elif not entries:
        click.echo("No entries found.")
    else:
        click.echo(format_table([_entry_row(e) for e in entries], ["id", "type", "title", "tags", "created"]))


@cli.command()
@click.argument("entry_id")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def delete(ctx: click.Context, entry_id: str, as_json: bool):
    """Delete an entry."""
    from .errors import DevKBError

    kb = _get_kb(ctx)
    try:
        entry = kb.remove_entry(entry_id)
    except DevKBError as e:
        _handle_error(ctx, e)

    if as_json:
        output(entry, as_json=True)
    else:
        click.echo(f"Deleted {entry.id}: {entry.title}")


@cli.command()
@click.argument("query")
@click.option("--limit", "-n", type=click.IntRange(min=1), help="Max results")
@click.option("--type", "entry_type", type=click.Choice(ENTRY_TYPES), help="Filter by type")
@click.option("--tag", help="Filter by tag")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def search(
    ctx: click.Context,
    query: str,
    limit: int | None,
    entry_type: str | None,
    tag: str | None,
    as_json: bool,
):
    """Search the knowledge base.

    Each query term scores 3 for a title match, 2 for a tag match and 1 for
    a content match. Ties go to the newest entry.

    \b
    Examples:
      devkb search "auth"
      devkb search "retry backoff" --type=code --limit=5
    """
    from .errors import DevKBError

    if not query.strip():
        raise UsageError("Query cannot be empty.")

    kb = _get_kb(ctx)
    try:
        hits = kb.search(query, limit=limit, type=entry_type, tag=tag)
    except DevKBError as e:
        _handle_error(ctx, e)

    if as_json:
        output([hit.to_scored_entry() for hit in hits], as_json=True)
    elif not hits:
        click.echo("No results found.")
    else:
        rows = [{**_entry_row(hit.entry), "score": hit.score} for hit in hits]
        click.echo(format_table(rows, ["id", "score", "type", "title", "tags"]))


@cli.command()
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def stats(ctx: click.Context, as_json: bool):
    """Show knowledge base statistics."""
    result = _get_kb(ctx).stats()

    if as_json:
        output(result, as_json=True)
        return

    lines = [
        f"Total Entries: {result.total_entries}",
        f"Unique Tags: {result.total_tags}",
        f"Searches: {result.search_history_count}",
        "",
        "By Type:",
        *(f"  {entry_type}: {count}" for entry_type, count in result.by_type.items()),
    ]
    click.echo("\n".join(lines))


@cli.command()
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def tags(ctx: click.Context, as_json: bool):
    """List tags with entry counts."""
    counts = _get_kb(ctx).tags()

    if as_json:
        output(counts, as_json=True)
    elif not counts:
        click.echo("No tags found.")
    else:
        click.echo(format_table([c.model_dump() for c in counts], ["tag", "count"]))


def main():
    """Entry point for devkb CLI."""
    from ._logging import configure_logging

    configure_logging()
    cli()


if __name__ == "__main__":
    main()
