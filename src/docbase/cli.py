#!/usr/bin/env python3
"""docbase CLI for browsing and inspecting collections."""

import argparse
import json

import questionary
from rich.console import Console
from rich.table import Table

from docbase.config import config, configure_logging
from docbase.crud import CrudService
from docbase.errors import DocbaseError, InvalidArgument
from docbase.pagination import Direction, Page, SortSpec
from docbase.projection import from_extended_json, to_json_compatible
from docbase.store import create_store

console = Console()


def build_table(collection: str, page: Page) -> Table:
    """Render a page of records as a table, one column per field seen."""
    rows = [to_json_compatible(record.to_dict()) for record in page]
    columns = ["id"]
    for row in rows:
        for key in row:
            if key not in columns:
                columns.append(key)

    table = Table(title=collection)
    for column in columns:
        table.add_column(column)
    for row in rows:
        table.add_row(*(_cell(row.get(column)) for column in columns))
    return table


def _cell(value) -> str:
    if value is None:
        return ""
    if isinstance(value, (dict, list)):
        return json.dumps(value)
    return str(value)


def browse(service: CrudService, sort: SortSpec, filter: dict = None, limit: int = None) -> None:
    """Page through a collection interactively."""
    cursor, direction = None, Direction.FORWARD
    while True:
        page = service.find_many(filter, sort, cursor, direction, limit, with_count=True)
        if not page.edges:
            console.print("[red]No records found.[/]")
            return

        console.print(build_table(service.collection, page))
        console.print(f"[dim]{len(page)} of {page.total_count} records[/]")

        choices = []
        if page.has_previous_page:
            choices.append(questionary.Choice(title="Previous page", value="previous"))
        if page.has_next_page:
            choices.append(questionary.Choice(title="Next page", value="next"))
        choices.append(questionary.Choice(title="Quit", value="quit"))

        action = questionary.select("Navigate:", choices=choices).ask()
        # User pressed Ctrl+C or Escape
        if action is None or action == "quit":
            console.print("[dim]Done.[/]")
            return
        if action == "next":
            cursor, direction = page.page_info.end_cursor, Direction.FORWARD
        else:
            cursor, direction = page.page_info.start_cursor, Direction.BACKWARD


def show(service: CrudService, record_id: str) -> None:
    """Print one record as JSON."""
    record = service.find_by_id(record_id)
    if record is None:
        console.print(f"[red]No record {record_id} in {service.collection}.[/]")
        return
    console.print_json(data=to_json_compatible(record.to_dict()))


def _parse_filter(text: str | None) -> dict | None:
    if not text:
        return None
    try:
        return from_extended_json(json.loads(text))
    except ValueError:
        raise InvalidArgument("--filter must be a JSON object", field="filter")


def main(argv: list[str] = None) -> int:
    parser = argparse.ArgumentParser(description="docbase CLI")
    subparsers = parser.add_subparsers(dest="command", required=True)

    browse_parser = subparsers.add_parser("browse", help="Page through a collection")
    browse_parser.add_argument("collection")
    browse_parser.add_argument("--sort", default=None, help='e.g. "seq,-createdAt"')
    browse_parser.add_argument("--filter", default=None, help="JSON filter document")
    browse_parser.add_argument("--limit", type=int, default=config.default_page_limit)

    show_parser = subparsers.add_parser("show", help="Show one record")
    show_parser.add_argument("collection")
    show_parser.add_argument("id")

    args = parser.parse_args(argv)
    configure_logging()

    store = create_store(config)
    try:
        service = CrudService(store, args.collection)
        if args.command == "browse":
            browse(service, SortSpec.parse(args.sort), _parse_filter(args.filter), args.limit)
        elif args.command == "show":
            show(service, args.id)
    except DocbaseError as exc:
        console.print(f"[red]{exc.kind}: {exc.message}[/]")
        return 1
    finally:
        store.close()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
