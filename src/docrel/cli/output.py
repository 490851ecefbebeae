"""Output formatting for CLI commands."""

import json
from typing import Any

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from docrel.core.types import SchemaInfo, TableInfo
from docrel.exceptions import DocrelError

console = Console()


class OutputFormatter:
    """Formats output for terminal or JSON mode."""

    def __init__(self, json_mode: bool = False) -> None:
        """Initialize formatter.

        Args:
            json_mode: If True, output JSON instead of Rich formatting
        """
        self.json_mode = json_mode

    def print_schema(self, schema: SchemaInfo) -> None:
        if self.json_mode:
            print(json.dumps(schema.model_dump(mode="json"), default=str, indent=2))
            return
        console.print(
            f"[bold]{schema.total_tables} tables, {schema.total_relations} relations[/bold]"
        )
        for table in schema.tables.values():
            self.print_table_info(table)

    def print_table_info(self, table: TableInfo) -> None:
        """Print a table with its fields, indexes and relations.

        Args:
            table: Table information to display
        """
        if self.json_mode:
            print(json.dumps(table.model_dump(mode="json"), default=str, indent=2))
            return

        console.print(f"\n[bold]Table:[/bold] {table.name} (pk: {table.primary_key})")

        if table.fields:
            fields_table = Table(show_header=True, header_style="bold cyan")
            fields_table.add_column("Name")
            fields_table.add_column("Type")
            fields_table.add_column("Required")
            fields_table.add_column("Unique")
            fields_table.add_column("Indexed")
            for field in table.fields:
                fields_table.add_row(
                    field.name,
                    field.type,
                    "✓" if field.required else "",
                    "✓" if field.unique else "",
                    "✓" if field.indexed else "",
                )
            console.print(fields_table)

        compound = [index for index in table.indexes if index.compound]
        if compound:
            console.print(f"[bold]Compound indexes ({len(compound)}):[/bold]")
            for index in compound:
                console.print(f"  {index.name}: ({', '.join(index.fields)})")

        if table.relations:
            rel_table = Table(show_header=True, header_style="bold cyan")
            rel_table.add_column("Relation")
            rel_table.add_column("Type")
            rel_table.add_column("Target")
            rel_table.add_column("Links")
            for relation in table.relations:
                rel_table.add_row(
                    relation.name,
                    relation.relation_type,
                    relation.target_table,
                    "; ".join(relation.links),
                )
            console.print(rel_table)

    def print_success(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Print success message.

        Args:
            message: Success message
            details: Optional details to display
        """
        if self.json_mode:
            output = {"success": True, "message": message}
            if details:
                output.update(details)
            print(json.dumps(output, default=str, indent=2))
        else:
            console.print(f"✓ {message}", style="green")
            if details:
                for key, value in details.items():
                    console.print(f"  {key}: {value}", style="dim")

    def print_error(self, error: Exception) -> None:
        """Print error message.

        Args:
            error: Exception to display
        """
        if self.json_mode:
            if isinstance(error, DocrelError):
                print(json.dumps(error.to_dict(), default=str, indent=2))
            else:
                print(json.dumps({"error": str(error)}, indent=2))
        else:
            error_text = str(error)
            if isinstance(error, DocrelError) and error.context:
                context_str = "\n".join(f"{k}: {v}" for k, v in error.context.items())
                error_text = f"{error_text}\n\n{context_str}"

            panel = Panel(
                error_text,
                title="[red]Error[/red]",
                border_style="red",
            )
            console.print(panel)
