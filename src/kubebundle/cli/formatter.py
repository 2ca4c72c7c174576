# src/kubebundle/cli/formatter.py
from typing import List

from rich.console import Console
from rich.panel import Panel
from rich.syntax import Syntax
from rich.table import Table
from rich.text import Text

from kubebundle.find.images import ContainerImage

# Documents go to stdout; reports and errors to stderr so output can be piped.
console = Console()
err_console = Console(stderr=True)


class BundleFormatter:
    """
    BundleFormatter: the visual side of the CLI.
    Renders documents, validation reports, image listings and error chains.
    """

    def __init__(self, out: Console = console, err: Console = err_console):
        self.out = out
        self.err = err

    def print_document(self, text: str, output_format: str = "yaml", pretty: bool = False):
        """Writes a rendered document. pretty adds syntax highlighting for terminals."""
        if pretty and self.out.is_terminal:
            self.out.print(Syntax(text.rstrip("\n"), output_format, theme="monokai"))
            return
        self.out.out(text, end="", highlight=False)

    def print_validation(self, source: str, errors: List[str]):
        if not errors:
            self.err.print(Text(f"✅ {source} is valid", style="bold green"))
            return

        table = Table(title=f"Validation Report: {source}", show_lines=True, header_style="bold magenta")
        table.add_column("#", justify="right", style="dim")
        table.add_column("Problem", style="red")
        for i, e in enumerate(errors, start=1):
            table.add_row(str(i), Text(e))
        self.err.print(table)

    def print_images(self, images: List[ContainerImage]):
        table = Table(title="Container Images", header_style="bold magenta")
        table.add_column("Component", style="cyan")
        table.add_column("Object")
        table.add_column("Image", style="bold")
        for ci in images:
            _, kind, ns, name = ci.object
            obj = f"{kind}/{ns}/{name}" if ns else f"{kind}/{name}"
            table.add_row(Text(str(ci.component)), Text(obj), Text(ci.image))
        self.out.print(table)

    def print_error_chain(self, chain: List[str]):
        """Shows an error and each of its causes, outermost first."""
        body = "\n".join(f"{'  ' * i}{'↳ ' if i else ''}{msg}" for i, msg in enumerate(chain))
        self.err.print(Panel(Text(body), title="[bold red]Error[/bold red]", border_style="red", expand=False))
