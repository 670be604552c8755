"""Rich console callback for the agent loop."""

from __future__ import annotations

from rich.console import Console
from rich.panel import Panel
from rich.text import Text

MAX_RESULT_LINES = 30
MAX_RESULT_CHARS = 2000

TOOL_ICONS = {
    "github_graphql": "🐙",
    "wait": "⏰",
    "done": "✅",
}


def _truncate(text: str) -> str:
    lines = text.splitlines()
    if len(lines) > MAX_RESULT_LINES or len(text) > MAX_RESULT_CHARS:
        truncated = "\n".join(lines[:MAX_RESULT_LINES])[:MAX_RESULT_CHARS]
        omitted = len(lines) - MAX_RESULT_LINES
        if omitted > 0:
            truncated += f"\n... ({omitted} more lines)"
        return truncated
    return text


class ConsoleCallback:
    def __init__(self, console: Console | None = None) -> None:
        self.console = console or Console()

    def on_step_start(self, step: int, max_steps: int) -> None:
        self.console.rule(f"[bold blue]Turn {step}/{max_steps}", style="blue")

    def on_tool_call(self, name: str, arguments: str) -> None:
        icon = TOOL_ICONS.get(name, "🔧")
        self.console.print(f"  {icon} [bold cyan]{name}[/]")
        self.console.print(Text(_truncate(arguments), style="dim"))

    def on_tool_result(self, name: str, result: str) -> None:
        self.console.print(
            Panel(
                Text(_truncate(result), style="dim"),
                title="[dim]result",
                border_style="dim",
                padding=(0, 1),
            )
        )

    def on_finish(self, text: str, steps: int, tool_calls: int) -> None:
        self.console.print()
        self.console.rule("[bold green]Agent finished", style="green")
        self.console.print(
            Panel(
                text,
                title=f"[bold green]Summary ({steps} turns, {tool_calls} tool calls)",
                border_style="green",
                padding=(0, 1),
            )
        )
