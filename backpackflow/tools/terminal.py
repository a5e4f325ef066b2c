"""
Terminal input for interactive nodes.
"""

import asyncio
from typing import Optional

from rich.console import Console


class TerminalInput:
    """Read a line from the terminal without blocking the event loop."""

    def __init__(self, console: Optional[Console] = None, prompt: str = "\n[bold cyan]You:[/bold cyan] "):
        self.console = console or Console()
        self.prompt = prompt

    async def __call__(self, prompt: Optional[str] = None) -> Optional[str]:
        """Return the entered line, or None on end of input."""
        try:
            line = await asyncio.to_thread(self.console.input, prompt or self.prompt)
        except (EOFError, KeyboardInterrupt):
            return None
        return line.strip()
