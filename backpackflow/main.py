"""
BackpackFlow - Main Entry Point

Command line front end for the example flows.
"""

import asyncio
import json
import signal
from pathlib import Path
from typing import Optional, Tuple

import click
from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from .core.config import settings
from .core.errors import (
    CancellationError,
    ExecutionError,
    FlowError,
    PostProcessingError,
    PreparationError,
)
from .core.events import EventStreamer, StreamEventType
from .core.flow import RunOutcome, Termination
from .core.state import (
    create_chat_state,
    create_extraction_state,
    create_research_state,
    create_stream_state,
    create_tool_agent_state,
)
from .utils.helpers import format_duration
from .utils.logger import setup_logger, get_logger


console = Console()
logger = get_logger()


# ==================== Failure Reporting ====================

def describe_failure(error: FlowError) -> str:
    """One line per failure kind, naming the node and the cause."""
    cause = f": {error.cause}" if error.cause is not None else ""
    if isinstance(error, CancellationError):
        return f"Cancelled before {error.node_name} could run"
    if isinstance(error, PreparationError):
        return f"{error.node_name} could not prepare its input{cause}"
    if isinstance(error, ExecutionError):
        plural = "s" if error.attempts != 1 else ""
        return f"{error.node_name} failed after {error.attempts} attempt{plural}{cause}"
    if isinstance(error, PostProcessingError):
        return f"{error.node_name} could not record its result{cause}"
    return str(error)


def _report(outcome: RunOutcome) -> bool:
    """Print the failure, if any. Returns True when the run succeeded."""
    if outcome.error is not None:
        style = "yellow" if isinstance(outcome.error, CancellationError) else "red"
        console.print(Panel(
            describe_failure(outcome.error),
            title="Run failed" if style == "red" else "Run cancelled",
            border_style=style,
        ))
        return False

    if outcome.termination == Termination.DEAD_END:
        console.print(
            f"[yellow]Flow stopped: {outcome.last_node.name} returned "
            f"{outcome.last_action!r} with no matching edge[/yellow]"
        )
    console.print(f"[dim]{outcome.steps} steps[/dim]")
    return True


def _exit_on_failure(ok: bool):
    if not ok:
        raise SystemExit(1)


# ==================== CLI Interface ====================

@click.group()
@click.option("--debug", is_flag=True, help="Enable debug logging")
def cli(debug: bool):
    """🎒 BackpackFlow - graph-based LLM flows"""
    if debug or settings.debug_mode:
        setup_logger(level="DEBUG")


@cli.command()
def chat():
    """Start the terminal chatbot."""
    _exit_on_failure(asyncio.run(_chat_mode()))


async def _chat_mode() -> bool:
    from .nodes.chat import build_chat_flow

    console.print(Panel(
        "[bold]Chat with the model.[/bold]\n\nType 'exit' or 'quit' to leave.",
        title="🎒 Chat",
        border_style="green"
    ))

    def show_reply(reply: str):
        console.print("\n[bold green]Assistant:[/bold green]")
        console.print(Markdown(reply))

    flow = build_chat_flow(on_reply=show_reply)
    shared = create_chat_state()
    outcome = await flow.run_outcome(shared)

    console.print(f"\n[yellow]Goodbye![/yellow] [dim]({shared.get('turns', 0)} turns)[/dim]")
    return _report(outcome)


@cli.command()
@click.argument("question")
@click.option("--max-searches", "-m", default=None, type=int, help="Search budget")
@click.option("--json-output", "-j", is_flag=True, help="Output as JSON")
def research(question: str, max_searches: Optional[int], json_output: bool):
    """Research a question on the web and answer it."""
    _exit_on_failure(asyncio.run(_research(question, max_searches, json_output)))


async def _research(question: str, max_searches: Optional[int], json_output: bool) -> bool:
    from .nodes.research import build_research_flow

    console.print(Panel(
        f"[bold blue]Researching:[/bold blue] {question}",
        title="🎒 Research Agent",
        border_style="blue"
    ))

    shared = create_research_state(question, max_searches or settings.max_searches)
    streamer = EventStreamer()
    flow = build_research_flow()
    flow.streamer = streamer

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        console=console,
        transient=True
    ) as progress:
        task = progress.add_task("Deciding...", total=None)

        def on_event(event):
            if event.content.get("event") == "node_start":
                progress.update(task, description=f"{event.content['node']}...")

        streamer.subscribe(flow.name, on_event)
        outcome = await flow.run_outcome(shared)

    if not _report(outcome):
        return False

    answer = shared.get("final_answer")
    if json_output:
        console.print_json(json.dumps({"answer": answer, "search_history": shared["search_history"]}, default=str))
    elif answer:
        _display_answer(answer, shared["search_count"])
    return True


def _display_answer(answer: dict, search_count: int):
    styles = {"high": "green", "medium": "yellow", "low": "red"}
    style = styles.get(answer.get("confidence_level"), "dim")

    console.print()
    console.print(Panel(
        Markdown(answer.get("answer", "")),
        title=answer.get("title", "Answer"),
        border_style=style
    ))

    points = answer.get("key_points", [])
    if points:
        table = Table(title="Key Points")
        table.add_column("#", style="dim")
        table.add_column("Point", style="cyan")
        for i, point in enumerate(points, 1):
            table.add_row(str(i), point)
        console.print(table)

    console.print(
        f"\n[dim]Confidence: {answer.get('confidence_level', 'unknown')} | "
        f"Searches: {search_count} | Sources: {answer.get('sources_used', 0)}[/dim]"
    )


@cli.command()
@click.argument("message")
@click.option("--server-command", default=None, help="Command that starts an MCP server (stdio)")
@click.option("--server-arg", "server_args", multiple=True, help="Argument for the server command (repeatable)")
@click.option("--server-url", default=None, help="URL of an MCP server (SSE)")
def tools(message: str, server_command: Optional[str], server_args: Tuple[str, ...], server_url: Optional[str]):
    """Answer MESSAGE using tools from an MCP server."""
    _exit_on_failure(asyncio.run(_tools(message, server_command, list(server_args), server_url)))


async def _tools(message: str, server_command: Optional[str], server_args: list, server_url: Optional[str]) -> bool:
    from .nodes.tool_agent import build_tool_agent_flow
    from .tools.mcp_client import MCPServerConfig, MCPServerManager

    if server_url:
        config = MCPServerConfig(name="sse", transport="sse", url=server_url)
    elif server_command or settings.mcp_server_command:
        config = MCPServerConfig(
            name=Path(server_command or settings.mcp_server_command).name,
            command=server_command or settings.mcp_server_command,
            args=server_args if server_command else settings.mcp_server_args,
        )
    else:
        console.print("[red]No MCP server given.[/red] Use --server-command/--server-url "
                      "or set BACKPACKFLOW_MCP_SERVER_COMMAND.")
        return False

    shared = create_tool_agent_state(message)

    async with MCPServerManager() as manager:
        flow = build_tool_agent_flow(manager, [config])
        with console.status("Working..."):
            outcome = await flow.run_outcome(shared)

    if not _report(outcome):
        return False

    result = shared.get("last_tool_result")
    request = shared.get("last_tool_request")
    if request is not None and result is not None:
        status = "[green]ok[/green]" if result.success else f"[red]{result.error}[/red]"
        console.print(f"[dim]Tool {request.tool_name} ({format_duration(result.execution_time)}):[/dim] {status}")

    console.print(Panel(Markdown(shared.get("final_response", "")), title="Assistant", border_style="blue"))
    return True


@cli.command()
@click.option("--demo", is_flag=True, help="Stream canned replies without calling the model")
def stream(demo: bool):
    """Start the streaming chatbot (Ctrl+C interrupts a reply)."""
    _exit_on_failure(asyncio.run(_stream(demo)))


async def _stream(demo: bool) -> bool:
    from .nodes.streaming import STREAM_NAMESPACE, ScriptedStreamLLM, build_streaming_flow

    console.print(Panel(
        "[bold]Replies stream as they are written.[/bold]\n\n"
        "Ctrl+C interrupts the current reply, 'exit' leaves.",
        title="🎒 Streaming Chat" + (" (demo)" if demo else ""),
        border_style="green"
    ))

    streamer = EventStreamer()
    interrupt = asyncio.Event()

    streamer.subscribe_to_type(
        STREAM_NAMESPACE, StreamEventType.CHUNK,
        lambda event: console.print(event.content, end="", markup=False, highlight=False),
    )

    def on_final(event):
        suffix = " [yellow](interrupted)[/yellow]" if event.content.interrupted else ""
        console.print(suffix)

    streamer.subscribe_to_type(STREAM_NAMESPACE, StreamEventType.FINAL, on_final)

    loop = asyncio.get_running_loop()
    handles_sigint = True
    try:
        loop.add_signal_handler(signal.SIGINT, interrupt.set)
    except (NotImplementedError, RuntimeError):
        handles_sigint = False
        logger.with_node("CLI").debug("Signal handlers unavailable; replies cannot be interrupted")

    flow = build_streaming_flow(
        streamer,
        interrupt=interrupt,
        llm=ScriptedStreamLLM() if demo else None,
    )
    try:
        outcome = await flow.run_outcome(create_stream_state())
    finally:
        if handles_sigint:
            loop.remove_signal_handler(signal.SIGINT)

    console.print("\n[yellow]Goodbye![/yellow]")
    return _report(outcome)


@cli.command()
@click.argument("files", nargs=-1, type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--concurrency", "-c", default=None, type=int, help="Extract this many resumes at once")
@click.option("--json-output", "-j", is_flag=True, help="Output as JSON")
def extract(files: Tuple[Path, ...], concurrency: Optional[int], json_output: bool):
    """Extract structured profiles from resume FILES (a sample when none given)."""
    _exit_on_failure(asyncio.run(_extract(files, concurrency, json_output)))


async def _extract(files: Tuple[Path, ...], concurrency: Optional[int], json_output: bool) -> bool:
    from .nodes.extraction import SAMPLE_RESUME, build_extraction_flow

    if len(files) > 1:
        shared = create_extraction_state(resumes=[
            {"id": path.name, "text": path.read_text(encoding="utf-8")} for path in files
        ])
        flow = build_extraction_flow(batch=True, concurrency_limit=concurrency)
    else:
        text = files[0].read_text(encoding="utf-8") if files else SAMPLE_RESUME
        shared = create_extraction_state(resume_text=text)
        flow = build_extraction_flow()

    with console.status("Extracting..."):
        outcome = await flow.run_outcome(shared)

    if not _report(outcome):
        return False

    profiles = shared["extracted_profiles"] or [{"id": "resume", "profile": shared["extracted_profile"]}]
    if json_output:
        console.print_json(json.dumps(profiles, default=str))
        return True

    for entry in profiles:
        _display_profile(entry["id"], entry["profile"])
    return True


def _display_profile(resume_id: str, profile: dict):
    table = Table(title=f"{profile.get('name', 'Unknown')} ({resume_id})")
    table.add_column("Field", style="cyan")
    table.add_column("Value", style="green")

    for key in ("email", "phone", "location"):
        table.add_row(key.title(), profile.get(key) or "-")
    for job in profile.get("experience", []):
        table.add_row("Experience", f"{job['title']} @ {job['company']} ({job.get('start') or '?'}-{job.get('end') or '?'})")
    for school in profile.get("education", []):
        table.add_row("Education", f"{school['degree']}, {school['institution']}")
    table.add_row("Skills", ", ".join(profile.get("skills", [])) or "-")

    console.print(table)


# ==================== Entry Point ====================

def main():
    """Main entry point."""
    cli()


if __name__ == "__main__":
    main()
