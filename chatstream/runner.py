"""
CLI entrypoint for the chat stream server and its terminal client.
"""
import sys
import asyncio
import typer
from loguru import logger
from rich.console import Console

from chatstream.client.chat_client import ChatClient
from chatstream.client.conversations import ConversationSidebar
from chatstream.client.visualizer import Visualizer
from chatstream.shared.config import settings

app = typer.Typer(help="Chat Stream CLI Manager")
console = Console()


def configure_logging(level: str = settings.LOG_LEVEL) -> None:
    logger.remove()
    logger.add(sys.stderr, level=level.upper())


@app.callback()
def main(log_level: str = typer.Option(settings.LOG_LEVEL, help="Log level for the loguru sink")):
    configure_logging(log_level)


@app.command()
def server():
    """Start the FastAPI backend server using Uvicorn."""
    import uvicorn
    typer.echo(f"Starting server on port {settings.PORT}...")
    uvicorn.run("chatstream.server.main:app", host=settings.HOST, port=settings.PORT, log_level=settings.LOG_LEVEL.lower())


async def _chat_loop(base_url: str, persona: str | None, debug: bool) -> None:
    async with ChatClient(base_url, persona=persona, debug=debug) as client:
        sidebar = ConversationSidebar(base_url, http=client.http, csrf=client.csrf,
                                      location=client.location, bus=client.bus)
        visualizer = Visualizer(client)
        with sidebar.listening():
            while True:
                message = await asyncio.to_thread(console.input, "[bold cyan]> [/]")
                command = message.strip().lower()
                if command in ("/quit", "/exit"):
                    break
                if command == "/new":
                    ok = await client.new_conversation()
                    console.print("New conversation started." if ok else "[red]Reset failed.[/]")
                    continue
                if command in ("/yes", "/always"):
                    await client.memory_panel.confirm("user" if command == "/always" else "conversation")
                elif command == "/no":
                    await client.memory_panel.reject()
                else:
                    await visualizer.send(message)
                console.print(visualizer.render_transcript())
                console.print(visualizer.render_side())
        client.memory_panel.dismiss()


@app.command()
def chat(
    persona: str = typer.Option(None, help="Persona to answer with"),
    debug: bool = typer.Option(False, help="Ask the server for debug ids"),
    base_url: str = typer.Option(settings.BASE_URL, help="Server base URL"),
):
    """Chat with the server in the terminal. /new, /yes, /always, /no, /quit."""
    try:
        asyncio.run(_chat_loop(base_url, persona, debug))
    except KeyboardInterrupt:
        pass


@app.command()
def conversations(base_url: str = typer.Option(settings.BASE_URL, help="Server base URL")):
    """List the stored conversations."""
    async def _list():
        async with ConversationSidebar(base_url) as sidebar:
            return await sidebar.load(), sidebar.error

    items, error = asyncio.run(_list())
    if error:
        typer.echo(error)
        raise typer.Exit(1)
    for conv in items:
        typer.echo(f"{conv.id}  {conv.title or 'New conversation'}  ({conv.message_count} msg)")


@app.command()
def estimate(message: str, base_url: str = typer.Option(settings.BASE_URL, help="Server base URL")):
    """Estimate the cost of sending MESSAGE."""
    async def _estimate():
        async with ChatClient(base_url) as client:
            return await client.estimate_cost(message)

    typer.echo(asyncio.run(_estimate()).model_dump_json())


if __name__ == "__main__":
    app()
