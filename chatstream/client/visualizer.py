"""
MODULE OVERVIEW:
The Rich terminal chat window.

WHAT IS HAPPENING HERE:
We use Rich to draw the `ChatView` the dispatcher is mutating. The turn runs
as a background task and the Live display redraws a few times per second,
so the answer visibly grows token by token, the "thinking" label changes on
every status event, and the memory proposal appears in the side panel.
"""

import asyncio
from rich.console import Group
from rich.layout import Layout
from rich.live import Live
from rich.markdown import Markdown
from rich.panel import Panel
from rich.text import Text

from chatstream.client.chat_client import ChatClient


class Visualizer:
    def __init__(self, client: ChatClient, max_messages: int = 8):
        self.client = client
        self.max_messages = max_messages

    def render_transcript(self) -> Group:
        view = self.client.view
        items = []
        for message in view.messages[-self.max_messages:]:
            if message.role == "user":
                items.append(Panel(Text(message.text), title="You", title_align="right", style="cyan"))
            else:
                style = "red" if message.kind == "failure" else "green"
                subtitle = f"debug {message.debug_id}" if message.debug_id else None
                items.append(Panel(Markdown(message.text or " "), title="Assistant", subtitle=subtitle, style=style))
        if view.loading_label is not None:
            items.append(Text(f"… {view.loading_label}", style="yellow italic"))
        if not items:
            items.append(Text("Start a conversation.", style="dim"))
        return Group(*items)

    def render_side(self) -> Panel:
        view = self.client.view
        if view.memory_feedback:
            body = Text(view.memory_feedback, style="green")
        elif view.memory_proposal:
            body = Text.assemble(
                ("Remember: ", "bold"), view.memory_proposal["fact"],
                "\n\n/no  /yes (this conversation)  /always",
            )
        else:
            body = Text("No pending proposal", style="dim")
        return Panel(body, title="Memory")

    def generate_layout(self) -> Layout:
        layout = Layout()
        layout.split_column(
            Layout(name="header", size=3),
            Layout(name="main")
        )
        layout["main"].split_row(
            Layout(name="left", ratio=3),
            Layout(name="right", ratio=1)
        )

        conversation = self.client.location.conversation_id or "new"
        status = "STREAMING" if self.client.busy else "READY"
        color = "yellow" if self.client.busy else "green"
        layout["header"].update(Panel(f"[{color} bold]Conversation: {conversation} | Status: {status}[/]", style=color))
        layout["left"].update(Panel(self.render_transcript(), title="Chat"))
        layout["right"].update(self.render_side())
        return layout

    async def send(self, message: str) -> None:
        turn = asyncio.create_task(self.client.send(message))
        with Live(self.generate_layout(), refresh_per_second=8, transient=True) as live:
            while not turn.done():
                live.update(self.generate_layout())
                await asyncio.sleep(0.125)
        await turn
