#!/usr/bin/env python3
"""Interactive chat CLI for the conversation runtime."""

import sys
import time
from concurrent.futures import Future, ThreadPoolExecutor

import httpx
from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel
from rich.prompt import Confirm, Prompt
from rich.table import Table

APPROVAL_POLL_INTERVAL = 0.5


class ChatCLI:
    """Interactive chat interface that also answers tool approval requests."""

    def __init__(self, base_url: str = "http://localhost:9001"):
        """Initialize chat CLI."""
        self.base_url = base_url
        self.session_id: str | None = None
        self.console = Console()
        self.client = httpx.Client(timeout=300.0)
        self.pool = ThreadPoolExecutor(max_workers=1)

    def start(self) -> None:
        """Start the interactive chat session."""
        self.console.print(
            Panel.fit(
                "[bold blue]Turnwise - Interactive Chat[/bold blue]\n"
                "Type your messages to chat with the assistant.\n"
                "Commands: /help, /history, /reset <message-id>, /clear, /quit",
                border_style="blue",
            )
        )

        if not self._test_connection():
            self.console.print("[red]❌ Cannot connect to the service. Make sure it's running.[/red]")
            return

        self.console.print("[green]✅ Connected to turnwise service[/green]\n")

        try:
            while True:
                user_input = Prompt.ask("\n[bold cyan]You[/bold cyan]")
                command = user_input.strip()

                if command.lower() in ["/quit", "/exit", "quit", "exit"]:
                    break
                elif command.lower() == "/help":
                    self._show_help()
                    continue
                elif command.lower() == "/history":
                    self._show_history()
                    continue
                elif command.lower().startswith("/reset"):
                    self._reset(command.removeprefix("/reset").strip())
                    continue
                elif command.lower() == "/clear":
                    self._clear()
                    continue
                elif command == "":
                    continue

                response = self._send_message(user_input)
                if response:
                    self._display_response(response)

        except KeyboardInterrupt:
            pass
        finally:
            self.console.print("\n[yellow]👋 Goodbye![/yellow]")
            self.pool.shutdown(wait=False, cancel_futures=True)
            self.client.close()

    def _test_connection(self) -> bool:
        """Test connection to the service."""
        try:
            response = self.client.get(f"{self.base_url}/health")
            return response.status_code == 200
        except httpx.HTTPError:
            return False

    def _send_message(self, message: str) -> dict | None:
        """Send a message, answering approval requests until the reply arrives."""
        payload = {"message": message}
        if self.session_id:
            payload["session_id"] = self.session_id

        self.console.print("[dim]💭 Thinking...[/dim]")
        pending: Future = self.pool.submit(self.client.post, f"{self.base_url}/conversation", json=payload)

        try:
            while not pending.done():
                self._answer_approvals()
                time.sleep(APPROVAL_POLL_INTERVAL)
            response = pending.result()
        except httpx.HTTPError as e:
            self.console.print(f"[red]❌ Connection error: {e}[/red]")
            return None

        if response.status_code == 200:
            data = response.json()
            self.session_id = data.get("session_id")
            return data
        self.console.print(f"[red]❌ API Error: {response.status_code} - {response.text}[/red]")
        return None

    def _answer_approvals(self) -> None:
        """Ask the user about every tool call waiting for permission."""
        response = self.client.get(f"{self.base_url}/approvals")
        if response.status_code != 200:
            return
        for request in response.json():
            if self.session_id and request.get("requester") not in (None, self.session_id):
                continue
            self.console.print(
                Panel(
                    f"[bold]{request['tool_name']}[/bold]\n{request.get('arguments') or '{}'}",
                    title="[yellow]🔐 Approval requested[/yellow]",
                    border_style="yellow",
                )
            )
            approved = Confirm.ask("Allow this tool call?", default=False)
            decision = {"status": "approved" if approved else "denied"}
            if not approved:
                decision["content"] = Prompt.ask("Reason", default="user rejected tool execution")
            self.client.post(f"{self.base_url}/approvals/{request['id']}", json=decision)

    def _display_response(self, response: dict) -> None:
        """Display assistant response with nice formatting."""
        assistant_text = response.get("response", "No response")
        rounds = response.get("rounds", 0)

        self.console.print(
            Panel(
                Markdown(assistant_text),
                title="[bold green]🤖 Assistant[/bold green]",
                subtitle=f"[dim]{rounds} tool rounds[/dim]" if rounds else None,
                border_style="green",
                padding=(1, 2),
            )
        )

    def _show_history(self) -> None:
        """Show the conversation's messages with their ids."""
        if not self.session_id:
            self.console.print("[yellow]No conversation yet[/yellow]")
            return
        response = self.client.get(f"{self.base_url}/conversations/{self.session_id}/messages")
        if response.status_code != 200:
            self.console.print(f"[red]❌ API Error: {response.status_code} - {response.text}[/red]")
            return

        table = Table(title="Conversation")
        table.add_column("Id", style="dim")
        table.add_column("Type")
        table.add_column("Content")
        for message in response.json()["messages"]:
            content = message.get("content") or ""
            if message["type"] == "tool_call":
                content = ", ".join(call["name"] for call in message["tool_calls"])
            elif message["type"] == "tool_response":
                content = ", ".join(item["response_data"][:60] for item in message["tool_responses"])
            table.add_row(message["id"], message["type"], content[:80])
        self.console.print(table)

    def _reset(self, message_id: str) -> None:
        """Rewind the conversation to before the given message."""
        if not self.session_id or not message_id:
            self.console.print("[yellow]Usage: /reset <message-id> (see /history)[/yellow]")
            return
        response = self.client.post(
            f"{self.base_url}/conversations/{self.session_id}/reset", json={"message_id": message_id}
        )
        if response.status_code == 200:
            self.console.print(f"[yellow]🔄 Conversation rewound before {message_id}[/yellow]")
        else:
            self.console.print(f"[red]❌ API Error: {response.status_code} - {response.text}[/red]")

    def _clear(self) -> None:
        """Delete the conversation and start over."""
        if self.session_id:
            self.client.delete(f"{self.base_url}/conversations/{self.session_id}")
        self.session_id = None
        self.console.print("[yellow]🔄 Session cleared[/yellow]")

    def _show_help(self) -> None:
        """Show help information."""
        help_text = """
[bold]Available Commands:[/bold]
• /help - Show this help message
• /history - Show the conversation with message ids
• /reset <message-id> - Drop that message and everything after it
• /clear - Delete the conversation and start over
• /quit or /exit - Exit the chat

[bold]Tips:[/bold]
• Ask "What time is it in Tokyo?" to see a tool call
• With TURNWISE_APPROVAL_MODE=human and TURNWISE_SECURITY_LEVEL=strict you are asked before tools run
        """

        self.console.print(Panel(help_text.strip(), title="[cyan]❓ Help[/cyan]", border_style="cyan"))


def main():
    """Main entry point for the chat CLI."""
    base_url = sys.argv[1] if len(sys.argv) > 1 else "http://localhost:9001"

    chat = ChatCLI(base_url)
    chat.start()


if __name__ == "__main__":
    main()
