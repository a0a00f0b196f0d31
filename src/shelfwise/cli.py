"""
Command-line entry point: run the API server, manage the document registry,
or ask a one-off question against a registered book.
"""
from __future__ import annotations

import argparse
import asyncio
import sys

from rich.panel import Panel
from rich.table import Table

from .config import HOST, PORT, console
from .document_registry import DocumentRegistry
from .error_classifier import classify, user_message
from .exceptions import ShelfwiseError
from .observability import get_logger

logger = get_logger(__name__)


def display_welcome_banner():
    console.print(Panel(
        "[bold magenta]Shelfwise - Book Chat[/bold magenta]",
        subtitle="[cyan]Per-book retrieval over your library[/cyan]",
        expand=False,
    ))


def cmd_serve(args: argparse.Namespace) -> int:
    import uvicorn

    display_welcome_banner()
    console.print(f"[green]Listening on http://{args.host}:{args.port}[/green]")
    uvicorn.run("shelfwise.api_server:app", host=args.host, port=args.port, reload=args.reload)
    return 0


def cmd_register(args: argparse.Namespace) -> int:
    registry = DocumentRegistry()
    try:
        metadata = registry.register_file(
            args.path,
            title=args.title,
            author=args.author or "",
            document_id=args.document_id,
        )
    except ShelfwiseError as exc:
        console.print(f"[red]Could not register {args.path}: {exc.message}[/red]")
        return 1
    finally:
        registry.close()
    console.print(f"[green]Registered '{metadata.title}' as [bold]{metadata.document_id}[/bold][/green]")
    return 0


def cmd_documents(args: argparse.Namespace) -> int:
    registry = DocumentRegistry()
    try:
        documents = registry.list_documents()
    finally:
        registry.close()

    if not documents:
        console.print("[yellow]No documents registered yet.[/yellow]")
        return 0

    table = Table(title="Registered Books")
    table.add_column("Document ID", style="cyan", no_wrap=True)
    table.add_column("Title", style="magenta")
    table.add_column("Author")
    table.add_column("Indexed", justify="center")
    for doc in documents:
        table.add_row(doc.document_id, doc.title, doc.author or "-", "yes" if doc.is_indexed else "no")
    console.print(table)
    return 0


async def _ask(document_id: str, question: str) -> int:
    from .api_server import build_default_service

    service = build_default_service()
    try:
        with console.status("[bold green]Thinking...[/bold green]"):
            answer = await service.answer(document_id, question)
    except Exception as exc:
        kind = classify(exc)
        logger.error("cli_ask_failed", document_id=document_id, kind=kind.value, error=str(exc))
        console.print(f"[red]{user_message(kind)}[/red]")
        return 1
    finally:
        await service.aclose()
        service.registry.close()

    console.print(Panel(answer.response, title=f"[bold]{answer.payload.title}[/bold]", subtitle=answer.model))
    console.print(f"[dim]Chunks used: {', '.join(str(i) for i in answer.retrieved.indices) or 'none'}[/dim]")
    return 0


def cmd_ask(args: argparse.Namespace) -> int:
    return asyncio.run(_ask(args.document_id, args.question))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="shelfwise", description="Chat with the books in your library.")
    sub = parser.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="Run the HTTP API")
    serve.add_argument("--host", default=HOST)
    serve.add_argument("--port", type=int, default=PORT)
    serve.add_argument("--reload", action="store_true")
    serve.set_defaults(func=cmd_serve)

    register = sub.add_parser("register", help="Copy a PDF or text file into storage and register it")
    register.add_argument("path")
    register.add_argument("--title")
    register.add_argument("--author")
    register.add_argument("--document-id", dest="document_id")
    register.set_defaults(func=cmd_register)

    documents = sub.add_parser("documents", help="List registered books")
    documents.set_defaults(func=cmd_documents)

    ask = sub.add_parser("ask", help="Ask one question about a registered book")
    ask.add_argument("document_id")
    ask.add_argument("question")
    ask.set_defaults(func=cmd_ask)
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        return args.func(args)
    except KeyboardInterrupt:
        console.print("\n[bold magenta]Goodbye![/bold magenta]")
        return 130


if __name__ == "__main__":
    sys.exit(main())
