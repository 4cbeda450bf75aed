# =============================================================================
# docvault/cli/docvault_cli.py: DocVault Command-Line Interface
# =============================================================================
#
# Operator CLI over the DocVault services.  Every command resolves the
# caller's API key to a Principal first, so the CLI sees exactly what an
# API client with the same key would see.
#
# Typical usage:
#   python -m docvault.cli upload invoice.pdf notes.txt
#   python -m docvault.cli search "acme invoice" --tag vendor:acme
#   python -m docvault.cli ask "What did I pay Acme in March?"
#   python -m docvault.cli reclaim
#   python -m docvault.cli health
#
# The API key comes from --api-key or the DOCVAULT_API_KEY environment
# variable.  Logs go to stderr; --json prints machine-readable output.
# =============================================================================

"""Command-line interface for DocVault.

Usage::

    python -m docvault.cli upload FILE [FILE ...] [--workspace WS]
    python -m docvault.cli list [--status ready]
    python -m docvault.cli search [QUERY] [--tag TAG] [--type pdf] [--faceted | --semantic]
    python -m docvault.cli ask MESSAGE [--session ID] [--no-stream | --sse]
"""

from __future__ import annotations

import argparse
import asyncio
import json
import os
import sys
from pathlib import Path
from typing import Any

from pydantic import BaseModel

from docvault.config.settings import Settings
from docvault.models.auth import Principal
from docvault.models.ingestion import UploadFile
from docvault.models.search import SearchQuery
from docvault.utils.errors import DocVaultError
from docvault.utils.logging import configure_logging, get_logger
from docvault.utils.sse import sse_frames

_logger = get_logger(__name__)

API_KEY_ENV = "DOCVAULT_API_KEY"


# ---------------------------------------------------------------------------
# Output helpers
# ---------------------------------------------------------------------------


def _print_json(value: Any) -> None:
    if isinstance(value, BaseModel):
        value = value.model_dump(mode="json")
    elif isinstance(value, list):
        value = [v.model_dump(mode="json") if isinstance(v, BaseModel) else v for v in value]
    print(json.dumps(value, indent=2, default=str))


def _format_tags(tags: list) -> str:  # noqa: ANN001
    if not tags:
        return "-"
    return ", ".join(f"{t.category.value}:{t.name}" if t.category else t.name for t in tags)


# ---------------------------------------------------------------------------
# Subcommand handlers
# ---------------------------------------------------------------------------


async def _handle_upload(args: argparse.Namespace, services, principal: Principal) -> int:  # noqa: ANN001
    files: list[UploadFile] = []
    for raw_path in args.files:
        path = Path(raw_path)
        if not path.is_file():
            print(f"Error: {path} is not a file", file=sys.stderr)
            return 1
        files.append(UploadFile(filename=path.name, content=path.read_bytes()))

    results = await services.uploads.upload(principal, files, workspace_id=args.workspace)
    if args.json:
        _print_json(results)
        return 0
    for result in results:
        line = f"  {result.status:<10} {result.id}  {result.title}"
        if result.error_message:
            line += f"  ({result.error_message})"
        print(line)
    return 0 if all(r.status != "error" for r in results) else 2


async def _handle_list(args: argparse.Namespace, services, principal: Principal) -> int:  # noqa: ANN001
    page = await services.documents.list_documents(
        principal,
        workspace_id=args.workspace,
        status=args.status,
        limit=args.limit,
        offset=args.offset,
    )
    if args.json:
        _print_json(page)
        return 0
    for document in page.documents:
        print(f"  {document.status.value:<10} {document.id}  {document.title}  [{document.mime_type}]")
    more = " (more available)" if page.has_more else ""
    print(f"\n{len(page.documents)} of {page.total} documents{more}")
    return 0


async def _handle_show(args: argparse.Namespace, services, principal: Principal) -> int:  # noqa: ANN001
    detail = await services.documents.get_document(principal, args.document_id)
    if args.json:
        _print_json(detail)
        return 0
    document = detail.document
    print(f"Title:     {document.title}")
    print(f"Id:        {document.id}")
    print(f"Workspace: {document.workspace_id}")
    print(f"Type:      {document.mime_type} ({document.file_size_bytes} bytes)")
    print(f"Status:    {document.status.value}")
    if document.page_count is not None:
        print(f"Pages:     {document.page_count}")
    if document.error_message:
        print(f"Error:     {document.error_message}")
    if document.degraded_reason:
        print(f"Degraded:  {document.degraded_reason}")
    print(f"Tags:      {_format_tags(detail.tags)}")
    return 0


async def _handle_text(args: argparse.Namespace, services, principal: Principal) -> int:  # noqa: ANN001
    text = await services.documents.get_text(principal, args.document_id)
    print(text)
    return 0


async def _handle_delete(args: argparse.Namespace, services, principal: Principal) -> int:  # noqa: ANN001
    if not args.yes:
        confirm = input(f"  Delete document {args.document_id}? [y/N] ").strip().lower()
        if confirm not in ("y", "yes"):
            print("  Aborted.")
            return 0
    await services.documents.delete_document(principal, args.document_id)
    print(f"  Deleted {args.document_id}")
    return 0


async def _handle_reprocess(args: argparse.Namespace, services, principal: Principal) -> int:  # noqa: ANN001
    outcome = await services.documents.reprocess(principal, args.document_id)
    if args.json:
        _print_json(outcome)
        return 0
    print(f"  {outcome.status.value:<10} {outcome.document_id}  chunks={outcome.chunk_count} tags={outcome.tag_count}")
    if outcome.error_message:
        print(f"  Error: {outcome.error_message}")
    return 0


async def _handle_search(args: argparse.Namespace, services, principal: Principal) -> int:  # noqa: ANN001
    query = SearchQuery(
        query=args.query,
        tags=args.tag or [],
        document_types=args.type or [],
        date_from=args.date_from,
        date_to=args.date_to,
        workspace_id=args.workspace,
        limit=args.limit,
        offset=args.offset,
    )
    if args.faceted:
        page = await services.retriever.faceted_search(principal, query)
    elif args.semantic:
        page = await services.retriever.semantic_search(principal, query)
    else:
        page = await services.retriever.search(principal, query)
    if args.json:
        _print_json(page)
        return 0
    for result in page.results:
        score = f"{result.relevance_score:.3f}" if result.relevance_score is not None else "  -  "
        print(f"  {score}  {result.id}  {result.title}")
        if result.snippet:
            print(f"         {result.snippet[:120].replace(chr(10), ' ')}")
    more = " (more available)" if page.has_more else ""
    print(f"\n{len(page.results)} of {page.total} results{more}")
    return 0


async def _handle_ask(args: argparse.Namespace, services, principal: Principal) -> int:  # noqa: ANN001
    session_id = args.session
    if session_id is None:
        session = await services.chat.create_session(principal, workspace_id=args.workspace)
        session_id = session.id
        print(f"Session: {session_id}", file=sys.stderr)

    if args.sse:
        async for frame in sse_frames(services.rag.stream(principal, session_id, args.message)):
            print(frame, end="", flush=True)
        return 0

    if args.no_stream:
        answer = await services.rag.ask(principal, session_id, args.message)
        if args.json:
            _print_json(answer)
            return 0
        print(answer.message.content)
        sources = [s.model_dump() for s in answer.sources]
    else:
        sources = []
        failed = False
        async for event in services.rag.stream(principal, session_id, args.message):
            if event.type == "content":
                print(event.data["text"], end="", flush=True)
            elif event.type == "sources":
                sources = event.data["sources"]
            elif event.type == "error":
                print(f"\nError: {event.data['message']}", file=sys.stderr)
                failed = True
        print()
        if failed:
            return 1

    if sources:
        print("\nSources:")
        for index, source in enumerate(sources, start=1):
            print(f"  [{index}] {source['document_title']} ({source['relevance_score']:.3f})")
    return 0


async def _handle_sessions(args: argparse.Namespace, services, principal: Principal) -> int:  # noqa: ANN001
    page = await services.chat.list_sessions(
        principal,
        workspace_id=args.workspace,
        limit=args.limit,
        offset=args.offset,
    )
    if args.json:
        _print_json(page)
        return 0
    for summary in page.sessions:
        preview = (summary.last_message or "").replace("\n", " ")[:60]
        print(f"  {summary.session.id}  {summary.session.title:<24} {preview}")
    print(f"\n{len(page.sessions)} of {page.total} sessions")
    return 0


async def _handle_tags(args: argparse.Namespace, services, principal: Principal) -> int:  # noqa: ANN001
    tags = await services.tags.list_tags(principal, workspace_id=args.workspace, category=args.category)
    if args.json:
        _print_json(tags)
        return 0
    for tag in tags:
        category = tag.category.value if tag.category else "-"
        print(f"  {tag.usage_count:>5}  {category:<14} {tag.name}  ({tag.id})")
    return 0


async def _handle_tag_merge(args: argparse.Namespace, services, principal: Principal) -> int:  # noqa: ANN001
    merged = await services.tags.merge_tags(principal, args.target, args.sources)
    if args.json:
        _print_json(merged)
        return 0
    print(f"  Merged {len(args.sources)} tag(s) into {merged.name} (usage {merged.usage_count})")
    return 0


async def _handle_reclaim(args: argparse.Namespace, services, principal: Principal) -> int:  # noqa: ANN001
    reclaimed = await services.reclaimer.sweep()
    if args.json:
        _print_json(reclaimed)
        return 0
    print(f"  Reclaimed {len(reclaimed)} document(s)")
    for document_id in reclaimed:
        print(f"    {document_id}")
    return 0


async def _handle_health(args: argparse.Namespace, services, principal: Principal) -> int:  # noqa: ANN001
    status = await services.check_providers()
    if args.json:
        _print_json(status)
        return 0
    for name, available in status.items():
        print(f"  {'ok' if available else 'down':<5} {name}")
    return 0


_HANDLERS = {
    "upload": _handle_upload,
    "list": _handle_list,
    "show": _handle_show,
    "text": _handle_text,
    "delete": _handle_delete,
    "reprocess": _handle_reprocess,
    "search": _handle_search,
    "ask": _handle_ask,
    "sessions": _handle_sessions,
    "tags": _handle_tags,
    "tag-merge": _handle_tag_merge,
    "reclaim": _handle_reclaim,
    "health": _handle_health,
}


# ---------------------------------------------------------------------------
# Argument parser
# ---------------------------------------------------------------------------


def _build_parser() -> argparse.ArgumentParser:
    """Build the argparse parser for the DocVault CLI."""
    parser = argparse.ArgumentParser(
        prog="python -m docvault.cli",
        description="Upload, search and chat with your DocVault documents.",
    )
    parser.add_argument("--api-key", default=None, help=f"API key (default: ${API_KEY_ENV})")
    parser.add_argument("--json", action="store_true", help="Print JSON instead of text")
    subparsers = parser.add_subparsers(dest="command", help="DocVault commands")

    # -- upload --
    upload_parser = subparsers.add_parser("upload", help="Upload and ingest files")
    upload_parser.add_argument("files", nargs="+", help="Paths of the files to upload")
    upload_parser.add_argument("--workspace", default=None, help="Target workspace id")

    # -- list --
    list_parser = subparsers.add_parser("list", help="List documents")
    list_parser.add_argument("--workspace", default=None)
    list_parser.add_argument("--status", default=None, choices=["pending", "processing", "ready", "error"])
    list_parser.add_argument("--limit", type=int, default=20)
    list_parser.add_argument("--offset", type=int, default=0)

    # -- show / text / delete / reprocess --
    show_parser = subparsers.add_parser("show", help="Show one document with its tags")
    show_parser.add_argument("document_id")

    text_parser = subparsers.add_parser("text", help="Print a document's extracted text")
    text_parser.add_argument("document_id")

    delete_parser = subparsers.add_parser("delete", help="Delete a document everywhere")
    delete_parser.add_argument("document_id")
    delete_parser.add_argument("--yes", "-y", action="store_true", help="Skip confirmation prompt")

    reprocess_parser = subparsers.add_parser("reprocess", help="Run ingestion again for a document")
    reprocess_parser.add_argument("document_id")

    # -- search --
    search_parser = subparsers.add_parser("search", help="Faceted or combined semantic search")
    search_parser.add_argument("query", nargs="?", default=None, help="Free-text query (optional)")
    search_parser.add_argument("--tag", action="append", help="Tag name or category:name (repeatable)")
    search_parser.add_argument("--type", action="append", help="MIME substring, e.g. pdf (repeatable)")
    search_parser.add_argument("--from", dest="date_from", default=None, help="Created on/after (ISO date)")
    search_parser.add_argument("--to", dest="date_to", default=None, help="Created on/before (ISO date)")
    search_parser.add_argument("--workspace", default=None)
    search_parser.add_argument("--limit", type=int, default=20)
    search_parser.add_argument("--offset", type=int, default=0)
    search_mode = search_parser.add_mutually_exclusive_group()
    search_mode.add_argument(
        "--faceted", action="store_true", help="Match the query against titles and text instead of embeddings"
    )
    search_mode.add_argument("--semantic", action="store_true", help="Rank by embeddings only, ignoring facets")

    # -- ask --
    ask_parser = subparsers.add_parser("ask", help="Ask a question about your documents")
    ask_parser.add_argument("message")
    ask_parser.add_argument("--session", default=None, help="Existing session id (default: new session)")
    ask_parser.add_argument("--workspace", default=None, help="Workspace for a new session")
    ask_parser.add_argument("--no-stream", action="store_true", dest="no_stream")
    ask_parser.add_argument("--sse", action="store_true", help="Print raw server-sent-event frames")

    # -- sessions --
    sessions_parser = subparsers.add_parser("sessions", help="List chat sessions")
    sessions_parser.add_argument("--workspace", default=None)
    sessions_parser.add_argument("--limit", type=int, default=20)
    sessions_parser.add_argument("--offset", type=int, default=0)

    # -- tags / tag-merge --
    tags_parser = subparsers.add_parser("tags", help="List tags")
    tags_parser.add_argument("--workspace", default=None)
    tags_parser.add_argument("--category", default=None)

    merge_parser = subparsers.add_parser("tag-merge", help="Merge tags into a target tag (owner only)")
    merge_parser.add_argument("target", help="Tag id that survives")
    merge_parser.add_argument("sources", nargs="+", help="Tag ids folded into the target")

    # -- reclaim --
    subparsers.add_parser("reclaim", help="Requeue stranded pending documents and expired processing leases")

    # -- health --
    subparsers.add_parser("health", help="Check that the LLM and embedding providers respond")

    return parser


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


async def _run(args: argparse.Namespace, api_key: str, app_settings: Settings) -> int:
    # Deferred so that --help does not import chromadb and the SDKs.
    from docvault.main import build_services

    services = build_services(settings=app_settings)
    await services.startup()
    try:
        principal = await services.authorizer.resolve(api_key)
        return await _HANDLERS[args.command](args, services, principal)
    finally:
        await services.shutdown()


def main(argv: list[str] | None = None) -> None:
    """CLI entry point: parse arguments, run one command, exit with its code."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        sys.exit(1)

    api_key = args.api_key or os.environ.get(API_KEY_ENV, "")
    if not api_key:
        print(f"Error: pass --api-key or set {API_KEY_ENV}", file=sys.stderr)
        sys.exit(1)

    app_settings = Settings()
    configure_logging(log_level=app_settings.log_level, json_output=app_settings.app_env == "production")

    try:
        exit_code = asyncio.run(_run(args, api_key, app_settings))
    except DocVaultError as exc:
        _logger.debug("cli_command_failed", command=args.command, error=str(exc))
        print(f"Error: {exc.message}", file=sys.stderr)
        exit_code = 1
    except KeyboardInterrupt:
        exit_code = 130

    sys.exit(exit_code)


if __name__ == "__main__":
    main()
