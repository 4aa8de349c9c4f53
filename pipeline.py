#!/usr/bin/env python3
"""Command-line entry point for paper insights chat.

Usage:
  python pipeline.py ask PAPER_ID "What does Figure 2 show?"             # Uses DATABASE_URL
  python pipeline.py ask PAPER_ID "Main result?" --store-file store.json  # JSON fixture store
  python pipeline.py ask PAPER_ID "Main result?" --html-url https://... --context "extra text"

  python pipeline.py inspect-html https://example.org/paper.html         # Debug segmentation

  python pipeline.py serve --port 8501                                   # Launch the API
"""

import argparse
import asyncio
import logging
import sys

import httpx
import orjson

from webapp.config import Settings, configure_logging

logger = logging.getLogger(__name__)

EXIT_INSUFFICIENT_CONTEXT = 2


# ---------------------------------------------------------------------------
# ASK
# ---------------------------------------------------------------------------

async def _ask(args, settings: Settings) -> int:
    from schemas.insights import InsightsChatRequest
    from vectorstore.store import InMemoryChunkStore, PostgresChunkStore
    from webapp.rag.query_engine import InsufficientContextError, build_engine

    request = InsightsChatRequest(
        document_id=args.document_id,
        requester_id=args.requester,
        question=args.question,
        html_locator=args.html_url,
        raw_text_contexts=args.context or None,
        max_references=args.max_references,
    )

    if args.store_file:
        store = InMemoryChunkStore.from_json(args.store_file)
    elif settings.database_url:
        store = PostgresChunkStore.from_url(settings.database_url, max_size=2)
        await store.open()
    else:
        logger.error("Either --store-file or DATABASE_URL is required")
        return 1

    try:
        async with httpx.AsyncClient(timeout=settings.http_timeout) as http_client:
            engine = build_engine(settings, http_client, store)
            try:
                response = await engine.answer(request)
            except InsufficientContextError as e:
                print(str(e), file=sys.stderr)
                return EXIT_INSUFFICIENT_CONTEXT
    finally:
        if isinstance(store, PostgresChunkStore):
            await store.close()

    payload = response.model_dump(by_alias=True, mode="json")
    print(orjson.dumps(payload, option=orjson.OPT_INDENT_2).decode())
    return 0


def cmd_ask(args, settings: Settings) -> int:
    """Answer one question about a library document and print the JSON response."""
    return asyncio.run(_ask(args, settings))


# ---------------------------------------------------------------------------
# INSPECT HTML
# ---------------------------------------------------------------------------

async def _inspect_html(args, settings: Settings) -> int:
    from processors.segmenter import extract_html_contexts, is_figure_caption
    from scrapers.utils import extract_figure_captions, fetch_url, flatten_html

    async with httpx.AsyncClient(timeout=settings.http_timeout) as http_client:
        html = await fetch_url(http_client, args.url, retry_delay=settings.html_retry_delay)
    if not html:
        print(f"Could not fetch {args.url}", file=sys.stderr)
        return 1

    text = flatten_html(html)
    contexts = extract_html_contexts(text, max_contexts=args.max_contexts)
    captions = extract_figure_captions(html)

    print(f"\nURL: {args.url}")
    print(f"Flattened text: {len(text)} chars | Contexts: {len(contexts)} | Captions: {len(captions)}")
    print("-" * 70)
    for ctx in contexts:
        marker = " [figure]" if is_figure_caption(ctx.text) else ""
        preview = ctx.text[:160].replace("\n", " ")
        print(f"{ctx.id:>9} | {ctx.section_title[:30]:<30} | {preview}{marker}")

    if captions:
        print("\nFigure captions:")
        for i, caption in enumerate(captions, start=1):
            print(f"  {i}. {caption[:200]}")
    return 0


def cmd_inspect_html(args, settings: Settings) -> int:
    """Fetch a page and show how it flattens and segments."""
    return asyncio.run(_inspect_html(args, settings))


# ---------------------------------------------------------------------------
# SERVE
# ---------------------------------------------------------------------------

def cmd_serve(args, settings: Settings) -> int:
    """Launch the insights chat API."""
    import uvicorn

    logger.info("=" * 60)
    logger.info("LAUNCHING INSIGHTS CHAT API")
    logger.info("  http://localhost:%d", args.port)
    logger.info("=" * 60)

    uvicorn.run(
        "webapp.app:app",
        host=args.host,
        port=args.port,
        reload=args.reload,
        log_level=settings.log_level.lower(),
    )
    return 0


# ---------------------------------------------------------------------------
# MAIN
# ---------------------------------------------------------------------------

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Paper insights chat",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    subparsers = parser.add_subparsers(dest="command", help="Command")

    ask_parser = subparsers.add_parser("ask", help="Ask a question about a library document")
    ask_parser.add_argument("document_id", help="Library paper id")
    ask_parser.add_argument("question", help="Question text")
    ask_parser.add_argument(
        "--requester", default="demo-user", help="Library owner id (default: demo-user)"
    )
    ask_parser.add_argument("--html-url", default=None, help="Web page to read instead of the stored one")
    ask_parser.add_argument(
        "--context", action="append", default=[],
        help="Extra text passed as a manual context (repeatable)",
    )
    ask_parser.add_argument(
        "--max-references", type=int, default=None,
        help="Contexts to cite (default: MAX_REFERENCES)",
    )
    ask_parser.add_argument("--store-file", default=None, help="JSON fixture instead of Postgres")

    inspect_parser = subparsers.add_parser(
        "inspect-html", help="Show flattened text contexts and figure captions for a page"
    )
    inspect_parser.add_argument("url", help="Page URL")
    inspect_parser.add_argument(
        "--max-contexts", type=int, default=120, help="Contexts to show (default: 120)"
    )

    serve_parser = subparsers.add_parser("serve", help="Launch the insights chat API")
    serve_parser.add_argument(
        "--port", type=int, default=8501, help="Port (default: 8501)"
    )
    serve_parser.add_argument(
        "--host", default="0.0.0.0", help="Host (default: 0.0.0.0)"
    )
    serve_parser.add_argument(
        "--reload", action="store_true", help="Auto-reload on code changes"
    )
    return parser


def main():
    parser = build_parser()
    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    settings = Settings.from_env()
    configure_logging(settings.log_level)

    commands = {
        "ask": cmd_ask,
        "inspect-html": cmd_inspect_html,
        "serve": cmd_serve,
    }

    try:
        sys.exit(commands[args.command](args, settings))
    except Exception as e:
        logger.exception("Pipeline error: %s", e)
        sys.exit(1)


if __name__ == "__main__":
    main()
