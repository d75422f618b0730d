"""CLI entrypoint for the paper-companion service."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import sys
from pathlib import Path

from dotenv import load_dotenv

import metadata_resolver
import model_catalog
import pdf_identifiers
from completion_proxy import ProxyError, open_completion_stream, prepare_completion
from stream_transcoder import StreamTranscoder


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line flags."""
    parser = argparse.ArgumentParser(description="Paper metadata lookup and chat-with-PDF service")
    subparsers = parser.add_subparsers(dest="command", required=True)

    serve = subparsers.add_parser("serve", help="Run the HTTP API")
    serve.add_argument("--host", default=os.getenv("HOST", "127.0.0.1"))
    serve.add_argument("--port", type=int, default=int(os.getenv("PORT", "8000")))

    identify = subparsers.add_parser("identify", help="Extract DOI / arXiv id from a PDF and resolve metadata")
    identify.add_argument("pdf", type=Path)
    identify.add_argument("--no-lookup", action="store_true", help="Only print the extracted identifiers")

    lookup = subparsers.add_parser("lookup", help="Resolve metadata from an identifier or free text")
    lookup.add_argument("--doi")
    lookup.add_argument("--arxiv")
    lookup.add_argument("--query")

    subparsers.add_parser("models", help="List selectable models")

    ask = subparsers.add_parser("ask", help="Stream an answer about a PDF")
    ask.add_argument("pdf", type=Path)
    ask.add_argument("prompt")
    ask.add_argument("--provider", default="local", choices=["local", "remote", "ollama", "openrouter"])
    ask.add_argument("--model", default=model_catalog.DEFAULT_MODEL.id)
    ask.add_argument("--selection", default=None, help="Quoted passage the question refers to")

    return parser.parse_args(argv)


def run_identify(pdf: Path, lookup: bool) -> int:
    identifiers = pdf_identifiers.extract_pdf_identifiers(pdf.read_bytes(), pdf.name)
    logging.info("Extracted doi=%s arxiv=%s", identifiers.doi, identifiers.arxiv_id)
    if not lookup:
        _print_json({k: v for k, v in identifiers.to_dict().items() if k != "firstPageText"})
        return 0
    return _print_record(metadata_resolver.resolve_for_identifiers(identifiers))


def run_lookup(doi: str | None, arxiv: str | None, query: str | None) -> int:
    if not doi and not arxiv and not query:
        logging.error("Provide --doi, --arxiv or --query")
        return 2
    return _print_record(metadata_resolver.resolve_metadata(doi=doi, arxiv_id=arxiv, query=query))


def run_models() -> int:
    try:
        models = model_catalog.MODEL_CATALOG.list_models()
    except model_catalog.ModelCatalogError as exc:
        logging.error("%s", exc)
        return 1
    _print_json([model.to_dict() for model in models])
    return 0


async def run_ask(pdf: Path, prompt: str, provider: str, model: str, selection: str | None) -> int:
    completion = prepare_completion(
        file_name=pdf.name,
        content_type="application/pdf",
        data=pdf.read_bytes(),
        prompt=prompt,
        provider=provider,
        model_id=model,
        selection=selection,
    )
    upstream = await open_completion_stream(completion)
    transcoder = StreamTranscoder(upstream.chunks(), on_close=upstream.aclose)

    async for event in transcoder.events():
        target = sys.stderr if event.kind == "reasoning" else sys.stdout
        target.write(event.text)
        target.flush()
    sys.stdout.write("\n")
    return 0


def _print_record(record) -> int:
    if record is None:
        logging.warning("No metadata found.")
        return 1
    _print_json(record.to_dict())
    return 0


def _print_json(payload: object) -> None:
    print(json.dumps(payload, indent=2, ensure_ascii=False))


def main(argv: list[str] | None = None) -> int:
    """Initialize config and dispatch the chosen command."""
    load_dotenv()
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")
    args = parse_args(argv)

    if args.command == "serve":
        import uvicorn  # noqa: PLC0415

        uvicorn.run("app:app", host=args.host, port=args.port, log_level="info")
        return 0
    if args.command == "identify":
        return run_identify(args.pdf, lookup=not args.no_lookup)
    if args.command == "lookup":
        return run_lookup(args.doi, args.arxiv, args.query)
    if args.command == "models":
        return run_models()

    try:
        return asyncio.run(run_ask(args.pdf, args.prompt, args.provider, args.model, args.selection))
    except ProxyError as exc:
        logging.error("%s (status=%s)", exc.message, exc.status_code)
        return 1
    except KeyboardInterrupt:
        logging.info("Cancelled")
        return 130


if __name__ == "__main__":
    sys.exit(main())
