"""HTTP API: metadata lookup, identifier extraction, model list, chat stream."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from functools import partial

from fastapi import FastAPI, File, Form, Request, UploadFile
from fastapi.responses import JSONResponse, StreamingResponse
from starlette.concurrency import run_in_threadpool

import metadata_resolver
import model_catalog
import pdf_identifiers
from completion_proxy import ProxyError, open_completion_stream, prepare_completion
from model_catalog import ModelCatalogError
from stream_transcoder import StreamTranscoder

DISCONNECT_POLL_SECONDS = 0.5
STREAM_MEDIA_TYPE = "text/plain; charset=utf-8"

LOGGER = logging.getLogger(__name__)

app = FastAPI(title="paper-companion")


@app.exception_handler(ProxyError)
async def _proxy_error_handler(request: Request, exc: ProxyError) -> JSONResponse:
    return JSONResponse({"error": exc.message}, status_code=exc.status_code)


@app.get("/api/metadata")
def get_metadata(doi: str | None = None, arxiv: str | None = None, query: str | None = None):
    if not doi and not arxiv and not query:
        return JSONResponse(
            {"error": "Provide a 'doi', 'arxiv', or 'query' parameter."},
            status_code=400,
        )

    record = metadata_resolver.resolve_metadata(doi=doi, arxiv_id=arxiv, query=query)
    if record is None:
        return JSONResponse({"error": "No metadata found."}, status_code=404)
    return record.to_dict()


@app.post("/api/identify")
async def identify(file: UploadFile | None = File(None)):
    if file is None:
        return JSONResponse({"error": "A PDF file is required."}, status_code=400)

    data = await file.read()
    identifiers = await run_in_threadpool(
        pdf_identifiers.extract_pdf_identifiers, data, file.filename or ""
    )
    return identifiers.to_dict()


@app.get("/api/models")
def list_models():
    try:
        models = model_catalog.MODEL_CATALOG.list_models()
    except ModelCatalogError as exc:
        LOGGER.warning("Model list unavailable: %s", exc)
        return JSONResponse({"error": str(exc)}, status_code=502)
    return [model.to_dict() for model in models]


@app.post("/api/summarize")
async def summarize(
    request: Request,
    file: UploadFile | None = File(None),
    prompt: str | None = Form(None),
    provider: str | None = Form(None),
    model: str | None = Form(None),
    history: str | None = Form(None),
    selection: str | None = Form(None),
):
    data = await file.read() if file is not None else None
    try:
        completion = await run_in_threadpool(
            partial(
                prepare_completion,
                file_name=file.filename if file is not None else None,
                content_type=file.content_type if file is not None else None,
                data=data,
                prompt=prompt,
                provider=provider,
                model_id=model,
                history=history,
                selection=selection,
            )
        )
        upstream = await open_completion_stream(completion)
    except ProxyError:
        raise
    except Exception as exc:
        LOGGER.exception("Summarization failed: %s", exc)
        raise ProxyError(f"Failed to process the paper: {exc}") from exc

    cancel_event = asyncio.Event()
    transcoder = StreamTranscoder(upstream.chunks(), cancel_event=cancel_event, on_close=upstream.aclose)
    return StreamingResponse(
        _relay(transcoder, request, cancel_event),
        media_type=STREAM_MEDIA_TYPE,
    )


async def _relay(
    transcoder: StreamTranscoder,
    request: Request,
    cancel_event: asyncio.Event,
) -> AsyncIterator[bytes]:
    watcher = asyncio.create_task(_watch_disconnect(request, cancel_event))
    try:
        async for line in transcoder:
            yield line
    finally:
        watcher.cancel()
        await asyncio.wait({watcher})
        if not watcher.cancelled() and watcher.exception() is not None:
            LOGGER.warning("Disconnect watcher failed: %s", watcher.exception())
        await transcoder.aclose()


async def _watch_disconnect(request: Request, cancel_event: asyncio.Event) -> None:
    while not cancel_event.is_set():
        if await request.is_disconnected():
            LOGGER.info("Client disconnected, cancelling completion stream")
            cancel_event.set()
            return
        await asyncio.sleep(DISCONNECT_POLL_SECONDS)
