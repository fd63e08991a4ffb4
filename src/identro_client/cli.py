from __future__ import annotations

import asyncio
import gzip
import json
from pathlib import Path
from typing import Iterator, Optional

import typer
from pydantic import ValidationError

from .client import IdentroClient
from .models import AgentEvent

app = typer.Typer(help="identro_client operational CLI")

REQUIRED_FIELDS = ("task_id", "status", "latency_ms")

# ---------------------------
# Common options
# ---------------------------


def api_key_opt() -> str:
    return typer.Option(..., "--api-key", envvar="IDENTRO_API_KEY", help="Identro API key")


def endpoint_opt() -> str:
    return typer.Option(
        "https://api.identro.com", "--endpoint", envvar="IDENTRO_ENDPOINT", help="Collector URL"
    )


def agent_opt() -> Optional[str]:
    return typer.Option(None, "--agent-id", envvar="IDENTRO_AGENT_ID", help="Agent identifier")


def batch_size_opt(default=100) -> int:
    return typer.Option(default, "--batch-size", help="Flush when this many events are queued")


def _client(api_key: str, endpoint: str, agent_id: Optional[str], **extra) -> IdentroClient:
    cfg = {"api_key": api_key, "endpoint": endpoint, "throw_on_error": True, **extra}
    if agent_id:
        cfg["agent_id"] = agent_id
    return IdentroClient(cfg)


def iter_ndjson(path: str) -> Iterator[dict]:
    """Yield one dict per non-empty line; ``.gz`` files are decompressed."""
    p = Path(path)
    opener = gzip.open if p.suffix == ".gz" else open
    with opener(p, "rt", encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if line:
                yield json.loads(line)


# ---------------------------
# Commands
# ---------------------------


@app.command("record")
def record(
    task_id: str = typer.Argument(..., help="Task identifier"),
    status: str = typer.Option("success", "--status", help="success|fail"),
    latency_ms: float = typer.Option(..., "--latency-ms"),
    fail_reason: Optional[str] = typer.Option(None, "--fail-reason"),
    detail_code: Optional[str] = typer.Option(None, "--detail-code"),
    metadata: Optional[str] = typer.Option(None, "--metadata", help="JSON object"),
    api_key: str = api_key_opt(),
    endpoint: str = endpoint_opt(),
    agent_id: Optional[str] = agent_opt(),
):
    """Record a single event and deliver it immediately."""
    if status not in ("success", "fail"):
        raise typer.BadParameter("status must be one of: success, fail")
    meta = json.loads(metadata) if metadata else None
    event = asyncio.run(
        _record(task_id, status, latency_ms, fail_reason, detail_code, meta, api_key, endpoint, agent_id)
    )
    typer.echo(json.dumps({"event_id": event.event_id, "status": event.status}, indent=2))


async def _record(
    task_id, status, latency_ms, fail_reason, detail_code, metadata, api_key, endpoint, agent_id
) -> AgentEvent:
    async with _client(api_key, endpoint, agent_id) as identro:
        return await identro.record_event(
            task_id,
            status,
            latency_ms,
            fail_reason=fail_reason,
            detail_code=detail_code,
            metadata=metadata,
        )


@app.command("ingest")
def ingest(
    path: str = typer.Argument(..., help="NDJSON file of events (.ndjson or .ndjson.gz)"),
    api_key: str = api_key_opt(),
    endpoint: str = endpoint_opt(),
    agent_id: Optional[str] = agent_opt(),
    batch_size: int = batch_size_opt(100),
):
    """Stream events from an NDJSON file through the batcher."""
    n = asyncio.run(_ingest(path, api_key, endpoint, agent_id, batch_size))
    typer.echo(json.dumps({"ingested": n, "flushed": "auto"}, indent=2))


async def _ingest(path, api_key, endpoint, agent_id, batch_size) -> int:
    n = 0
    async with _client(api_key, endpoint, agent_id, batch_size=batch_size) as identro:
        for obj in iter_ndjson(path):
            missing = [k for k in REQUIRED_FIELDS if k not in obj]
            if missing:
                raise typer.BadParameter(
                    f"event #{n + 1} is missing {', '.join(missing)}", param_hint="PATH"
                )
            task_id, status, latency_ms = (obj.pop(k) for k in REQUIRED_FIELDS)
            try:
                await identro.record_event(task_id, status, latency_ms, **obj)
            except ValidationError as e:
                raise typer.BadParameter(f"event #{n + 1} is invalid: {e}", param_hint="PATH") from e
            n += 1
    return n


@app.command("score")
def score(
    target: Optional[str] = typer.Argument(None, help="Agent id (defaults to --agent-id)"),
    api_key: str = api_key_opt(),
    endpoint: str = endpoint_opt(),
    agent_id: Optional[str] = agent_opt(),
):
    """Fetch the current score for an agent."""
    result = asyncio.run(_score(target, api_key, endpoint, agent_id))
    typer.echo(json.dumps(result.model_dump(mode="json"), indent=2))


async def _score(target, api_key, endpoint, agent_id):
    async with _client(api_key, endpoint, agent_id) as identro:
        return await identro.get_score(target)


def main() -> None:
    app()


if __name__ == "__main__":
    main()
