#!/usr/bin/env -S uv run
"""
Dispatcher Benchmark Tool for microq

Enqueues N jobs into each store adapter and measures how fast one or more
dispatchers drain them, in serial and parallel mode.

Usage:
    uv run tools/benchmark_dispatcher.py
    uv run tools/benchmark_dispatcher.py --jobs 2000 --dispatchers 4
    uv run tools/benchmark_dispatcher.py --quick
    uv run tools/benchmark_dispatcher.py --help
"""
# /// script
# requires-python = ">=3.11"
# dependencies = [
#     "pydantic>=2.0",
#     "pydantic-settings>=2.0",
#     "structlog>=23.1",
#     "typer>=0.9.0",
#     "rich>=13.0",
# ]
# ///

from __future__ import annotations

import asyncio
import statistics
import sys
import tempfile
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from time import perf_counter
from typing import Any

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

# Import microq components from the local package
sys.path.insert(0, str(Path(__file__).parent.parent))

from microq import (
    Dispatcher,
    InMemoryJobStore,
    Job,
    JobQueue,
    JobStorePort,
    LocalFileSystemJobStore,
)
from microq.log import setup_logging

app = typer.Typer(
    help="Benchmark microq dispatchers against the built-in store adapters",
    add_completion=False,
)


# ---------------------------------------------------------------------------
# Data Classes
# ---------------------------------------------------------------------------


@dataclass
class BenchmarkConfig:
    """Configuration for benchmark runs."""

    jobs: int = 500
    dispatchers: int = 2
    handler_delay: float = 0.001
    max_concurrency: int = 10
    adapters: list[str] = field(default_factory=lambda: ["memory", "filesystem"])


@dataclass
class BenchmarkResult:
    """Results from a single drain run."""

    adapter_name: str
    mode: str
    total_jobs: int
    total_time: float
    latencies: list[float]  # enqueue → completion, seconds

    @property
    def jobs_per_sec(self) -> float:
        return self.total_jobs / self.total_time if self.total_time > 0 else 0.0

    @property
    def p50(self) -> float:
        return statistics.median(self.latencies) if self.latencies else 0.0

    @property
    def p95(self) -> float:
        if not self.latencies:
            return 0.0
        ordered = sorted(self.latencies)
        return ordered[min(int(len(ordered) * 0.95), len(ordered) - 1)]


def _format_ms(seconds: float) -> str:
    ms = seconds * 1000
    if ms < 10:
        return f"{ms:.2f}ms"
    return f"{ms:.1f}ms"


# ---------------------------------------------------------------------------
# Benchmark
# ---------------------------------------------------------------------------


def create_store(adapter_name: str, temp_dir: Path) -> JobStorePort:
    if adapter_name == "memory":
        return InMemoryJobStore()
    if adapter_name == "filesystem":
        return LocalFileSystemJobStore(temp_dir / f"jobs-{uuid.uuid4().hex}.json")
    raise ValueError(f"Unknown adapter: {adapter_name}")


async def drain(
    store: JobStorePort,
    config: BenchmarkConfig,
    parallel: bool,
) -> tuple[float, list[float]]:
    """Enqueue config.jobs jobs, run dispatchers until all completed."""
    queue = JobQueue(store)
    for i in range(config.jobs):
        await queue.enqueue("benchmark", {"n": i})

    latencies: list[float] = []
    all_done = asyncio.Event()

    def on_completed(job: Job) -> None:
        assert job.ended_at is not None
        latencies.append((job.ended_at - job.enqueued_at).total_seconds())
        if len(latencies) >= config.jobs:
            all_done.set()

    async def handler(params: Any, job: Job) -> int:
        await asyncio.sleep(config.handler_delay)
        return params["n"]

    dispatchers = [Dispatcher(JobQueue(store)) for _ in range(config.dispatchers)]
    for dispatcher in dispatchers:
        dispatcher.on("completed", on_completed)

    start = perf_counter()
    for dispatcher in dispatchers:
        await dispatcher.start(
            {"benchmark": handler},
            interval=0.01,
            recover=False,
            parallel=parallel,
            max_concurrency=config.max_concurrency,
        )
    await all_done.wait()
    total = perf_counter() - start

    for dispatcher in dispatchers:
        dispatcher.stop()
    await asyncio.gather(*(d.join() for d in dispatchers))
    return total, latencies


async def run_benchmarks(config: BenchmarkConfig) -> list[BenchmarkResult]:
    results: list[BenchmarkResult] = []
    with tempfile.TemporaryDirectory() as tmp:
        for adapter_name in config.adapters:
            for parallel in (False, True):
                store = create_store(adapter_name, Path(tmp))
                total, latencies = await drain(store, config, parallel)
                results.append(
                    BenchmarkResult(
                        adapter_name=adapter_name,
                        mode="parallel" if parallel else "serial",
                        total_jobs=len(latencies),
                        total_time=total,
                        latencies=latencies,
                    )
                )
    return results


# ---------------------------------------------------------------------------
# Output
# ---------------------------------------------------------------------------


def print_results(results: list[BenchmarkResult], config: BenchmarkConfig) -> None:
    console = Console()
    console.print()
    console.print(
        Panel(
            "[bold cyan]Dispatcher Benchmark Results[/bold cyan]\n"
            f"{config.jobs} jobs, {config.dispatchers} dispatcher(s), "
            f"handler delay {_format_ms(config.handler_delay)}",
            expand=False,
        )
    )

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Adapter", style="cyan")
    table.add_column("Mode")
    table.add_column("Jobs", justify="right")
    table.add_column("Jobs/sec", justify="right", style="green")
    table.add_column("p50", justify="right")
    table.add_column("p95", justify="right")

    for result in results:
        table.add_row(
            result.adapter_name,
            result.mode,
            str(result.total_jobs),
            f"{result.jobs_per_sec:,.0f}",
            _format_ms(result.p50),
            _format_ms(result.p95),
        )
    console.print(table)


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------


@app.command()
def main(
    jobs: int = typer.Option(500, "--jobs", "-n", help="Jobs per run"),
    dispatchers: int = typer.Option(2, "--dispatchers", "-d", help="Dispatchers sharing the store"),
    handler_delay: float = typer.Option(0.001, help="Seconds each handler sleeps"),
    max_concurrency: int = typer.Option(10, help="Concurrent handlers per dispatcher in parallel mode"),
    adapter: list[str] = typer.Option(["memory", "filesystem"], help="Adapters to benchmark"),
    quick: bool = typer.Option(False, "--quick", help="Small run for a smoke check"),
) -> None:
    """Run the dispatcher benchmark."""
    setup_logging("WARNING")

    config = BenchmarkConfig(
        jobs=50 if quick else jobs,
        dispatchers=dispatchers,
        handler_delay=handler_delay,
        max_concurrency=max_concurrency,
        adapters=adapter,
    )
    results = asyncio.run(run_benchmarks(config))
    print_results(results, config)


if __name__ == "__main__":
    app()
