from fastapi import FastAPI

from api import group_scan
from data.benchmarks import BenchmarkStore
from data.models import Program
from data.resolver import Resolver
from scanner.batch import MAX_CONCURRENT, RESOLVE_TIMEOUT
from scanner.programs import PROGRAM_RULES, ProgramRule


def create_app(resolver: Resolver, benchmarks: BenchmarkStore,
               max_concurrent: int = MAX_CONCURRENT,
               timeout: float | None = RESOLVE_TIMEOUT,
               rules: dict[Program, ProgramRule] = PROGRAM_RULES) -> FastAPI:
    """Build the API with its resolver and benchmark store injected."""
    app = FastAPI(title="NPIxray Group Scan API")
    app.state.resolver = resolver
    app.state.benchmarks = benchmarks
    app.state.max_concurrent = max_concurrent
    app.state.timeout = timeout
    app.state.rules = rules

    @app.get("/api/health")
    async def health():
        return {"status": "ok", "benchmarks": len(benchmarks)}

    app.include_router(group_scan.router)
    return app
