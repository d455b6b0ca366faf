# agenda/jobs.py
"""
Scheduled jobs, runnable without the web app:

    python -m agenda.jobs extend-recurrences
"""
from __future__ import annotations

import argparse
import asyncio
import logging

from agenda.core.logging import configure_logging
from agenda.db.sql import AsyncSessionLocal, engine
from agenda.modules.recurrences.schemas import ExtensionJobResult
from agenda.modules.recurrences.service import extend_indefinite_recurrences

logger = logging.getLogger(__name__)


async def run_extension() -> ExtensionJobResult:
    async with AsyncSessionLocal() as session:
        try:
            result = await extend_indefinite_recurrences(session)
            await session.commit()
        except Exception:
            await session.rollback()
            raise
    await engine.dispose()
    return result


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="agenda.jobs", description="Clinic agenda jobs")
    parser.add_argument("job", choices=["extend-recurrences"])
    parser.add_argument("--log-level", default=None)
    args = parser.parse_args(argv)

    configure_logging(args.log_level)
    result = asyncio.run(run_extension())
    logger.info(
        "extension done processed=%d created=%d errors=%d",
        result.recurrences_processed,
        result.appointments_created,
        len(result.errors),
    )
    print(result.model_dump_json(indent=2))
    return 1 if result.errors else 0


if __name__ == "__main__":
    raise SystemExit(main())
