"""Print a subject's competency analytics as JSON."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from typing import Optional

from competency_engine.config import SyncConfig, get_settings
from competency_engine.errors import CompetencyError
from competency_engine.logging_config import configure_logging
from competency_engine.repositories.competency_records import SqlPersistenceAdapter
from competency_engine.service import CompetencySyncService

LOGGER = logging.getLogger("competency.report")


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Report scores, insights and plan for one subject.")
    parser.add_argument("subject_id", help="Subject to report on.")
    parser.add_argument("--indent", type=int, default=2)
    return parser.parse_args(argv)


async def build_report(
    subject_id: str,
    adapter: Optional[SqlPersistenceAdapter] = None,
    *,
    indent: int = 2,
) -> str:
    settings = get_settings()
    config = SyncConfig.from_settings(settings).model_copy(update={"autostart": False})
    service = CompetencySyncService(adapter or SqlPersistenceAdapter(), config=config)
    analytics = await service.get_analytics(subject_id)
    return analytics.model_dump_json(indent=indent)


def main(argv: Optional[list[str]] = None) -> int:
    configure_logging()
    args = parse_args(argv)
    try:
        report = asyncio.run(build_report(args.subject_id, indent=args.indent))
    except CompetencyError as exc:
        LOGGER.error("Could not build report for %s: %s", args.subject_id, exc)
        return 1
    print(report)
    return 0


if __name__ == "__main__":
    sys.exit(main())
