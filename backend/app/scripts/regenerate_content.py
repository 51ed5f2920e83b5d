from __future__ import annotations

import argparse
from collections.abc import Sequence

from backend.app.config import load_settings
from backend.app.logging_config import configure_application_logging
from backend.app.repositories.content_repository import ContentRepository
from backend.app.repositories.database import Database
from backend.app.services.content_pipeline_service import ContentPipelineService
from backend.app.services.markup_renderer import CONVERTER_VERSION
from backend.app.telemetry import build_telemetry_client


def _parse_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description=(
            "Re-render stored blog content with the current converter and persist the "
            "result. By default only documents rendered by an older converter are touched."
        ),
    )
    parser.add_argument(
        "--all",
        action="store_true",
        help="Regenerate every document, including ones already at the current version.",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Report which documents would be regenerated without writing anything.",
    )
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> None:
    args = _parse_args(argv)
    settings = load_settings()
    configure_application_logging(settings)
    database = Database(settings.db_path)
    database.initialize()
    service = ContentPipelineService(
        repository=ContentRepository(database),
        telemetry=build_telemetry_client(
            enabled=settings.telemetry_enabled,
            sink=settings.telemetry_sink,
        ),
        words_per_minute=settings.words_per_minute,
    )

    stats = service.regenerate_stale_documents(force_all=args.all, dry_run=args.dry_run)
    if args.dry_run:
        print(
            f"{stats.examined} document(s) would be regenerated "
            f"with converter version {CONVERTER_VERSION}."
        )
        return
    print(
        f"Regenerated {stats.regenerated} of {stats.examined} document(s) "
        f"with converter version {CONVERTER_VERSION}."
    )


if __name__ == "__main__":
    main()
