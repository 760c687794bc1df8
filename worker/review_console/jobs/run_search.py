"""CLI job that runs one Google Maps search to completion and prints the rows."""

import argparse
import json
import logging
import sys
from typing import List, Optional, TextIO

from review_console.core.config import get_settings
from review_console.core.errors import ConfigurationError, ConsoleError
from review_console.core.models import SUPPORTED_SOURCE, ResultRow, SearchRequest
from review_console.core.runs import ScrapeRunner

logger = logging.getLogger(__name__)

TABLE_COLUMNS = ("kind", "rating", "date", "title", "snippet", "url")


def run_search_job(
    *,
    query: str,
    source: str = SUPPORTED_SOURCE,
    max_places: Optional[int] = None,
    max_reviews: Optional[int] = None,
    min_rating: Optional[float] = None,
    days: Optional[int] = None,
) -> List[ResultRow]:
    settings = get_settings()
    params = {
        "q": query,
        "source": source,
        "maxPlaces": max_places,
        "maxReviews": max_reviews,
        "minRating": min_rating,
        "days": days,
    }
    search = SearchRequest.from_mapping(params, settings)
    logger.info("Running %s search for query=%s mode=%s", search.source, search.query, settings.run_mode)

    rows = ScrapeRunner(settings).run_search(search)
    logger.info("Completed search: rows=%d", len(rows))
    return rows


def write_table(rows: List[ResultRow], out: TextIO) -> None:
    out.write("\t".join(TABLE_COLUMNS) + "\n")
    for row in rows:
        values = row.to_dict()
        cells = ["" if values[name] is None else " ".join(str(values[name]).split()) for name in TABLE_COLUMNS]
        out.write("\t".join(cells) + "\n")


def build_parser() -> argparse.ArgumentParser:
    settings = get_settings()
    parser = argparse.ArgumentParser(description="Run a Google Maps business/review search via Apify")
    parser.add_argument("query", help="Search query, e.g. 'Grid Finance'")
    parser.add_argument("--source", default=SUPPORTED_SOURCE, help="Source to search")
    parser.add_argument(
        "--max-places",
        dest="max_places",
        type=int,
        default=settings.default_max_results,
        help="Maximum number of places to crawl",
    )
    parser.add_argument(
        "--max-reviews",
        dest="max_reviews",
        type=int,
        default=settings.default_max_reviews,
        help="Maximum number of reviews per place",
    )
    parser.add_argument("--min-rating", dest="min_rating", type=float, help="Drop reviews rated below this")
    parser.add_argument("--days", dest="days", type=int, default=0, help="Drop reviews older than this (0 = all)")
    parser.add_argument("--json", dest="as_json", action="store_true", help="Print rows as JSON")
    return parser


def main(argv: Optional[List[str]] = None) -> None:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s - %(message)s")
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        rows = run_search_job(
            query=args.query,
            source=args.source,
            max_places=args.max_places,
            max_reviews=args.max_reviews,
            min_rating=args.min_rating,
            days=args.days,
        )
    except ConfigurationError as exc:
        logger.error("Configuration error: %s", exc)
        raise SystemExit(2) from exc
    except ConsoleError as exc:
        logger.error("Search failed: %s", json.dumps(exc.to_payload(), default=str))
        raise SystemExit(1) from exc

    if args.as_json:
        json.dump({"items": [row.to_dict() for row in rows]}, sys.stdout, ensure_ascii=False, indent=2)
        sys.stdout.write("\n")
    else:
        write_table(rows, sys.stdout)


if __name__ == "__main__":
    main()
