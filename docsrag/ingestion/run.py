"""Command-line entry point for a full ingestion run.

Usage:
    python -m docsrag.ingestion.run --limit 10 --model deepvk/USER-base
"""
import argparse
import json
import logging
import sys

from docsrag.bootstrap import register_models
from docsrag.config import configure_logging, settings
from docsrag.db import init_db
from docsrag.errors import RagError
from docsrag.ingestion.orchestrator import IngestionConfig, collect_embeddings

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Crawl the help site and embed its documents.")
    parser.add_argument("--delay-ms", type=int, default=settings.DEFAULT_DELAY_MS)
    parser.add_argument("--chunk-size", type=int, default=settings.DEFAULT_CHUNK_SIZE)
    parser.add_argument("--chunk-overlap", type=int, default=settings.DEFAULT_CHUNK_OVERLAP)
    parser.add_argument("--batch-size", type=int, default=settings.DEFAULT_BATCH_SIZE)
    parser.add_argument("--limit", type=int, default=None, help="Process at most N documents")
    parser.add_argument(
        "--model",
        dest="models",
        action="append",
        default=None,
        help="Embedding model to use (repeatable; default: all registered)",
    )
    parser.add_argument("--translate-titles", action="store_true")
    parser.add_argument("--summarize-chunks", action="store_true")
    parser.add_argument("--concurrency", type=int, default=settings.INGEST_CONCURRENCY)
    parser.add_argument(
        "--log-level",
        default=settings.LOG_LEVEL,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging verbosity",
    )
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level)

    try:
        config = IngestionConfig(
            delay_ms=args.delay_ms,
            chunk_size=args.chunk_size,
            chunk_overlap=args.chunk_overlap,
            batch_size=args.batch_size,
            model_names=tuple(args.models) if args.models else None,
            limit=args.limit,
            translate_titles=args.translate_titles,
            summarize_chunks=args.summarize_chunks,
            concurrency=args.concurrency,
            encoding=settings.TOKENIZER_ENCODING,
        )
        init_db()
        register_models(settings.EMBEDDING_MODELS)
        summary = collect_embeddings(config)
    except RagError as exc:
        logger.error("Ingestion aborted at %s: %s", exc.stage, exc.message)
        return 2

    print(f"[INGEST] {json.dumps(summary.to_dict())}")
    return 0 if summary.success else 1


if __name__ == "__main__":
    sys.exit(main())
