#!/usr/bin/env python3
"""Merge exported vector store files into one.

Usage:
    uv run python scripts/merge_stores.py a.json b.json
    uv run python scripts/merge_stores.py a.json b.json -o merged.json
    uv run python scripts/merge_stores.py a.json b.json --import-to-store

Later files win when two files contain the same record id.

Exit codes:
    0: Merge written (some files may have been skipped; see stderr)
    1: No file could be merged, or the store could not be saved
"""

import argparse
import sys
from pathlib import Path

# Add src to path so we can import modules
sys.path.insert(0, str(Path(__file__).parent.parent))

from src.api.dependencies import get_kv_store
from src.config import Settings
from src.infrastructure.observability import configure_logging
from src.modules.vectorstore import (
    MergeResult,
    PersistenceAdapter,
    SaveOutcome,
    VectorStore,
    export_filename,
    export_records,
    import_into,
    load_sources,
    merge_sources,
)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Merge exported vector store files")
    parser.add_argument("files", nargs="+", type=Path, help="Exported store JSON files")
    parser.add_argument(
        "-o",
        "--output",
        type=Path,
        default=None,
        help="Output file (default: merged_vector_store_<date>.json)",
    )
    parser.add_argument(
        "--import-to-store",
        action="store_true",
        help="Also write the merged records to the configured persistence medium",
    )
    parser.add_argument(
        "--no-replace",
        action="store_true",
        help="With --import-to-store, upsert on top of the persisted store instead of replacing it",
    )
    parser.add_argument("--debug", action="store_true", help="Verbose logging")
    return parser


def import_to_store(settings: Settings, merged: MergeResult, *, replace: bool) -> bool:
    """Write merged records through the persistence adapter.

    Returns:
        True unless saving failed outright.
    """
    adapter = PersistenceAdapter(get_kv_store(settings), key=settings.store_key)
    store = VectorStore()
    if not replace:
        loaded = adapter.hydrate(store)
        if loaded.error is not None:
            print(f"✗ Could not read persisted store: {loaded.error}", file=sys.stderr)
            return False
        if store.pending():
            print(
                f"⚠ {len(store.pending())} persisted records have no embeddings; "
                "they are kept for re-embedding",
                file=sys.stderr,
            )

    import_into(store, merged, replace=replace)
    result = store.save_to(adapter)

    if result.outcome is SaveOutcome.FAILURE:
        print(f"✗ Could not save store: {result.error}", file=sys.stderr)
        return False
    if result.outcome is SaveOutcome.DEGRADED_SUCCESS:
        print(
            f"⚠ Store saved without embeddings under {result.key!r} "
            f"({result.error}); re-embedding is needed on next start",
            file=sys.stderr,
        )
    else:
        print(f"✓ Store saved under {result.key!r} ({result.record_count} records)")
    return True


def main(argv: list[str] | None = None) -> int:
    """Main merge logic.

    Returns:
        Exit code (0 for success, 1 for failure).
    """
    args = build_parser().parse_args(argv)
    configure_logging(debug=args.debug)

    sources, read_errors = load_sources(args.files)
    result = merge_sources(sources)
    errors = [*read_errors, *result.errors]

    for error in errors:
        print(f"✗ {error}", file=sys.stderr)
    for rejected in result.rejected:
        print(
            f"⚠ {rejected.source}[{rejected.position}] skipped: {rejected.reason}",
            file=sys.stderr,
        )

    if len(errors) == len(args.files):
        print("✗ No files could be merged", file=sys.stderr)
        return 1

    output = args.output or Path(export_filename())
    output.write_bytes(export_records(result.records))
    print(
        f"✓ Merged {len(result.records)} records from "
        f"{len(args.files) - len(errors)}/{len(args.files)} files into {output}"
    )

    if args.import_to_store and not import_to_store(
        Settings(), result, replace=not args.no_replace
    ):
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
