from __future__ import annotations

import argparse
from pathlib import Path

from tqdm import tqdm

from common.logger import get_logger
from ingestion.loaders import load_catalog
from storage import repository as repo
from storage.db import build_engine, create_schema, make_session_factory, session_scope

log = get_logger(__name__)


def main():
    parser = argparse.ArgumentParser(
        description="Load catalog lessons from a JSON file into the lesson database."
    )
    parser.add_argument("path", type=str, help="JSON file with a list of lessons")
    parser.add_argument(
        "--database_url", type=str, default=None, help="Overrides DEDUP_DATABASE_URL"
    )
    args = parser.parse_args()

    path = Path(args.path)
    if not path.exists():
        log.error("Catalog file does not exist: %s", path)
        raise SystemExit(1)

    engine = build_engine(args.database_url)
    create_schema(engine)
    factory = make_session_factory(engine)

    payloads = load_catalog(path)
    with session_scope(factory) as session:
        for payload in tqdm(payloads, desc="Loading lessons"):
            repo.upsert_lesson(session, payload.to_document())

    log.info("Upserted %d lessons from %s", len(payloads), path.name)


if __name__ == "__main__":
    main()
