from __future__ import annotations

import argparse
from pathlib import Path
from typing import Dict, List

from common.config import load_yaml_config
from common.logger import get_logger
from detection.pairs import list_duplicate_groups
from resolution.engine import REVIEW_ROLES, ResolutionEngine, role_authorizer
from storage.db import build_engine, create_schema, make_session_factory

log = get_logger(__name__)


def _parse_titles(items: List[str] | None) -> Dict[str, str]:
    titles: Dict[str, str] = {}
    for item in items or []:
        lesson_id, sep, title = item.partition("=")
        if not sep or not lesson_id.strip():
            raise SystemExit(f"--title expects LESSON_ID=New title, got: {item}")
        titles[lesson_id.strip()] = title
    return titles


def main():
    parser = argparse.ArgumentParser(
        description="List duplicate lesson groups, or resolve one by archiving its duplicates."
    )
    parser.add_argument("--list-groups", action="store_true", help="Print the current duplicate groups")
    parser.add_argument(
        "--include_resolved", action="store_true", help="With --list-groups, also show dismissed groups"
    )
    parser.add_argument("--group-id", type=str)
    parser.add_argument("--canonical", type=str, help="Lesson that survives")
    parser.add_argument("--retire", nargs="*", default=[], help="Lessons to archive")
    parser.add_argument(
        "--mode", type=str, default="single", choices=["single", "split", "keep_all"]
    )
    parser.add_argument("--notes", type=str, default="")
    parser.add_argument("--actor", type=str, default="")
    parser.add_argument(
        "--role",
        type=str,
        default="reviewer",
        help=f"Role of --actor; one of {sorted(REVIEW_ROLES)} may resolve",
    )
    parser.add_argument(
        "--title", action="append", metavar="ID=TITLE", help="Rename a surviving lesson (repeatable)"
    )
    parser.add_argument("--sub_group_name", type=str, default=None)
    parser.add_argument("--parent_group_id", type=str, default=None)
    parser.add_argument("--config", type=str, default=None, help="Path to a config YAML")
    parser.add_argument("--database_url", type=str, default=None)
    args = parser.parse_args()

    config = load_yaml_config(Path(args.config) if args.config else None)
    engine = build_engine(args.database_url)
    create_schema(engine)
    factory = make_session_factory(engine)

    if args.list_groups:
        groups = list_duplicate_groups(factory, config, include_resolved=args.include_resolved)
        print(f"\n=== DUPLICATE GROUPS ({len(groups)}) ===\n")
        for g in groups:
            sim = f"{g.avg_similarity:.3f}" if g.avg_similarity is not None else "-"
            print(
                f"- {g.group_id} [{g.confidence}, {g.detection_method}, avg sim {sim},"
                f" {g.pair_count} pairs]: {', '.join(g.lesson_ids)}"
            )
            if g.recommended_canonical:
                print(f"    suggested canonical: {g.recommended_canonical}")
        return

    if not args.group_id or not args.canonical:
        parser.error("--group-id and --canonical are required to resolve a group")

    resolver = ResolutionEngine(factory, config, role_authorizer({args.actor: args.role}))
    result = resolver.resolve_group(
        group_id=args.group_id,
        canonical_id=args.canonical,
        retired_ids=args.retire,
        mode=args.mode,
        notes=args.notes,
        actor=args.actor,
        title_updates=_parse_titles(args.title),
        sub_group_name=args.sub_group_name,
        parent_group_id=args.parent_group_id,
    )

    if not result.success:
        print(f"\nResolution failed [{result.error_code}]: {result.error}")
        raise SystemExit(1)
    print(
        f"\nResolved {args.group_id}: canonical {result.canonical_id},"
        f" {result.archived_count} archived (resolution {result.resolution_id})"
    )


if __name__ == "__main__":
    main()
