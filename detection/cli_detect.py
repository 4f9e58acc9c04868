from __future__ import annotations

import argparse
from pathlib import Path
from typing import List

from common.config import load_yaml_config
from common.logger import get_logger
from detection.pipeline import DuplicateDetector
from detection.report import write_run_report
from ingestion.document_models import DetectionReport, SubmissionInput, SubmissionStatus
from ingestion.loaders import load_submissions
from resolution.review import ReviewWorkflow
from storage import repository as repo
from storage.db import build_engine, create_schema, make_session_factory, session_scope

log = get_logger(__name__)

PENDING = (SubmissionStatus.SUBMITTED.value, SubmissionStatus.IN_REVIEW.value)


def _print_summary(report: DetectionReport) -> None:
    if not report.completed:
        print(f"\n[{report.submission_id}] FAILED: {report.error}")
        return
    flag = " (degraded: %s)" % report.degraded_reason if report.degraded else ""
    print(f"\n[{report.submission_id}] {report.total} possible duplicates{flag}")
    for c in report.candidates:
        print(
            f"  - {c.tier.value:<6} {c.combined_score:.3f}  {c.lesson_id}  {c.title}"
            f"  (title {c.title_similarity:.2f}, content {c.content_similarity:.2f},"
            f" metadata {c.metadata_overlap:.2f})"
        )


def main():
    parser = argparse.ArgumentParser(
        description="Run duplicate detection for lesson submissions against the catalog."
    )
    source = parser.add_mutually_exclusive_group(required=True)
    source.add_argument("--submission-id", type=str, help="Detect one stored submission")
    source.add_argument(
        "--all-pending", action="store_true", help="Detect every submitted / in-review submission"
    )
    source.add_argument(
        "--from-json", type=str, help="Submit the submissions in this JSON file, then detect them"
    )
    parser.add_argument("--submitter", type=str, default="cli", help="Submitter for --from-json")
    parser.add_argument("--workers", type=int, default=None)
    parser.add_argument("--config", type=str, default=None, help="Path to a config YAML")
    parser.add_argument("--database_url", type=str, default=None)
    parser.add_argument(
        "--write-report", action="store_true", help="Write the JSON run report to cache_dir"
    )
    args = parser.parse_args()

    config = load_yaml_config(Path(args.config) if args.config else None)
    engine = build_engine(args.database_url)
    create_schema(engine)
    factory = make_session_factory(engine)
    detector = DuplicateDetector(factory, config)

    if args.submission_id:
        reports: List[DetectionReport] = detector.detect_many(
            [_stored_input(factory, args.submission_id)], max_workers=1
        )
    elif args.all_pending:
        with session_scope(factory) as session:
            ids = repo.list_submission_ids(session, PENDING)
            inputs = [repo.to_submission_input(repo.get_submission(session, i)) for i in ids]
        log.info("Detecting %d pending submissions", len(inputs))
        reports = detector.detect_many(inputs, max_workers=args.workers)
    else:
        workflow = ReviewWorkflow(factory)
        inputs: List[SubmissionInput] = []
        for payload in load_submissions(Path(args.from_json), config.detection.embedding_dim):
            data = payload.to_input()
            data.submission_id = workflow.submit(
                payload.submitter_id or args.submitter, data, payload.updates_lesson_id
            )
            inputs.append(data)
        reports = detector.detect_many(inputs, max_workers=args.workers)

    print("\n=== DUPLICATE DETECTION ===")
    for report in reports:
        _print_summary(report)

    if args.write_report:
        out = write_run_report(reports, config.app.cache_dir)
        print(f"\nReport written to {out}")

    if any(not r.completed for r in reports):
        raise SystemExit(1)


def _stored_input(factory, submission_id: str) -> SubmissionInput:
    with session_scope(factory) as session:
        row = repo.get_submission(session, submission_id)
        data = repo.to_submission_input(row) if row is not None else None
    if data is None:
        log.error("Submission not found: %s", submission_id)
        raise SystemExit(1)
    return data


if __name__ == "__main__":
    main()
