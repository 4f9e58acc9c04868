from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import List

import orjson

from common.config import yaml_config
from common.logger import get_logger
from ingestion.document_models import DetectionReport

log = get_logger(__name__)


def write_run_report(reports: List[DetectionReport], out_dir: Path | None = None) -> Path:
    """
    Write detection run reports (for audit/debug) as indented JSON under ``cache_dir``.
    """
    out_dir = Path(out_dir or yaml_config.app.cache_dir)
    stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%fZ")
    payload = {
        "generatedAt": stamp,
        "runs": len(reports),
        "failed": sum(1 for r in reports if not r.completed),
        "reports": [r.to_dict() for r in reports],
    }
    out = out_dir / f"detection_report_{stamp}.json"
    out.parent.mkdir(parents=True, exist_ok=True)
    out.write_bytes(orjson.dumps(payload, option=orjson.OPT_INDENT_2))
    log.info("Wrote detection report to %s", out)
    return out
