from __future__ import annotations

import argparse
import json
import sys
from collections import Counter
from dataclasses import asdict

from app.custody.core.config import settings
from app.custody.core.db_timing import db_timer, get_db_time_ms
from app.custody.db.session import SessionLocal, build_session_factory
from app.ops.integrity_checks import IntegrityFinding, resolve_scope, run_integrity_checks


def _summarize(findings: list[IntegrityFinding], db_time_ms: float | None) -> dict:
    counts = Counter(f.severity for f in findings)
    return {
        "total": len(findings),
        "critical": counts.get("CRITICAL", 0),
        "warn": counts.get("WARN", 0),
        "db_time_ms": round(db_time_ms, 2) if db_time_ms is not None else None,
    }


def _format_text(summary: dict, findings: list[IntegrityFinding]) -> str:
    lines = [
        "Ledger Integrity Scan",
        f"Total findings: {summary['total']}",
        f"CRITICAL: {summary['critical']}",
        f"WARN: {summary['warn']}",
        "",
    ]
    for finding in findings:
        lines.append(
            f"[{finding.severity}] {finding.check_id} custodian={finding.custodian_id or '-'} "
            f"entity={finding.entity} id={finding.entity_id or '-'} {finding.message}"
        )
        if finding.details:
            lines.append(f"  details={json.dumps(finding.details, default=str)}")
    return "\n".join(lines)


def run_scan(custodian: str, output_format: str, fail_on_critical: bool, *, database_url: str | None = None) -> int:
    if not settings.OPS_ENABLE_INTEGRITY_SCAN:
        print("Integrity scan disabled by OPS_ENABLE_INTEGRITY_SCAN.", file=sys.stderr)
        return 2
    session_factory = SessionLocal if database_url is None else build_session_factory(database_url)
    with db_timer(), session_factory() as db:
        findings = run_integrity_checks(db, resolve_scope(db, custodian))
        db_time_ms = get_db_time_ms()
    summary = _summarize(findings, db_time_ms)
    if output_format == "json":
        print(json.dumps({"summary": summary, "findings": [asdict(f) for f in findings]}, indent=2, default=str))
    else:
        print(_format_text(summary, findings))
    if fail_on_critical and summary["critical"] > 0:
        return 1
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Custody ledger integrity scan")
    parser.add_argument("--custodian", default="all", help="Custodian ID (scans it and its descendants) or 'all'")
    parser.add_argument("--format", choices=["json", "text"], default="text")
    parser.add_argument("--fail-on-critical", action="store_true")
    args = parser.parse_args(argv)
    return run_scan(args.custodian, args.format, args.fail_on_critical)


if __name__ == "__main__":
    raise SystemExit(main())
