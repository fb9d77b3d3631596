"""Run history kept as JSON lines, one event per finished run."""

import json
import os
from dataclasses import asdict, fields
from datetime import datetime, timezone
from typing import List, Optional

from vuflow.models import EvidenceEvent, Report

_EVENT_FIELDS = {f.name for f in fields(EvidenceEvent)}


def event_from_report(report: Report, config_path: str,
                      now: Optional[datetime] = None) -> EvidenceEvent:
    """Summarise a finished run for the history log.

    Args:
        report: The run's report.
        config_path: Configuration file the run was started from.
        now: Timestamp to record; the current UTC time by default.
    """
    now = now or datetime.now(timezone.utc)
    return EvidenceEvent(
        ts=now.strftime("%Y-%m-%dT%H:%M:%SZ"),
        config=config_path,
        scenarios=list(report.scenarios),
        status=report.verdict.status if report.verdict else "fail",
        breached=[f"{b.metric}: {b.expression}" for b in report.verdict.breaches]
        if report.verdict else [],
        aborted=report.aborted,
    )


def append_event(event: EvidenceEvent, log_path: str) -> None:
    """Append ``event`` as one line, creating the file and its directories."""
    parent = os.path.dirname(log_path)
    if parent:
        os.makedirs(parent, exist_ok=True)
    with open(log_path, "a") as f:
        f.write(json.dumps(asdict(event)) + "\n")


def read_events(log_path: str, last: Optional[int] = None) -> List[EvidenceEvent]:
    """Read the events in ``log_path``, oldest first.

    Lines that are not JSON objects with a ``ts`` are skipped. A missing file
    reads as empty. ``last`` keeps only the most recent entries.
    """
    if not os.path.isfile(log_path):
        return []

    events = []
    with open(log_path, "r") as f:
        for line in f:
            try:
                raw = json.loads(line)
            except json.JSONDecodeError:
                continue
            if not isinstance(raw, dict) or "ts" not in raw:
                continue
            known = {k: v for k, v in raw.items() if k in _EVENT_FIELDS}
            known.setdefault("config", "")
            events.append(EvidenceEvent(**known))
    if last is not None:
        events = events[-last:] if last > 0 else []
    return events
