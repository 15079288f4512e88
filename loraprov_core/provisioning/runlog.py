from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Iterable

import fsspec

from loraprov_core.storage import join_uri
from loraprov_core.provisioning.types import ProvisioningSummary, RegistrationPlan


@dataclass(frozen=True)
class RegistrationRecord:
    run_id: str
    local_id: str
    remote_id: str | None
    kind: str
    status: str
    reason: str | None
    error_code: str | None
    http_status: int | None
    retryable: bool
    duration_ms: int


def run_log_uri(base_uri: str, run_id: str) -> str:
    return join_uri(base_uri, "audit", "provisioning", f"{run_id}.jsonl")


def records_for(
    run_id: str,
    plan: RegistrationPlan,
    summary: ProvisioningSummary,
) -> list[RegistrationRecord]:
    return [
        RegistrationRecord(
            run_id=run_id,
            local_id=item.local_id,
            remote_id=item.remote_id,
            kind=plan.kind,
            status=item.status,
            reason=item.reason,
            error_code=item.error_code,
            http_status=item.http_status,
            retryable=item.retryable,
            duration_ms=item.duration_ms,
        )
        for item in summary.results
    ]


def write_run_log(
    *,
    base_uri: str,
    run_id: str,
    plan: RegistrationPlan,
    records: Iterable[RegistrationRecord],
    session_id: str | None = None,
) -> str:
    now = datetime.now(timezone.utc).isoformat()
    dest_uri = run_log_uri(base_uri, run_id)
    fs, path = fsspec.core.url_to_fs(dest_uri)
    fs.makedirs("/".join(path.split("/")[:-1]), exist_ok=True)
    with fs.open(path, "wb") as handle:
        header = {
            "run_id": run_id,
            "session_id": session_id,
            "kind": plan.kind,
            "cluster": plan.cluster,
            "application_id": plan.application_id,
            "frequency_plan": plan.frequency_plan,
            "batched": plan.batched,
            "written_at": now,
        }
        handle.write((json.dumps(header) + "\n").encode("utf-8"))
        for record in records:
            handle.write((json.dumps(asdict(record)) + "\n").encode("utf-8"))
    return dest_uri


def read_run_log(uri: str) -> tuple[dict[str, object], list[RegistrationRecord]]:
    fs, path = fsspec.core.url_to_fs(uri)
    with fs.open(path, "rb") as handle:
        lines = [line for line in handle.read().decode("utf-8").splitlines() if line]
    if not lines:
        raise ValueError(f"Run log is empty: {uri}")
    header = json.loads(lines[0])
    records = [RegistrationRecord(**json.loads(line)) for line in lines[1:]]
    return header, records
