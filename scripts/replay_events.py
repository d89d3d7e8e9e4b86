import asyncio
import json
import os
import sys
from pathlib import Path

import httpx

BASE_URL = os.getenv("BASE_URL", "http://localhost:8000")
SECRET = os.getenv("TELEPHONY_INGEST_SECRET", "")
BATCH_SIZE = int(os.getenv("REPLAY_BATCH_SIZE", "5"))

DEFAULT_FIXTURE = Path(__file__).with_name("sample_events.json")


def load_events(path: Path) -> list[dict]:
    data = json.loads(path.read_text(encoding="utf-8"))
    if isinstance(data, dict):
        data = data.get("events", [])
    if not isinstance(data, list):
        raise SystemExit(f"{path}: expected a list of events or {{'events': [...]}}")
    return data


async def main() -> int:
    fixture = Path(sys.argv[1]) if len(sys.argv) > 1 else DEFAULT_FIXTURE
    events = load_events(fixture)
    if not SECRET:
        print("TELEPHONY_INGEST_SECRET is not set; the server will refuse the batches")

    print(f"Replaying {len(events)} events from {fixture} to {BASE_URL}")
    totals = {"processed": 0, "skipped": 0, "errors": 0}

    async with httpx.AsyncClient(base_url=BASE_URL, timeout=10.0) as client:
        for start in range(0, len(events), BATCH_SIZE):
            batch = events[start:start + BATCH_SIZE]
            resp = await client.post(
                "/v1/telephony/events",
                json={"events": batch},
                headers={"x-telephony-secret": SECRET},
            )
            if resp.status_code != 200:
                print(f"[batch {start // BATCH_SIZE + 1}] HTTP {resp.status_code}: {resp.text}")
                return 1

            body = resp.json()
            errors = body.get("errors", [])
            totals["processed"] += body.get("processed", 0)
            totals["skipped"] += body.get("skipped", 0)
            totals["errors"] += len(errors)
            print(
                f"[batch {start // BATCH_SIZE + 1}] "
                f"processed={body.get('processed')} skipped={body.get('skipped')} errors={len(errors)}"
            )
            for err in errors:
                print(f"    {err.get('idempotencyKey')}: {err.get('error')}")

    print(
        f"Done: processed={totals['processed']} skipped={totals['skipped']} errors={totals['errors']}"
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(asyncio.run(main()))
