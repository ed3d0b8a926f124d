from __future__ import annotations

import argparse
import json
import sys
import urllib.error
import urllib.request
from uuid import uuid4


def request_json(
    *, url: str, method: str = "GET", token: str | None = None, body: dict | None = None
) -> tuple[int, dict | list | None, str]:
    data = json.dumps(body).encode("utf-8") if body is not None else None
    request = urllib.request.Request(url, method=method, data=data)
    request.add_header("Accept", "application/json")
    if data is not None:
        request.add_header("Content-Type", "application/json")
    if token:
        request.add_header("Authorization", f"Bearer {token}")
    try:
        with urllib.request.urlopen(request, timeout=20) as response:
            text = response.read().decode("utf-8")
            status = response.status
    except urllib.error.HTTPError as exc:
        text = exc.read().decode("utf-8")
        status = exc.code
    try:
        return status, json.loads(text), text
    except json.JSONDecodeError:
        return status, None, text


def assert_true(condition: bool, message: str) -> None:
    if not condition:
        raise RuntimeError(message)


def main() -> int:
    parser = argparse.ArgumentParser(description="Smoke test for Gradia pipeline API.")
    parser.add_argument("--base-url", required=True)
    parser.add_argument("--token", default="", help="Staff token when auth is enabled.")
    args = parser.parse_args()

    base_url = args.base_url.rstrip("/")
    token = args.token.strip() or None

    status, data, _ = request_json(url=f"{base_url}/health/ready")
    assert_true(status == 200 and isinstance(data, dict), f"/health/ready returned {status}")
    print("OK /health/ready")

    status, stages, _ = request_json(url=f"{base_url}/stages")
    assert_true(status == 200 and isinstance(stages, list) and stages, "/stages is empty")
    print(f"OK /stages ({len(stages)} stages)")

    status, created, body = request_json(
        url=f"{base_url}/pipelines",
        method="POST",
        token=token,
        body={"candidate_id": f"smoke-{uuid4().hex[:8]}", "job_id": "smoke-job"},
    )
    assert_true(status in {200, 201}, f"POST /pipelines returned {status}: {body}")
    pipeline_id = created["pipeline_id"]
    print(f"OK POST /pipelines {pipeline_id}")

    status, result, body = request_json(
        url=f"{base_url}/pipelines/{pipeline_id}/actions",
        method="POST",
        token=token,
        body={"action": "advance", "stage_order": 1, "expected_version": created["version"]},
    )
    assert_true(status == 200, f"advance returned {status}: {body}")
    assert_true(result["pipeline"]["current_stage_order"] == 2, "advance did not move pointer")
    for warning in result.get("warnings", []):
        print(f"WARN {warning['collaborator']}: {warning['message']}")
    print("OK advance")

    status, _, body = request_json(
        url=f"{base_url}/pipelines/{pipeline_id}/actions",
        method="POST",
        token=token,
        body={"action": "advance", "stage_order": 1},
    )
    assert_true(status == 409, f"stale advance expected 409, got {status}: {body}")
    print("OK stale advance rejected")

    status, _, body = request_json(url=f"{base_url}/metrics")
    assert_true("gradia_pipeline_actions_total" in body, "/metrics missing actions counter")
    print("OK /metrics")

    print("Smoke test passed.")
    return 0


if __name__ == "__main__":
    try:
        sys.exit(main())
    except Exception as exc:
        print(f"Smoke test failed: {exc}", file=sys.stderr)
        sys.exit(1)
