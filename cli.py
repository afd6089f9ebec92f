from __future__ import annotations

import argparse
import json
import sys

import requests

from asr.criteria import load_policy
from asr.errors import PolicyLoadError


def _print(obj) -> None:
    print(json.dumps(obj, indent=2, ensure_ascii=False))


def _parse_labels(raw: list[str]) -> dict[str, str]:
    labels: dict[str, str] = {}
    for item in raw:
        key, sep, value = item.partition("=")
        if not sep:
            raise SystemExit(f"invalid --label {item!r}, expected key=value")
        labels[key] = value
    return labels


def _parse_owners(raw: list[str]) -> list[dict[str, str]]:
    owners: list[dict[str, str]] = []
    for item in raw:
        kind, sep, name = item.partition("/")
        if not sep:
            raise SystemExit(f"invalid --owner {item!r}, expected Kind/name")
        owners.append({"kind": kind, "name": name})
    return owners


def main(argv: list[str] | None = None) -> int:
    p = argparse.ArgumentParser(description="Auto-instrumentation Scope Reconciler CLI")
    p.add_argument("--api", default="http://localhost:8000", help="API base URL")
    sub = p.add_subparsers(dest="cmd", required=True)

    sub.add_parser("policy", help="Show the committed policy")

    s_ev = sub.add_parser("events", help="Show events")
    s_ev.add_argument("--limit", type=int, default=20)

    s_rl = sub.add_parser("reloads", help="Show reload history")
    s_rl.add_argument("--limit", type=int, default=20)

    s_scope = sub.add_parser("scope", help="Ask whether a pod is in scope")
    s_scope.add_argument("--namespace", required=True)
    s_scope.add_argument("--name", required=True, help="Pod name")
    s_scope.add_argument("--label", action="append", default=[], help="key=value, repeatable")
    s_scope.add_argument("--owner", action="append", default=[], help="Kind/name, innermost first, repeatable")

    s_val = sub.add_parser("validate", help="Validate a policy document locally")
    s_val.add_argument("file")

    args = p.parse_args(argv)

    if args.cmd == "validate":
        with open(args.file, encoding="utf-8") as f:
            text = f.read()
        try:
            policy = load_policy(text)
        except PolicyLoadError as e:
            _print({"valid": False, "error": str(e)})
            return 1
        _print({"valid": True, "criteria": len(policy.services)})
        return 0

    base = args.api.rstrip("/")

    if args.cmd == "policy":
        _print(requests.get(f"{base}/policy", timeout=10).json())
        return 0

    if args.cmd == "events":
        _print(requests.get(f"{base}/events", params={"limit": args.limit}, timeout=10).json())
        return 0

    if args.cmd == "reloads":
        _print(requests.get(f"{base}/reloads", params={"limit": args.limit}, timeout=10).json())
        return 0

    if args.cmd == "scope":
        payload = {
            "name": args.name,
            "namespace": args.namespace,
            "labels": _parse_labels(args.label),
            "owner_references": _parse_owners(args.owner),
        }
        r = requests.post(f"{base}/scope", json=payload, timeout=10)
        _print(r.json())
        return 0 if r.ok else 1

    return 2


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
