import json

import pytest
from fastapi.testclient import TestClient

import cli
from asr.api import create_app

POLICY = """
discovery:
  services:
    - name: api
      k8s_namespace: "^shop$"
      k8s_deployment_name: "^api"
    - name: labelled
      pod_labels:
        instrument: "true"
"""


@pytest.fixture
def api(reconciler, orchestrator):
    orchestrator.add("Deployment", "shop", "api-gateway")
    reconciler.apply(POLICY)
    return TestClient(create_app(reconciler))


def test_health(api):
    r = api.get("/health")
    assert r.status_code == 200
    assert r.json() == {"status": "healthy", "phase": "idle", "revision": 1}


def test_policy_document(api):
    body = api.get("/policy").json()
    assert body["revision"] == 1
    services = body["policy"]["discovery"]["services"]
    assert [s["name"] for s in services] == ["api", "labelled"]
    assert services[0]["k8s_deployment_name"] == "^api"
    assert body["last_reload"]["outcome"] == "committed"


def test_scope_by_owner(api):
    r = api.post(
        "/scope",
        json={
            "name": "api-gateway-6f-x",
            "namespace": "shop",
            "owner_references": [
                {"kind": "ReplicaSet", "name": "api-gateway-6f"},
                {"kind": "Deployment", "name": "api-gateway"},
            ],
        },
    )
    assert r.status_code == 200
    assert r.json() == {"in_scope": True, "criterion": "api", "revision": 1}


def test_scope_by_label_and_out_of_scope(api):
    r = api.post("/scope", json={"name": "p", "namespace": "other", "labels": {"instrument": "true"}})
    assert r.json()["criterion"] == "labelled"

    r = api.post("/scope", json={"name": "p", "namespace": "other", "labels": {"app": "x"}})
    assert r.json()["in_scope"] is False
    assert r.json()["criterion"] is None


def test_scope_requires_name_and_namespace(api):
    assert api.post("/scope", json={"name": "p"}).status_code == 422


def test_validate_endpoint(api):
    ok = api.post("/policy/validate", json={"document": POLICY}).json()
    assert ok == {"valid": True, "criteria": 2, "error": None}

    bad = api.post("/policy/validate", json={"document": "discovery:\n  services:\n    - name: x\n"}).json()
    assert bad["valid"] is False
    assert "at least one selection criteria" in bad["error"]
    # validation never commits
    assert api.get("/health").json()["revision"] == 1
    # the body is JSON, not raw YAML
    assert api.post("/policy/validate", content=POLICY).status_code == 422


def test_journal_endpoints(api):
    reloads = api.get("/reloads").json()
    assert reloads[0]["outcome"] == "committed"
    events = api.get("/events", params={"limit": 5}).json()
    assert 0 < len(events) <= 5


def test_cli_validate(tmp_path, capsys):
    good = tmp_path / "good.yaml"
    good.write_text(POLICY, encoding="utf-8")
    assert cli.main(["validate", str(good)]) == 0
    assert json.loads(capsys.readouterr().out) == {"valid": True, "criteria": 2}

    bad = tmp_path / "bad.yaml"
    bad.write_text("discovery:\n  services:\n    - exe_path: x\n", encoding="utf-8")
    assert cli.main(["validate", str(bad)]) == 1
    assert "exe_path" in json.loads(capsys.readouterr().out)["error"]


def test_cli_scope_posts_workload(monkeypatch, capsys):
    sent = {}

    class _Resp:
        ok = True

        def json(self):
            return {"in_scope": True}

    def fake_post(url, json=None, timeout=None):
        sent["url"] = url
        sent["json"] = json
        return _Resp()

    monkeypatch.setattr(cli.requests, "post", fake_post)
    rc = cli.main(
        ["--api", "http://asr:8000/", "scope", "--namespace", "shop", "--name", "p",
         "--label", "app=api", "--owner", "Deployment/api"]
    )
    assert rc == 0
    assert sent["url"] == "http://asr:8000/scope"
    assert sent["json"] == {
        "name": "p",
        "namespace": "shop",
        "labels": {"app": "api"},
        "owner_references": [{"kind": "Deployment", "name": "api"}],
    }
