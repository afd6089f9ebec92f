import pytest
import yaml

from asr.criteria import Criterion, Policy, RegexPattern, deserialize, load_policy, validate
from asr.errors import ConfigParseError, ConfigValidationError


def test_unset_pattern_matches_everything():
    p = RegexPattern("")
    assert not p.is_set
    assert p.match("")
    assert p.match("anything")
    assert RegexPattern(None).match("")


def test_set_pattern_uses_search_semantics():
    p = RegexPattern("pod")
    assert p.match("is-thepod-1")
    assert not p.match("po")

    anchored = RegexPattern("^api-.*$")
    assert anchored.match("api-gateway")
    assert not anchored.match("my-api-gateway")


def test_pattern_equality_is_textual():
    assert RegexPattern("foo") == RegexPattern("foo")
    assert RegexPattern("foo") != RegexPattern("foo2")
    # same language, different text
    assert RegexPattern("a+") != RegexPattern("aa*")
    assert RegexPattern("") == RegexPattern(None)


def test_invalid_regex_is_a_parse_error():
    with pytest.raises(ConfigParseError):
        RegexPattern("(unclosed")


def test_deserialize_inline_metadata_and_labels():
    policy = deserialize(
        """
discovery:
  services:
    - name: checkout
      namespace: shop
      k8s_namespace: shop
      k8s_deployment_name: "^checkout-"
    - name: labelled
      pod_labels:
        app: "api|web"
        tier:
"""
    )
    assert len(policy.services) == 2
    first, second = policy.services
    assert first.name == "checkout"
    assert first.namespace == "shop"
    assert set(first.metadata) == {"k8s_namespace", "k8s_deployment_name"}
    assert first.metadata["k8s_deployment_name"].source == "^checkout-"
    assert first.pod_labels == {}

    assert second.metadata == {}
    assert second.pod_labels["app"].match("web")
    # null pattern is the unset "match anything" value
    assert not second.pod_labels["tier"].is_set


def test_empty_string_pattern_is_unset():
    policy = deserialize('discovery:\n  services:\n    - k8s_pod_name: ""\n')
    pattern = policy.services[0].metadata["k8s_pod_name"]
    assert not pattern.is_set
    assert pattern.match("whatever")


def test_k8s_pod_labels_alias():
    policy = deserialize("discovery:\n  services:\n    - k8s_pod_labels:\n        app: x\n")
    assert policy.services[0].pod_labels["app"].source == "x"
    assert policy.services[0].metadata == {}


def test_scalar_values_are_coerced_to_text():
    policy = deserialize("discovery:\n  services:\n    - name: 123\n      pod_labels:\n        version: 2\n")
    c = policy.services[0]
    assert c.name == "123"
    assert c.pod_labels["version"].source == "2"


@pytest.mark.parametrize(
    "text",
    [
        "discovery: [unclosed",
        "- just\n- a list\n",
        "discovery:\n  services:\n    - k8s_pod_name: [a, b]\n",
        "discovery:\n  services:\n    - k8s_pod_name: '(bad'\n",
        "discovery:\n  services: 7\n",
    ],
)
def test_malformed_documents_raise_parse_error(text):
    with pytest.raises(ConfigParseError):
        deserialize(text)


@pytest.mark.parametrize("text", [None, "", "discovery:\n", "discovery:\n  services: []\n", "other: 1\n"])
def test_empty_documents_give_empty_policy(text):
    assert deserialize(text) == Policy()


def test_validation_requires_a_selection_criterion():
    policy = deserialize("discovery:\n  services:\n    - name: nothing-to-match\n")
    with pytest.raises(ConfigValidationError, match=r"services\[0\] should define at least one"):
        validate(policy)


def test_validation_rejects_unknown_metadata_key():
    with pytest.raises(ConfigValidationError, match="unknown attribute in discovery.services\\[1\\]: exe_path"):
        load_policy(
            "discovery:\n  services:\n    - k8s_pod_name: a\n    - exe_path: /bin/foo\n"
        )


def test_validation_accepts_well_formed_criteria():
    validate(Policy())
    validate(
        Policy(
            services=(
                Criterion(metadata={"k8s_owner_name": "x"}),
                Criterion(pod_labels={"app": ""}),
                Criterion(name="n", metadata={"k8s_namespace": "ns", "k8s_cronjob_name": "c"}),
            )
        )
    )


def test_to_document_round_trips_through_deserialize():
    policy = load_policy(
        "discovery:\n  services:\n    - name: a\n      k8s_job_name: '^j$'\n      pod_labels:\n        app: x\n"
    )
    assert load_policy(yaml.safe_dump(policy.to_document())) == policy


def test_describe_falls_back_to_constraints():
    assert Criterion(name="svc").describe() == "svc"
    c = Criterion(metadata={"k8s_pod_name": "p"}, pod_labels={"app": "x"})
    assert c.describe() == "k8s_pod_name=p,label:app=x"


def test_criteria_are_hashable_by_content():
    a = Criterion(name="x", metadata={"k8s_pod_name": "p", "k8s_namespace": "n"}, pod_labels={"app": "y"})
    b = Criterion(name="x", metadata={"k8s_namespace": "n", "k8s_pod_name": "p"}, pod_labels={"app": "y"})
    assert a == b
    assert hash(a) == hash(b)
    assert len({a, b, Criterion(name="x", metadata={"k8s_pod_name": "q"})}) == 2
