import pytest

from nginx_exporter.metrics import (
    COUNTER,
    GAUGE,
    build_descriptors,
    merge_labels,
    new_scrape_errors_total_metric,
    parse_const_labels,
)


def test_build_descriptors_names_and_kinds():
    descs = build_descriptors("nginx", {})

    assert sorted(descs) == sorted([
        "connections_active",
        "connections_accepted",
        "connections_handled",
        "connections_reading",
        "connections_writing",
        "connections_waiting",
        "http_requests_total",
    ])
    assert descs["connections_active"].name == "nginx_connections_active"
    assert descs["connections_accepted"].kind == COUNTER
    assert descs["connections_handled"].kind == COUNTER
    assert descs["http_requests_total"].kind == COUNTER
    assert descs["connections_waiting"].kind == GAUGE


def test_build_descriptors_is_deterministic():
    a = build_descriptors("nginx", {"job": "x"})
    b = build_descriptors("nginx", {"job": "x"})

    assert [(d.name, d.help, dict(d.const_labels)) for d in a.values()] == \
        [(d.name, d.help, dict(d.const_labels)) for d in b.values()]


def test_descriptor_labels_are_copied_and_read_only():
    labels = {"job": "x"}
    desc = build_descriptors("nginx", labels)["connections_active"]
    labels["job"] = "changed"

    assert desc.const_labels["job"] == "x"
    with pytest.raises(TypeError):
        desc.const_labels["job"] = "y"


def test_descriptor_sample_carries_const_labels():
    desc = build_descriptors("nginx", {"job": "x", "dc": "eu"})["connections_accepted"]
    fam = desc.sample(42)

    assert fam.type == "counter"
    assert len(fam.samples) == 1
    s = fam.samples[0]
    assert s.name == "nginx_connections_accepted_total"
    assert s.labels == {"job": "x", "dc": "eu"}
    assert s.value == 42.0
    assert desc.describe().samples == []


def test_merge_labels_second_wins():
    assert merge_labels({"a": "1", "b": "2"}, {"b": "3", "c": "4"}) == {"a": "1", "b": "3", "c": "4"}
    assert merge_labels(None, {"a": "1"}) == {"a": "1"}
    assert merge_labels({}, None) == {}


def test_parse_const_labels():
    assert parse_const_labels(["job=nginx", "dc=eu,env=prod"]) == {"job": "nginx", "dc": "eu", "env": "prod"}
    assert parse_const_labels(["url=http://x/?a=b"]) == {"url": "http://x/?a=b"}
    assert parse_const_labels([]) == {}


@pytest.mark.parametrize("bad", ["novalue", "1abc=x", "__name__=x", "a-b=c"])
def test_parse_const_labels_rejects_bad_input(bad):
    with pytest.raises(ValueError):
        parse_const_labels([bad])


def test_type_label_cannot_be_constant():
    with pytest.raises(ValueError):
        new_scrape_errors_total_metric("nginx", {"type": "x"})
