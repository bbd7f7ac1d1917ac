import pytest

from models.rag import FilterSpec
from retrieval.filters import (
    StaticFilterSource,
    coerce_filter_spec,
    is_filter_spec,
    matches_filter,
    merge_filter_specs,
)

PAYLOAD = {"status": "open", "tags": ["crm", "sales"], "priority": 2, "archived": False}


@pytest.mark.unit
def test_flat_filter_is_and_across_keys_or_within_list():
    assert matches_filter(PAYLOAD, {"status": "open"})
    assert matches_filter(PAYLOAD, {"status": ["closed", "open"], "priority": 2})
    assert not matches_filter(PAYLOAD, {"status": "open", "priority": 3})
    assert not matches_filter(PAYLOAD, {"missing": "x"})


@pytest.mark.unit
def test_list_payload_field_means_contains():
    assert matches_filter(PAYLOAD, {"tags": "crm"})
    assert matches_filter(PAYLOAD, {"tags": ["other", "sales"]})
    assert not matches_filter(PAYLOAD, {"tags": "support"})


@pytest.mark.unit
def test_bool_does_not_match_int():
    assert matches_filter(PAYLOAD, {"archived": False})
    assert not matches_filter(PAYLOAD, {"archived": 0})
    assert not matches_filter({"flag": 1}, {"flag": True})


@pytest.mark.unit
def test_filter_spec_groups():
    spec = {"must": {"status": "open"}, "must_not": {"tags": "support"}, "any": {"priority": [1, 2], "x": "y"}}
    assert matches_filter(PAYLOAD, spec)

    assert not matches_filter(PAYLOAD, {"must_not": {"tags": "crm"}})
    assert not matches_filter(PAYLOAD, {"any": {"priority": 5, "status": "closed"}})


@pytest.mark.unit
def test_empty_any_group_is_no_constraint():
    assert matches_filter(PAYLOAD, FilterSpec(must={"status": "open"}, any={}))
    assert matches_filter(PAYLOAD, FilterSpec())
    assert matches_filter(PAYLOAD, None)


@pytest.mark.unit
def test_spec_detection_and_coercion():
    assert is_filter_spec({"must": {"a": 1}})
    assert not is_filter_spec({"must": {"a": 1}, "status": "x"})
    assert not is_filter_spec({})

    assert coerce_filter_spec({"status": "open"}) == FilterSpec(must={"status": "open"})
    assert coerce_filter_spec(None) is None
    with pytest.raises(TypeError):
        coerce_filter_spec(["not", "a", "mapping"])


@pytest.mark.unit
def test_merge_combines_scalars_into_or_list():
    merged = merge_filter_specs(
        [
            {"must": {"type": "a", "lang": "de"}},
            {"must": {"type": "b", "lang": "de"}, "must_not": {"state": "x"}},
            {"any": {"tag": ["t1", "t2"]}},
            {"any": {"tag": ["t2", "t3"]}, "must_not": {"state": "y"}},
        ]
    )
    assert merged.to_dict() == {
        "must": {"type": ["a", "b"], "lang": "de"},
        "any": {"tag": ["t1", "t2", "t3"]},
        "must_not": {"state": ["x", "y"]},
    }


@pytest.mark.unit
def test_merge_without_sources_is_none():
    assert merge_filter_specs([]) is None
    assert merge_filter_specs([None, None]) is None


@pytest.mark.unit
def test_static_filter_source():
    source = StaticFilterSource({"status": "open"})
    assert source.get_filter_spec() == FilterSpec(must={"status": "open"})
    assert StaticFilterSource().get_filter_spec() is None
