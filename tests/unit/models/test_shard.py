"""Tests for shard planning models."""

import json

import pytest
from pydantic import ValidationError

from ciflow.e2e_pipeline.models.shard import Bin, Manifest, TestItem


def test_test_item_accepts_short_weight_alias() -> None:
    """TestItem reads its weight from either weight or w."""
    assert TestItem.model_validate({"name": "a.test", "w": 3.5}).weight == 3.5
    assert TestItem.model_validate({"name": "a.test", "weight": 2}).weight == 2.0


def test_test_item_rejects_negative_weight() -> None:
    """TestItem weights cannot be negative."""
    with pytest.raises(ValidationError):
        TestItem(name="a.test", weight=-1)


def test_bin_total_must_match_items() -> None:
    """Bin refuses a total that differs from the summed item weights."""
    items = [TestItem(name="a", weight=1.0), TestItem(name="b", weight=2.0)]
    assert Bin(items=items, total=3.0).names == ["a", "b"]
    with pytest.raises(ValidationError, match="does not match"):
        Bin(items=items, total=4.0)


def test_manifest_totals_and_selected() -> None:
    """Manifest exposes per-bin totals and the selected bin."""
    manifest = Manifest(
        shards=2,
        index=1,
        bins=[
            Bin(index=0, items=[TestItem(name="a", weight=30)], total=30),
            Bin(index=1, items=[TestItem(name="b", weight=20)], total=20),
        ],
    )
    assert manifest.totals == [30, 20]
    assert manifest.selected.names == ["b"]


def test_manifest_selected_out_of_range_is_empty() -> None:
    """A selected index without a bin yields an empty bin."""
    manifest = Manifest(shards=1, index=3, bins=[])
    assert manifest.selected.items == []


def test_manifest_json_layout_round_trips() -> None:
    """to_json writes shards, index, totals and bins and can be read back."""
    manifest = Manifest(
        shards=1,
        index=0,
        bins=[Bin(items=[TestItem(name="a", weight=1.5)], total=1.5)],
    )
    data = json.loads(manifest.to_json())

    assert data == {
        "shards": 1,
        "index": 0,
        "totals": [1.5],
        "bins": [{"total": 1.5, "items": [{"name": "a", "weight": 1.5}]}],
    }
    restored = Manifest.model_validate_json(manifest.to_json())
    assert restored.bins[0].index == 0
    assert restored.selected.names == ["a"]
