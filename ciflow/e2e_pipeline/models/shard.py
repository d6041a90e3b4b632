"""Models for shard planning: weighted items, bins and the manifest."""

import json
import math

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, computed_field
from pydantic import field_validator, model_validator


class TestItem(BaseModel):
    """A test identifier with its estimated execution cost in seconds."""

    __test__ = False

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., description="Extension-free test identifier")
    weight: float = Field(
        ...,
        ge=0,
        validation_alias=AliasChoices("weight", "w"),
        description="Estimated execution time in seconds",
    )


class Bin(BaseModel):
    """One shard: the items assigned to it and their summed weight."""

    model_config = ConfigDict(frozen=True)

    index: int = Field(default=0, exclude=True, description="Shard index")
    items: list[TestItem] = Field(default_factory=list)
    total: float = Field(default=0.0, description="Sum of item weights")

    @model_validator(mode="after")
    def _check_total(self) -> "Bin":
        expected = sum(item.weight for item in self.items)
        if self.items and not math.isclose(self.total, expected, abs_tol=1e-6):
            raise ValueError(
                f"Bin {self.index} total {self.total} does not match "
                f"item weights {expected}"
            )
        return self

    @property
    def names(self) -> list[str]:
        """Item names in assignment order."""
        return [item.name for item in self.items]


class Manifest(BaseModel):
    """Complete partition of a test list, persisted for overview tools."""

    model_config = ConfigDict(frozen=True)

    shards: int = Field(..., ge=1, description="Total number of shards")
    index: int = Field(..., ge=0, description="Shard selected by this run")
    bins: list[Bin] = Field(default_factory=list)

    @field_validator("bins", mode="before")
    @classmethod
    def _number_bins(cls, value: object) -> object:
        if not isinstance(value, list):
            return value
        numbered: list[object] = []
        for position, raw in enumerate(value):
            if isinstance(raw, dict) and "index" not in raw:
                raw = {**raw, "index": position}
            numbered.append(raw)
        return numbered

    @computed_field  # type: ignore[prop-decorator]
    @property
    def totals(self) -> list[float]:
        """Per-shard totals, in shard order."""
        return [b.total for b in self.bins]

    @property
    def selected(self) -> Bin:
        """The bin for the selected shard index."""
        if self.index < len(self.bins):
            return self.bins[self.index]
        return Bin(index=self.index)

    def to_json(self) -> str:
        """Serialize in the on-disk manifest layout."""
        data = {
            "shards": self.shards,
            "index": self.index,
            "totals": self.totals,
            "bins": [
                {"total": b.total, "items": [item.model_dump() for item in b.items]}
                for b in self.bins
            ],
        }
        return json.dumps(data, indent=2)
