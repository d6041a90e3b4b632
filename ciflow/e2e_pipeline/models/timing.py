"""Models for the historical per-test timing store."""

from pydantic import BaseModel, Field, field_validator


class TimingEntry(BaseModel):
    """Aggregated durations observed for one test file."""

    file: str = Field(..., description="Test file path or basename")
    avg: float | None = Field(default=None, description="Average seconds")
    total: float | None = Field(default=None, description="Summed seconds")
    count: int | None = Field(default=None, description="Observation count")
    min: float | None = Field(default=None, description="Fastest observation")
    max: float | None = Field(default=None, description="Slowest observation")

    def average(self) -> float:
        """Return the precomputed average, else total/count, else 0."""
        if self.avg is not None:
            return self.avg
        if self.total is not None and self.count:
            return self.total / self.count
        return 0.0


class TimingStore(BaseModel):
    """Timing file contents: ``{meta?, files: [...]}``."""

    meta: dict[str, object] | None = Field(default=None)
    files: list[TimingEntry] = Field(default_factory=list)

    @field_validator("files", mode="before")
    @classmethod
    def _drop_unusable(cls, value: object) -> object:
        if isinstance(value, list):
            return [
                f
                for f in value
                if isinstance(f, TimingEntry)
                or (isinstance(f, dict) and f.get("file"))
            ]
        return value
