"""Load pipeline settings from an optional YAML file."""

from pathlib import Path

import yaml
from pydantic import ValidationError

from ciflow.e2e_pipeline.models.settings import PipelineSettings


def load_settings(path: Path | None) -> PipelineSettings:
    """Load pipeline settings.

    Args:
        path: Settings file; ``None`` means built-in defaults

    Returns:
        Parsed settings

    Raises:
        FileNotFoundError: If an explicit path doesn't exist
        ValueError: If YAML is invalid or doesn't match schema

    """
    if path is None:
        return PipelineSettings()

    if not path.exists():
        raise FileNotFoundError(f"Settings file not found: {path}")

    try:
        with path.open() as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ValueError(f"Invalid YAML in {path}: {e}") from e

    if data is None:
        return PipelineSettings()

    try:
        return PipelineSettings.model_validate(data)
    except ValidationError as e:
        raise ValueError(f"Invalid settings schema in {path}: {e}") from e


def split_list(value: str | None) -> list[str]:
    """Split a comma-separated option into trimmed, non-empty parts."""
    if not value:
        return []
    return [part.strip() for part in value.split(",") if part.strip()]
