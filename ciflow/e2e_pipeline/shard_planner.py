"""Weighted shard planning with longest-processing-time-first bin packing."""

import json
import logging
import re
import statistics
from collections.abc import Iterable, Mapping
from pathlib import Path

from pydantic import ValidationError

from ciflow.e2e_pipeline.exceptions import ConfigurationError
from ciflow.e2e_pipeline.models.shard import Bin, Manifest, TestItem
from ciflow.e2e_pipeline.models.timing import TimingStore

logger = logging.getLogger(__name__)

FALLBACK_WEIGHT = 15.0

_SOURCE_EXTENSION = re.compile(r"\.(js|ts|mjs|cjs|jsx)$", re.IGNORECASE)


def base_name(path: str) -> str:
    """Strip directories and a trailing source extension from a test path.

    ``tests/txListener_group1.test.js`` becomes ``txListener_group1.test``;
    grouping suffixes are part of the identifier.
    """
    name = re.split(r"[\\/]", path.strip())[-1]
    return _SOURCE_EXTENSION.sub("", name)


def parse_test_names(lines: Iterable[str]) -> list[str]:
    """Normalize raw input lines to unique test identifiers, keeping order."""
    names: list[str] = []
    seen: set[str] = set()
    for line in lines:
        name = base_name(line)
        if not name:
            continue
        if name in seen:
            logger.warning(f"Duplicate test name ignored: {name}")
            continue
        seen.add(name)
        names.append(name)
    return names


def load_timings(path: Path | None) -> dict[str, float]:
    """Read historical average durations keyed by test identifier.

    Args:
        path: Timing store file; a missing path yields no timings

    Returns:
        Positive averages keyed by extension-free basename

    """
    if path is None or not path.exists():
        return {}
    try:
        store = TimingStore.model_validate_json(path.read_text())
    except (OSError, ValidationError, ValueError) as e:
        logger.warning(f"Failed to parse timings JSON {path}: {e}")
        return {}

    weights: dict[str, float] = {}
    for entry in store.files:
        avg = entry.average()
        if avg > 0:
            weights[base_name(entry.file)] = avg
    return weights


def default_weight(weights: Mapping[str, float]) -> float:
    """Median of known weights, or the fallback when nothing is known."""
    if not weights:
        return FALLBACK_WEIGHT
    return float(statistics.median(weights.values()))


def resolve_items(names: Iterable[str], weights: Mapping[str, float]) -> list[TestItem]:
    """Attach a weight to every name, defaulting unknown tests."""
    fallback = default_weight(weights)
    return [TestItem(name=n, weight=weights.get(n) or fallback) for n in names]


def pack_bins(items: Iterable[TestItem], shards: int) -> list[Bin]:
    """Greedy LPT packing into ``shards`` bins.

    Items are placed heaviest first (ties by name) into the bin with the
    smallest running total; ties go to the lowest bin index.
    """
    if shards < 1:
        raise ConfigurationError(f"shards must be >= 1, got {shards}")

    ordered = sorted(items, key=lambda it: (-it.weight, it.name))
    contents: list[list[TestItem]] = [[] for _ in range(shards)]
    totals = [0.0] * shards
    for item in ordered:
        best = min(range(shards), key=lambda i: (totals[i], i))
        contents[best].append(item)
        totals[best] += item.weight
    return [
        Bin(index=i, items=contents[i], total=totals[i]) for i in range(shards)
    ]


def check_index(shards: int, index: int, clamp: bool = False) -> int:
    """Validate a shard index against the shard count.

    Args:
        shards: Total number of shards
        index: Requested shard index
        clamp: Fall back to shard 0 instead of failing

    Returns:
        The index to use

    Raises:
        ConfigurationError: If the index is out of range and ``clamp`` is off

    """
    if shards < 1:
        raise ConfigurationError(f"--shards must be >= 1, got {shards}")
    if 0 <= index < shards:
        return index
    if clamp:
        logger.warning(f"Shard index {index} out of range [0, {shards}); using 0")
        return 0
    raise ConfigurationError(
        f"--index must be in [0, {shards}), got {index} "
        "(check the CI matrix definition, or pass --clamp-index)"
    )


def plan_shards(
    names: Iterable[str],
    shards: int,
    index: int,
    weights: Mapping[str, float] | None = None,
    clamp_index: bool = False,
) -> Manifest:
    """Partition test names into shards and select one of them."""
    index = check_index(shards, index, clamp_index)
    items = resolve_items(names, weights or {})
    bins = pack_bins(items, shards)
    return Manifest(shards=shards, index=index, bins=bins)


def write_manifest(manifest: Manifest, path: Path) -> None:
    """Persist the manifest as JSON, creating parent directories."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(manifest.to_json())
    logger.info(f"Wrote manifest to {path}")


def read_manifest(path: Path) -> Manifest:
    """Load a persisted manifest.

    Raises:
        ConfigurationError: If the file is missing or malformed

    """
    if not path.exists():
        raise ConfigurationError(f"Manifest file not found: {path}")
    try:
        return Manifest.model_validate_json(path.read_text())
    except ValidationError as e:
        raise ConfigurationError(f"Invalid manifest {path}: {e}") from e


def write_overview(
    manifest: Manifest, out_dir: Path, timings_path: Path | None
) -> dict[str, object]:
    """Write ``overview.txt``, ``overview.json`` and ``files-<i>.txt``.

    Returns:
        The overview data written to ``overview.json``

    """
    known = set(load_timings(timings_path))
    names = [name for b in manifest.bins for name in b.names]
    known_count = sum(1 for name in names if name in known)
    total_tests = len(names)

    overview = [
        {"shard": i, "count": len(b.items), "totalSec": b.total}
        for i, b in enumerate(manifest.bins)
    ]
    data: dict[str, object] = {
        "shards": len(manifest.bins),
        "overview": overview,
        "totals": manifest.totals,
        "counts": [len(b.items) for b in manifest.bins],
        "stats": {
            "totalTests": total_tests,
            "knownCount": known_count,
            "unknownCount": total_tests - known_count,
            "knownPercentage": (
                round(known_count / total_tests * 100, 1) if total_tests else 0
            ),
        },
    }

    out_dir.mkdir(parents=True, exist_ok=True)
    lines = [
        f"#{i}\tcount={len(b.items)}\ttotal={b.total:.2f}s"
        for i, b in enumerate(manifest.bins)
    ]
    (out_dir / "overview.txt").write_text("\n".join(lines) + "\n")
    (out_dir / "overview.json").write_text(json.dumps(data, indent=2))
    for i, b in enumerate(manifest.bins):
        (out_dir / f"files-{i}.txt").write_text(
            "\n".join(b.names) + ("\n" if b.names else "")
        )

    logger.info(
        f"Wrote overview.txt, overview.json and {len(manifest.bins)} "
        f"shard files to {out_dir}"
    )
    logger.info(f"Total tests: {total_tests} ({known_count} with timing data)")
    return data
