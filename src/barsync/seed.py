"""Bar and source configuration seeding from bars.yaml."""

from pathlib import Path
from typing import Any

import yaml  # type: ignore[import-untyped]

from barsync.db import get_db
from barsync.models import Bar, SourceConfig
from barsync.sources.registry import ADAPTERS, normalize_source_type


def _source_config(source_data: dict[str, Any]) -> dict[str, Any]:
    return {key: value for key, value in source_data.items() if key not in {"type", "active"}}


def seed_bars(bars_path: str = "bars.yaml") -> dict[str, int]:
    """Upsert bars and their source configs from a YAML file.

    Returns:
        dict with counts:
            {bars_created, bars_updated, bars_unchanged,
             source_configs_created, source_configs_updated}
    """
    path = Path(bars_path)
    if not path.exists():
        raise FileNotFoundError(f"Bars file not found: {bars_path}")

    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError("bars.yaml must contain a top-level mapping")
    bars_data: list[dict[str, Any]] = data.get("bars", [])

    stats = {
        "bars_created": 0,
        "bars_updated": 0,
        "bars_unchanged": 0,
        "source_configs_created": 0,
        "source_configs_updated": 0,
    }

    with get_db() as session:
        for bar_data in bars_data:
            slug = bar_data["slug"]
            existing = session.query(Bar).filter_by(slug=slug).first()
            fields = {
                "name": bar_data["name"],
                "active": bar_data.get("active", True),
            }

            if existing:
                updated = False
                for field_name, value in fields.items():
                    if getattr(existing, field_name) != value:
                        setattr(existing, field_name, value)
                        updated = True
                bar = existing
                stats["bars_updated" if updated else "bars_unchanged"] += 1
            else:
                bar = Bar(slug=slug, **fields)
                if bar_data.get("id") is not None:
                    bar.id = bar_data["id"]
                session.add(bar)
                session.flush()  # Get the ID
                stats["bars_created"] += 1

            for source_data in bar_data.get("sources", []):
                source_type = normalize_source_type(source_data["type"])
                if source_type not in ADAPTERS:
                    raise ValueError(f"Unknown source type {source_data['type']!r} for bar {slug}")
                config = _source_config(source_data)
                active = source_data.get("active", True)

                existing_config = session.query(SourceConfig).filter_by(bar_id=bar.id, source_type=source_type).first()
                if not existing_config:
                    session.add(SourceConfig(bar_id=bar.id, source_type=source_type, config_json=config, active=active))
                    stats["source_configs_created"] += 1
                elif existing_config.config_json != config or existing_config.active != active:
                    existing_config.config_json = config
                    existing_config.active = active
                    stats["source_configs_updated"] += 1

    return stats
