"""Tests for bars.yaml seeding."""

from unittest.mock import patch

import pytest

from barsync.models import Bar, SourceConfig
from barsync.seed import seed_bars

BARS_YAML = """
bars:
  - slug: ordinario
    name: Ordinario Bar
    sources:
      - type: contahub
      - type: sympla
        event_ids: ["11", "12"]
"""


def test_seed_creates_then_updates(tmp_path, db_session, patch_get_db):
    path = tmp_path / "bars.yaml"
    path.write_text(BARS_YAML)

    with patch("barsync.seed.get_db", patch_get_db):
        first = seed_bars(str(path))
        path.write_text(BARS_YAML.replace('["11", "12"]', '["13"]'))
        second = seed_bars(str(path))

    assert first["bars_created"] == 1
    assert first["source_configs_created"] == 2
    assert second["bars_unchanged"] == 1
    assert second["source_configs_updated"] == 1

    bar = db_session.query(Bar).one()
    configs = {config.source_type: config for config in db_session.query(SourceConfig).filter_by(bar_id=bar.id)}
    assert set(configs) == {"pos", "ticketing"}
    assert configs["ticketing"].config_json == {"event_ids": ["13"]}


def test_unknown_source_type(tmp_path, patch_get_db):
    path = tmp_path / "bars.yaml"
    path.write_text("bars:\n  - slug: x\n    name: X\n    sources:\n      - type: ifood\n")

    with patch("barsync.seed.get_db", patch_get_db), pytest.raises(ValueError):
        seed_bars(str(path))


def test_missing_file():
    with pytest.raises(FileNotFoundError):
        seed_bars("/nonexistent/bars.yaml")
