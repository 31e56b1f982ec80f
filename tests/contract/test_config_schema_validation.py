from __future__ import annotations

import json

import pytest
import yaml
from jsonschema import validate
from jsonschema.exceptions import ValidationError

from loan_import.config.loader import SCHEMA_PATH

"""Config schema contract test."""


@pytest.fixture(scope="module")
def schema() -> dict:
    return json.loads(SCHEMA_PATH.read_text(encoding="utf-8"))


def test_bundled_sample_config_is_valid(schema):
    from pathlib import Path

    sample = Path(__file__).resolve().parents[2] / "config" / "import.yml"
    validate(yaml.safe_load(sample.read_text(encoding="utf-8")), schema)


def test_minimal_config_is_valid(schema):
    validate({}, schema)
    validate({"agency_id": "a1"}, schema)


@pytest.mark.parametrize(
    "config",
    [
        {"unknown": 1},
        {"quarantine": {"threshold": 0.5}},
        {"field_mappings": {"dob": ["Date of Birth"]}},
        {"field_mappings": {"phone": []}},
        {"cleaning": {"group_size": 0}},
        {"orphan_matching": {"fuzzy_threshold": 2}},
        {"database": {"port": "5432"}},
        {"agency_id": ""},
    ],
)
def test_schema_rejects_invalid_config(schema, config):
    with pytest.raises(ValidationError):
        validate(config, schema)
