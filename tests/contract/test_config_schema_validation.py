from __future__ import annotations

import json

import jsonschema
import yaml

from roster_import.config.loader import SCHEMA_PATH

"""config_schema.json 自体の妥当性とサンプル設定の契約テスト"""

SAMPLE = """
dispatch:
  chunk_size: 20
  size_threshold_bytes: 4194304
  direct_record_limit: 20
  pacing: {mode: fixed, delay_seconds: 0.1}
  chunk_timeout_seconds: 30
target:
  mode: postgres
  table: workout_clients
  url: https://example.invalid/api/clients/import-chunked
  api_key_env: ROSTER_API_KEY
database: {host: localhost, port: 5432, user: coach, password: secret, database: coach, dsn: null}
max_file_bytes: 52428800
log_dir: ./logs
"""


def _schema() -> dict:
    return json.loads(SCHEMA_PATH.read_text(encoding="utf-8"))


def test_schema_is_valid_draft7():
    jsonschema.Draft7Validator.check_schema(_schema())


def test_documented_sample_validates():
    jsonschema.validate(yaml.safe_load(SAMPLE), _schema())


def test_unknown_keys_rejected_everywhere():
    validator = jsonschema.Draft7Validator(_schema())
    for bad in (
        {"target": {"mode": "postgres"}, "extra": True},
        {"target": {"mode": "postgres", "extra": True}},
        {"target": {"mode": "postgres"}, "dispatch": {"extra": True}},
        {"target": {"mode": "postgres"}, "database": {"extra": True}},
    ):
        assert list(validator.iter_errors(bad)), bad
