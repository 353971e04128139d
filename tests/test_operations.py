from __future__ import annotations

from pathlib import Path

import pytest

from rydora_gateway.errors import ConfigurationError
from rydora_gateway.operations import (
    DEFAULT_OPERATIONS,
    ListShape,
    OperationCatalog,
    load_operation_catalog,
)
from tests.yaml_test_utils import write_paths_config


def test_default_catalog_has_fallback_chains_for_reads_only() -> None:
    catalog = load_operation_catalog(None)

    assert len(catalog) == len(DEFAULT_OPERATIONS)
    assert catalog["tolls"].paths[0] == "/api/ExternalToll/get-all"
    assert len(catalog["tolls"].paths) == 4
    assert catalog["tolls"].list_shape is ListShape.ENVELOPE
    assert catalog["invoice_details"].list_shape is ListShape.ENVELOPE
    assert catalog["pending_payments"].list_shape is ListShape.ARRAY
    assert catalog["ezpass_charges"].list_shape is ListShape.ENVELOPE
    for operation in catalog.values():
        if operation.method != "GET":
            assert len(operation.paths) == 1, operation.name


def test_render_paths_quotes_values() -> None:
    catalog = OperationCatalog(DEFAULT_OPERATIONS)
    rendered = catalog["ezpass_charges"].render_path(date_from="2024-01-01", date_to="a/b")
    assert rendered == "/TollPayment/get-ezpass-charges/2024-01-01/a%2Fb"


def test_yaml_override_replaces_paths_and_timeout(tmp_path: Path) -> None:
    config = write_paths_config(
        tmp_path / "paths.yaml",
        {
            "tolls": {"paths": ["/v2/tolls", "/tolls"], "timeout_seconds": 12},
            "pending_payments": {"paths": "/v2/pending, /pending"},
        },
    )

    catalog = load_operation_catalog(config)

    assert catalog["tolls"].paths == ("/v2/tolls", "/tolls")
    assert catalog["tolls"].timeout_seconds == 12.0
    assert catalog["pending_payments"].paths == ("/v2/pending", "/pending")
    assert catalog["ezpass_charges"] == OperationCatalog(DEFAULT_OPERATIONS)["ezpass_charges"]


def test_write_operations_reject_multiple_paths(tmp_path: Path) -> None:
    config = write_paths_config(
        tmp_path / "paths.yaml",
        {"invoice_submit": ["/a/{invoice_id}", "/b/{invoice_id}"]},
    )
    with pytest.raises(ConfigurationError):
        load_operation_catalog(config)


@pytest.mark.parametrize(
    "operations",
    [
        {"no_such_operation": ["/x"]},
        {"tolls": {"paths": []}},
        {"tolls": {"timeout_seconds": 0}},
        {"tolls": {"timeout_seconds": "soon"}},
        {"tolls": 5},
    ],
)
def test_invalid_overrides_are_rejected(tmp_path: Path, operations: dict) -> None:
    config = write_paths_config(tmp_path / "paths.yaml", operations)
    with pytest.raises(ConfigurationError):
        load_operation_catalog(config)


def test_missing_or_malformed_config_file(tmp_path: Path) -> None:
    with pytest.raises(ConfigurationError):
        load_operation_catalog(tmp_path / "missing.yaml")

    broken = tmp_path / "broken.yaml"
    broken.write_text("operations: [unclosed", encoding="utf-8")
    with pytest.raises(ConfigurationError):
        load_operation_catalog(broken)


def test_only_multi_path_reads_use_fallback() -> None:
    catalog = load_operation_catalog()

    assert catalog["tolls"].uses_fallback
    assert not catalog["ezpass_charges"].uses_fallback
    assert not catalog["car_create"].uses_fallback
