from __future__ import annotations

from collections.abc import Iterator, Mapping
from dataclasses import dataclass, replace
from enum import Enum
from pathlib import Path
from typing import Any
from urllib.parse import quote

from rydora_gateway.errors import ConfigurationError
from rydora_gateway.upstream import (
    DEFAULT_TIMEOUT_SECONDS,
    HEAVY_TIMEOUT_SECONDS,
    LOOKUP_TIMEOUT_SECONDS,
    UPDATE_TIMEOUT_SECONDS,
)
from rydora_gateway.utils.yaml_utils import load_yaml_mapping


class ListShape(str, Enum):
    """How a list operation answers when the provider has no rows (404)."""

    ENVELOPE = "envelope"
    ARRAY = "array"
    RAW = "raw"


@dataclass(frozen=True, slots=True)
class UpstreamOperation:
    name: str
    description: str
    paths: tuple[str, ...]
    method: str = "GET"
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    list_shape: ListShape = ListShape.RAW

    @property
    def uses_fallback(self) -> bool:
        return self.method == "GET" and len(self.paths) > 1

    def render_paths(self, **values: Any) -> list[str]:
        encoded = {key: quote(str(value), safe="") for key, value in values.items()}
        return [template.format(**encoded) for template in self.paths]

    def render_path(self, **values: Any) -> str:
        return self.render_paths(**values)[0]


def _op(name: str, description: str, *paths: str, **kwargs: Any) -> UpstreamOperation:
    return UpstreamOperation(name=name, description=description, paths=paths, **kwargs)


DEFAULT_OPERATIONS: tuple[UpstreamOperation, ...] = (
    # Reads. Multi-path entries are fallback chains for deployments that
    # expose the same resource under different names.
    _op(
        "ezpass_charges",
        "fetch EZ Pass data",
        "/TollPayment/get-ezpass-charges/{date_from}/{date_to}",
        list_shape=ListShape.ENVELOPE,
    ),
    _op(
        "parking_violations",
        "fetch parking violations",
        "/ExternalViolation/get-all",
        list_shape=ListShape.ENVELOPE,
    ),
    _op(
        "tolls",
        "fetch tolls",
        "/api/ExternalToll/get-all",
        "/tolls/get-all",
        "/api/tolls",
        "/toll/get-all",
        list_shape=ListShape.ENVELOPE,
    ),
    _op(
        "pending_payments",
        "fetch pending payments",
        "/TollPayment/get-pending-payments",
        "/api/pending-payments",
        "/pending-payments",
        list_shape=ListShape.ARRAY,
    ),
    _op(
        "invoice_details",
        "fetch invoice details",
        "/tolls-invoice-details/get-all",
        "/api/tolls-invoice-details",
        "/toll-invoice-details/get-all",
        list_shape=ListShape.ENVELOPE,
    ),
    _op(
        "completed_payments",
        "fetch payments",
        "/TollPayment/get-complete-payments",
        list_shape=ListShape.ENVELOPE,
    ),
    _op(
        "payments_by_status",
        "fetch payments",
        "/TollPayment/get-{status}-payments",
        list_shape=ListShape.ENVELOPE,
    ),
    _op("violations", "fetch violations", "/ExternalViolation/get-all"),
    _op("violation_get", "fetch violation", "/ExternalViolation/get/{id}"),
    _op(
        "invoice_by_company",
        "fetch invoice by company",
        "/api/ExternalDailyInvoice/get-by-company/{company_id}",
    ),
    _op(
        "invoice_details_by_id",
        "fetch invoice details",
        "/api/ExternalDailyInvoice/get-details/{invoice_id}",
    ),
    _op(
        "external_daily_invoices",
        "fetch external daily invoice",
        "/api/ExternalTollDailyInvoice/get-all",
        timeout_seconds=UPDATE_TIMEOUT_SECONDS,
    ),
    _op(
        "external_daily_invoices_all",
        "fetch all external daily invoices",
        "/api/ExternalDailyInvoice/get-all",
    ),
    _op(
        "external_daily_invoice_details",
        "fetch external daily invoice details",
        "/api/ExternalDailyInvoice/get-details/{invoice_id}",
    ),
    _op(
        "external_daily_invoice_get",
        "fetch external daily invoice",
        "/api/ExternalTollDailyInvoice/get-by-id/{id}",
    ),
    _op(
        "companies_active",
        "fetch companies",
        "/Companies/active",
        timeout_seconds=LOOKUP_TIMEOUT_SECONDS,
    ),
    _op("company_get", "fetch company", "/Companies/{id}"),
    _op("car_get", "fetch car", "/Cars/{id}"),
    # Writes. Exactly one canonical path each.
    _op("signin", "connect to rydoraApi", "/api/signin", method="POST"),
    _op(
        "violation_payment_status",
        "update violation payment status",
        "/ExternalViolation/update-payment-status",
        method="PUT",
        timeout_seconds=UPDATE_TIMEOUT_SECONDS,
    ),
    _op("violation_create", "create violation", "/ExternalViolation/create", method="POST"),
    _op("violation_update", "update violation", "/ExternalViolation/update/{id}", method="PUT"),
    _op("violation_delete", "delete violation", "/ExternalViolation/delete/{id}", method="DELETE"),
    _op(
        "invoice_submit",
        "submit invoice",
        "/api/ExternalDailyInvoice/submit/{invoice_id}",
        method="POST",
    ),
    _op(
        "invoice_fail",
        "mark invoice as failed",
        "/api/ExternalDailyInvoice/fail/{invoice_id}",
        method="POST",
    ),
    _op(
        "external_daily_invoice_create",
        "create external daily invoice",
        "/api/ExternalTollDailyInvoice/create",
        method="POST",
        timeout_seconds=HEAVY_TIMEOUT_SECONDS,
    ),
    _op(
        "external_daily_invoice_payment_status",
        "update payment status",
        "/api/ExternalTollDailyInvoice/update-payment-status",
        method="PUT",
        timeout_seconds=UPDATE_TIMEOUT_SECONDS,
    ),
    _op(
        "external_daily_invoice_update",
        "update external daily invoice",
        "/api/ExternalTollDailyInvoice/update/{id}",
        method="PUT",
    ),
    _op(
        "external_daily_invoice_status",
        "update invoice status",
        "/api/ExternalDailyInvoice/update-status",
        method="PUT",
    ),
    _op(
        "external_daily_invoice_send_email",
        "send invoice email",
        "/api/ExternalDailyInvoice/send-email/{invoice_id}",
        method="POST",
        timeout_seconds=HEAVY_TIMEOUT_SECONDS,
    ),
    _op(
        "external_daily_invoice_delete",
        "delete external daily invoice",
        "/api/ExternalTollDailyInvoice/delete/{id}",
        method="DELETE",
    ),
    _op(
        "car_create",
        "create car",
        "/Cars",
        method="POST",
        timeout_seconds=HEAVY_TIMEOUT_SECONDS,
    ),
    _op(
        "car_list",
        "fetch cars list",
        "/Cars/CarList",
        method="POST",
        timeout_seconds=LOOKUP_TIMEOUT_SECONDS,
    ),
    _op("car_update", "update car", "/Cars/{id}", method="PUT"),
    _op("car_delete", "delete car", "/Cars/{id}", method="DELETE"),
    _op("company_create", "create company", "/Companies", method="POST"),
    _op("company_update", "update company", "/Companies/{id}", method="PUT"),
    _op("company_delete", "delete company", "/Companies/{id}", method="DELETE"),
    _op(
        "ezpass_export",
        "export EZ Pass data",
        "/api/ezpass/export/{format}",
        method="POST",
        timeout_seconds=HEAVY_TIMEOUT_SECONDS,
    ),
    _op(
        "parking_violations_export",
        "export parking violations",
        "/api/parking-violations/export/{format}",
        method="POST",
        timeout_seconds=HEAVY_TIMEOUT_SECONDS,
    ),
)


class OperationCatalog(Mapping[str, UpstreamOperation]):
    def __init__(self, operations: list[UpstreamOperation] | tuple[UpstreamOperation, ...]) -> None:
        self._operations = {operation.name: operation for operation in operations}

    def __getitem__(self, name: str) -> UpstreamOperation:
        return self._operations[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._operations)

    def __len__(self) -> int:
        return len(self._operations)

    def with_overrides(self, overrides: dict[str, Any]) -> OperationCatalog:
        updated = dict(self._operations)
        for name, raw in overrides.items():
            current = updated.get(name)
            if current is None:
                raise ConfigurationError(f"Unknown upstream operation '{name}' in path overrides.")
            updated[name] = _apply_override(current, raw)
        return OperationCatalog(list(updated.values()))


def _apply_override(operation: UpstreamOperation, raw: Any) -> UpstreamOperation:
    if isinstance(raw, list):
        raw = {"paths": raw}
    if not isinstance(raw, dict):
        raise ConfigurationError(f"Override for '{operation.name}' must be a list or mapping.")

    changes: dict[str, Any] = {}
    if "paths" in raw:
        paths = raw["paths"]
        if isinstance(paths, str):
            paths = paths.split(",")
        if not isinstance(paths, list):
            raise ConfigurationError(f"Paths for '{operation.name}' must be a list.")
        cleaned = tuple(str(item).strip() for item in paths if str(item).strip())
        if not cleaned:
            raise ConfigurationError(f"Paths for '{operation.name}' must not be empty.")
        if operation.method != "GET" and len(cleaned) > 1:
            raise ConfigurationError(
                f"'{operation.name}' is a {operation.method} operation and takes exactly one path."
            )
        changes["paths"] = cleaned
    if "timeout_seconds" in raw:
        try:
            timeout = float(raw["timeout_seconds"])
        except (TypeError, ValueError) as exc:
            raise ConfigurationError(
                f"timeout_seconds for '{operation.name}' must be a number."
            ) from exc
        if timeout <= 0:
            raise ConfigurationError(f"timeout_seconds for '{operation.name}' must be positive.")
        changes["timeout_seconds"] = timeout
    return replace(operation, **changes)


def load_operation_catalog(path: str | Path | None = None) -> OperationCatalog:
    catalog = OperationCatalog(DEFAULT_OPERATIONS)
    if not path:
        return catalog
    document = load_yaml_mapping(path, label="upstream paths config")
    overrides = document.get("operations", {})
    if not isinstance(overrides, dict):
        raise ConfigurationError("'operations' in upstream paths config must be a mapping.")
    return catalog.with_overrides(overrides)
