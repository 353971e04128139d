"""Reshapes provider payloads into the contract the frontend consumes.

Provider bodies arrive in three shapes: a ``{"result": [...]}`` record list,
a bare JSON array, or something else entirely (strings, error objects). The
shape is decoded first, then each record is projected through a per-kind
field table whose defaults are applied whenever a field is missing or null.
"""

from __future__ import annotations

import json
import math
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any

from rydora_gateway.operations import ListShape

DEFAULT_PAGE_SIZE = 10
NOT_FOUND_FOR_DATE_PHRASE = "not found for date"
INVOICE_NOT_FOUND_PHRASE = "invoice not found"
INVOICE_NOT_FOUND_MESSAGE = "Invoice not found."
GENERIC_BAD_REQUEST_MESSAGE = "Bad Request"


class RecordKind(str, Enum):
    EZPASS_CHARGE = "ezpass_charge"
    PARKING_VIOLATION = "parking_violation"
    PAYMENT = "payment"


# -- decoded upstream shapes ------------------------------------------------


@dataclass(frozen=True, slots=True)
class RecordList:
    records: list[Any]


@dataclass(frozen=True, slots=True)
class BareArray:
    items: list[Any]


@dataclass(frozen=True, slots=True)
class Unrecognized:
    raw: Any


UpstreamShape = RecordList | BareArray | Unrecognized


def decode_shape(body: Any) -> UpstreamShape:
    if isinstance(body, list):
        return BareArray(items=body)
    if isinstance(body, dict) and isinstance(body.get("result"), list):
        return RecordList(records=body["result"])
    return Unrecognized(raw=body)


# -- field projection ---------------------------------------------------------


@dataclass(frozen=True, slots=True)
class FieldSpec:
    name: str
    default: Any = None
    aliases: tuple[str, ...] = ()
    derive: Callable[[Mapping[str, Any], int], Any] | None = None

    def extract(self, record: Mapping[str, Any], index: int) -> Any:
        for key in (self.name, *self.aliases):
            value = record.get(key)
            if value is not None:
                return value
        if self.derive is not None:
            derived = self.derive(record, index)
            if derived is not None:
                return derived
        return self.default


def _row_number(_: Mapping[str, Any], index: int) -> int:
    return index + 1


def _driver_full_name(record: Mapping[str, Any], _: int) -> str | None:
    first = record.get("driverFirstName")
    last = record.get("driverLastName")
    if first and last:
        return f"{first} {last}"
    return None


def _nullable(*names: str) -> tuple[FieldSpec, ...]:
    return tuple(FieldSpec(name) for name in names)


EZPASS_CHARGE_FIELDS: tuple[FieldSpec, ...] = (
    FieldSpec("id", derive=_row_number),
    *_nullable(
        "externalFleetCode",
        "fleetName",
        "vehicleId",
        "vin",
        "plateNumber",
        "driverFirstName",
        "driverLastName",
        "address1",
        "address2",
        "city",
        "state",
        "zip",
        "driverEmailAddress",
    ),
    FieldSpec("tollId", 0),
    FieldSpec("tollDate", ""),
    *_nullable(
        "tollTime",
        "tollExitDate",
        "tollAuthority",
        "tollAuthorityDescription",
        "transactionType",
        "entry",
        "exit",
    ),
    FieldSpec("amount", 0),
    FieldSpec("currency"),
    FieldSpec("dateInvoiceDeployed", ""),
    FieldSpec("infoHeader"),
    FieldSpec("dailyPaymentId"),
    FieldSpec("adjustedAmount", 0),
    FieldSpec("originalPayerId"),
    FieldSpec("transponderNumber"),
)

PARKING_VIOLATION_FIELDS: tuple[FieldSpec, ...] = (
    FieldSpec("id", derive=_row_number),
    FieldSpec("citationNumber"),
    FieldSpec("noticeNumber", ""),
    FieldSpec("agency", ""),
    FieldSpec("address"),
    FieldSpec("tag", ""),
    FieldSpec("state", ""),
    FieldSpec("issueDate"),
    FieldSpec("startDate"),
    FieldSpec("endDate"),
    FieldSpec("amount", 0),
    FieldSpec("currency", "USD"),
    FieldSpec("paymentStatus", 1),
    FieldSpec("fineType", 0),
    FieldSpec("note"),
    FieldSpec("link", aliases=("Link",)),
    FieldSpec("driver", aliases=("driverName",), derive=_driver_full_name),
)

PAYMENT_FIELDS: tuple[FieldSpec, ...] = (
    FieldSpec("id", derive=_row_number),
    FieldSpec("carPlateNumber", ""),
    FieldSpec("numberOfTolls", 0),
    FieldSpec("total", 0),
    FieldSpec("stripeAdjusted", ""),
    FieldSpec("dailyPaymentId", ""),
    FieldSpec("phone", ""),
    FieldSpec("email", ""),
    FieldSpec("firstName", ""),
    FieldSpec("lastName", ""),
    FieldSpec("ownerFirstName", ""),
    FieldSpec("ownerLastName", ""),
    FieldSpec("killSwitchId", ""),
    FieldSpec("tag", False),
    FieldSpec("paymentFlowId", ""),
    FieldSpec("invoiceDateDeployed"),
    FieldSpec("vin", ""),
    FieldSpec("bookingId", ""),
)

RECORD_FIELDS: dict[RecordKind, tuple[FieldSpec, ...]] = {
    RecordKind.EZPASS_CHARGE: EZPASS_CHARGE_FIELDS,
    RecordKind.PARKING_VIOLATION: PARKING_VIOLATION_FIELDS,
    RecordKind.PAYMENT: PAYMENT_FIELDS,
}


def project_record(
    record: Any,
    fields: tuple[FieldSpec, ...],
    index: int,
) -> dict[str, Any]:
    source: Mapping[str, Any] = record if isinstance(record, Mapping) else {}
    projected = {spec.name: spec.extract(source, index) for spec in fields}
    if "paymentStatus" in projected and not _is_number(source.get("paymentStatus")):
        # Non-numeric statuses from older deployments are treated as unpaid.
        projected["paymentStatus"] = 1
    return projected


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


# -- envelopes ----------------------------------------------------------------


def total_pages(total_count: int, page_size: int = DEFAULT_PAGE_SIZE) -> int:
    if total_count <= 0:
        return 0
    return math.ceil(total_count / max(1, page_size))


def paginated(
    data: list[Any],
    page: int,
    page_size: int = DEFAULT_PAGE_SIZE,
) -> dict[str, Any]:
    return {
        "data": data,
        "totalCount": len(data),
        "page": page,
        "totalPages": total_pages(len(data), page_size),
    }


def empty_result(page: int) -> dict[str, Any]:
    return paginated([], page)


def empty_for_shape(shape: ListShape, page: int) -> Any:
    if shape is ListShape.ENVELOPE:
        return empty_result(page)
    if shape is ListShape.ARRAY:
        return []
    raise ValueError(f"List shape '{shape.value}' has no empty representation.")


def normalize(
    body: Any,
    kind: RecordKind,
    page: int = 1,
    page_size: int = DEFAULT_PAGE_SIZE,
) -> Any:
    shape = decode_shape(body)
    if isinstance(shape, BareArray):
        return shape.items
    if isinstance(shape, RecordList):
        fields = RECORD_FIELDS[kind]
        data = [
            project_record(record, fields, index)
            for index, record in enumerate(shape.records)
        ]
        return paginated(data, page, page_size)
    return empty_result(page)


def parse_page(raw: str | int | None) -> int:
    try:
        page = int(raw) if raw is not None else 1
    except (TypeError, ValueError):
        return 1
    return page if page > 0 else 1


# -- error bodies -------------------------------------------------------------


def _body_text(body: Any) -> str:
    if isinstance(body, str):
        return body
    try:
        return json.dumps(body, default=str)
    except (TypeError, ValueError):
        return str(body)


def is_not_found_for_date(status_code: int, body: Any) -> bool:
    return (
        status_code == 404
        and isinstance(body, str)
        and NOT_FOUND_FOR_DATE_PHRASE in body.lower()
    )


def invoice_action_error(status_code: int, body: Any) -> dict[str, Any]:
    if INVOICE_NOT_FOUND_PHRASE in _body_text(body).lower():
        message = INVOICE_NOT_FOUND_MESSAGE
    else:
        message = GENERIC_BAD_REQUEST_MESSAGE
    return {"reason": status_code, "message": message}
