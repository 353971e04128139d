from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Annotated, Any

from fastapi import APIRouter, HTTPException, Query, Request
from fastapi.responses import JSONResponse, Response

from rydora_gateway.errors import UpstreamError, UpstreamStatusError
from rydora_gateway.normalizer import (
    RecordKind,
    invoice_action_error,
    is_not_found_for_date,
    parse_page,
)
from rydora_gateway.nyc_open_data import DEFAULT_LIMIT, fetch_nyc_violations, parse_license_plates
from rydora_gateway.routes.dependencies import (
    call_context,
    json_object,
    json_payload,
    provider_gateway,
)
from rydora_gateway.upstream import UpstreamResponse

logger = logging.getLogger("uvicorn.error")

router = APIRouter(prefix="/api/rydora", tags=["rydora"])

DateFromQuery = Annotated[str | None, Query(alias="dateFrom")]
DateToQuery = Annotated[str | None, Query(alias="dateTo")]
OwnerIdQuery = Annotated[str | None, Query(alias="ownerId")]
CompanyIdQuery = Annotated[str | None, Query(alias="companyId")]

EXPORT_MEDIA_TYPES: dict[str, tuple[str, str]] = {
    "excel": ("application/vnd.openxmlformats-officedocument.spreadsheetml.sheet", "xlsx"),
    "pdf": ("application/pdf", "pdf"),
}


def _passthrough(response: UpstreamResponse) -> JSONResponse:
    return JSONResponse(content=response.body)


def _blank_to_none(value: Any) -> Any:
    if isinstance(value, str) and not value.strip():
        return None
    return value


async def _call(request: Request, name: str, **kwargs: Any) -> JSONResponse:
    response = await provider_gateway(request).call(name, call_context(request), **kwargs)
    return _passthrough(response)


# -- sign-in and violations ---------------------------------------------------


@router.post("/signin")
async def signin(request: Request) -> Response:
    payload = await json_object(request)
    email = payload.get("email")
    password = payload.get("password")
    if not email or not password:
        return JSONResponse(
            status_code=400,
            content={"reason": 1, "message": "Email and password are required"},
        )
    return await _call(request, "signin", json={"email": email, "password": password})


@router.get("/violations")
async def violations(
    request: Request,
    license_plate: Annotated[str | None, Query(alias="licensePlate")] = None,
    state: str | None = None,
) -> Response:
    return await _call(
        request,
        "violations",
        params={"licensePlate": license_plate, "state": state},
    )


@router.post("/violations")
async def create_violation(request: Request) -> Response:
    payload = await json_object(request)
    return await _call(request, "violation_create", json=violation_create_payload(payload))


@router.get("/violation/get/{violation_id}")
async def get_violation(violation_id: str, request: Request) -> Response:
    return await _call(request, "violation_get", id=violation_id)


@router.put("/ExternalViolation/update-payment-status")
async def update_violation_payment_status(
    request: Request,
    company_id: CompanyIdQuery = None,
) -> Response:
    payload = await json_object(request)
    effective_company_id = _blank_to_none(company_id) or payload.get("companyId") or ""
    return await _call(
        request,
        "violation_payment_status",
        params={"companyId": effective_company_id},
        json={
            "ids": payload.get("ids"),
            "paymentStatus": payload.get("paymentStatus"),
            "companyId": effective_company_id,
        },
    )


@router.put("/violation/update/{violation_id}")
async def update_violation(violation_id: str, request: Request) -> Response:
    return await _call(
        request,
        "violation_update",
        json=await json_payload(request),
        id=violation_id,
    )


@router.delete("/violation/delete/{violation_id}")
async def delete_violation(violation_id: str, request: Request) -> Response:
    return await _call(request, "violation_delete", id=violation_id)


def _iso_timestamp(value: Any) -> str | None:
    if not value:
        return None
    text = str(value).strip()
    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        return text
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace(
        "+00:00", "Z"
    )


def _to_float(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def _to_int(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


def violation_create_payload(data: dict[str, Any]) -> dict[str, Any]:
    """Coerce a form submission into the provider's violation shape.

    New violations always start unpaid (paymentStatus 1).
    """
    return {
        "citationNumber": data.get("citationNumber") or None,
        "noticeNumber": data.get("noticeNumber"),
        "agency": data.get("agency"),
        "address": data.get("address") or None,
        "tag": data.get("tag"),
        "state": data.get("state"),
        "issueDate": _iso_timestamp(data.get("issueDate")),
        "startDate": _iso_timestamp(data.get("startDate")),
        "endDate": _iso_timestamp(data.get("endDate")),
        "amount": _to_float(data.get("amount")),
        "currency": data.get("currency") or "USD",
        "paymentStatus": 1,
        "fineType": _to_int(data.get("fineType")),
        "note": data.get("note") or None,
    }


# -- normalized lists ---------------------------------------------------------


@router.get("/ezpass")
async def ezpass(
    request: Request,
    date_from: DateFromQuery = None,
    date_to: DateToQuery = None,
    page: str | None = None,
) -> Any:
    date_from = (date_from or "").strip()
    date_to = (date_to or "").strip()
    if not date_from or not date_to:
        raise HTTPException(status_code=400, detail="dateFrom and dateTo are required")
    return await provider_gateway(request).fetch_list(
        "ezpass_charges",
        call_context(request),
        kind=RecordKind.EZPASS_CHARGE,
        page=parse_page(page),
        date_from=date_from,
        date_to=date_to,
    )


@router.get("/parking-violations")
async def parking_violations(
    request: Request,
    date_from: DateFromQuery = None,
    date_to: DateToQuery = None,
    page: str | None = None,
    owner_id: OwnerIdQuery = None,
) -> Any:
    current_page = parse_page(page)
    return await provider_gateway(request).fetch_list(
        "parking_violations",
        call_context(request),
        kind=RecordKind.PARKING_VIOLATION,
        page=current_page,
        params={
            "dateFrom": date_from,
            "dateTo": date_to,
            "page": current_page,
            "CompanyId": owner_id,
        },
    )


@router.get("/payments/{status}")
async def payments(status: str, request: Request, page: str | None = None) -> Any:
    name = "completed_payments" if status == "completed" else "payments_by_status"
    return await provider_gateway(request).fetch_list(
        name,
        call_context(request),
        kind=RecordKind.PAYMENT,
        page=parse_page(page),
        status=status,
    )


@router.get("/pending-payments")
async def pending_payments(request: Request, owner_id: OwnerIdQuery = None) -> Any:
    return await provider_gateway(request).fetch_list(
        "pending_payments",
        call_context(request),
        params={"ownerId": owner_id},
    )


@router.get("/tolls")
async def tolls(
    request: Request,
    date_from: DateFromQuery = None,
    date_to: DateToQuery = None,
    page: str | None = None,
    owner_id: OwnerIdQuery = None,
) -> Any:
    return await provider_gateway(request).fetch_list(
        "tolls",
        call_context(request),
        page=parse_page(page),
        params={"dateFrom": date_from, "dateTo": date_to, "CompanyId": owner_id},
    )


@router.get("/nyc-violations")
async def nyc_violations(
    request: Request,
    license_plates: Annotated[str | None, Query(alias="licensePlates")] = None,
    date_from: DateFromQuery = None,
    date_to: DateToQuery = None,
    limit: int = DEFAULT_LIMIT,
    offset: int = 0,
) -> dict[str, Any]:
    settings = request.app.state.settings
    return await fetch_nyc_violations(
        provider_gateway(request).client_factory,
        settings.nyc_open_data_url,
        parse_license_plates(license_plates),
        date_from=date_from,
        date_to=date_to,
        limit=limit,
        offset=offset,
    )


# -- exports ------------------------------------------------------------------


async def _export(
    request: Request,
    name: str,
    export_format: str,
    filename_stem: str,
    body: dict[str, Any],
) -> Response:
    media = EXPORT_MEDIA_TYPES.get(export_format)
    if media is None:
        raise HTTPException(status_code=404, detail=f"Unsupported export format '{export_format}'")
    media_type, extension = media
    response = await provider_gateway(request).call(
        name,
        call_context(request),
        json=body,
        format=export_format,
    )
    return Response(
        content=response.content,
        media_type=media_type,
        headers={
            "Content-Disposition": f'attachment; filename="{filename_stem}.{extension}"'
        },
    )


@router.post("/ezpass/export/{export_format}")
async def export_ezpass(export_format: str, request: Request) -> Response:
    payload = await json_object(request)
    return await _export(
        request,
        "ezpass_export",
        export_format,
        "ezpass-export",
        {"dateFrom": payload.get("dateFrom"), "dateTo": payload.get("dateTo")},
    )


@router.post("/parking-violations/export/{export_format}")
async def export_parking_violations(export_format: str, request: Request) -> Response:
    payload = await json_object(request)
    body: dict[str, Any] = {"dateFrom": payload.get("dateFrom"), "dateTo": payload.get("dateTo")}
    owner_id = _blank_to_none(payload.get("ownerId"))
    if owner_id:
        body["CompanyId"] = owner_id
    return await _export(
        request,
        "parking_violations_export",
        export_format,
        "parking-violations-export",
        body,
    )


# -- invoices -----------------------------------------------------------------


@router.get("/invoice-details")
async def invoice_details(
    request: Request,
    date_from: DateFromQuery = None,
    company_id: CompanyIdQuery = None,
) -> Any:
    return await provider_gateway(request).fetch_list(
        "invoice_details",
        call_context(request),
        params={"dateFrom": date_from, "companyId": company_id},
    )


@router.get("/invoice-by-company/{company_id}")
async def invoice_by_company(
    company_id: str,
    request: Request,
    date: str | None = None,
) -> Response:
    try:
        return await _call(
            request,
            "invoice_by_company",
            params={"date": date},
            company_id=company_id,
        )
    except UpstreamStatusError as exc:
        if is_not_found_for_date(exc.status_code, exc.body):
            logger.info("invoice_not_found_for_date company_id=%s date=%s", company_id, date)
            return JSONResponse(content=None)
        raise


@router.get("/invoice-details-by-id/{invoice_id}")
async def invoice_details_by_id(invoice_id: str, request: Request) -> Response:
    return await _call(request, "invoice_details_by_id", invoice_id=invoice_id)


async def _invoice_action(request: Request, name: str, invoice_id: str) -> Response:
    try:
        return await _call(request, name, json={}, invoice_id=invoice_id)
    except UpstreamStatusError as exc:
        if is_not_found_for_date(exc.status_code, exc.body):
            logger.info("invoice_not_found_for_date operation=%s invoice_id=%s", name, invoice_id)
            return JSONResponse(content=None)
        return JSONResponse(
            status_code=exc.status_code,
            content=invoice_action_error(exc.status_code, exc.body),
        )


@router.post("/invoice-submit/{invoice_id}")
async def invoice_submit(invoice_id: str, request: Request) -> Response:
    return await _invoice_action(request, "invoice_submit", invoice_id)


@router.post("/invoice-fail/{invoice_id}")
async def invoice_fail(invoice_id: str, request: Request) -> Response:
    return await _invoice_action(request, "invoice_fail", invoice_id)


# -- external daily invoices --------------------------------------------------


@router.get("/external-daily-invoice")
async def external_daily_invoices(
    request: Request,
    date_from: DateFromQuery = None,
    date_to: DateToQuery = None,
    owner_id: OwnerIdQuery = None,
) -> Any:
    response = await provider_gateway(request).call(
        "external_daily_invoices",
        call_context(request),
        params={"dateFrom": date_from, "dateTo": date_to, "CompanyId": owner_id},
    )
    body = response.body
    if isinstance(body, dict):
        return {**body, "result": body.get("result") or []}
    return body


@router.post("/external-daily-invoice/create")
async def create_external_daily_invoice(request: Request) -> Response:
    return await _call(request, "external_daily_invoice_create", json=await json_payload(request))


@router.get("/external-daily-invoice/get-all")
async def all_external_daily_invoices(
    request: Request,
    date_from: DateFromQuery = None,
    date_to: DateToQuery = None,
    company_id: CompanyIdQuery = None,
) -> Response:
    return await _call(
        request,
        "external_daily_invoices_all",
        params={"dateFrom": date_from, "dateTo": date_to, "companyId": company_id},
    )


@router.get("/external-daily-invoice/get-details/{invoice_id}")
async def external_daily_invoice_details(invoice_id: str, request: Request) -> Response:
    return await _call(request, "external_daily_invoice_details", invoice_id=invoice_id)


@router.get("/external-daily-invoice/get/{invoice_id}")
async def get_external_daily_invoice(invoice_id: str, request: Request) -> Response:
    return await _call(request, "external_daily_invoice_get", id=invoice_id)


@router.put("/external-daily-invoice/update-payment-status")
async def update_external_daily_invoice_payment_status(
    request: Request,
    company_id: CompanyIdQuery = None,
) -> Response:
    payload = await json_object(request)
    return await _call(
        request,
        "external_daily_invoice_payment_status",
        params={"companyId": company_id},
        json={
            "ids": payload.get("ids"),
            "paymentStatus": payload.get("paymentStatus"),
            "companyId": payload.get("companyId"),
        },
    )


@router.put("/external-daily-invoice/update-status")
async def update_external_daily_invoice_status(request: Request) -> Response:
    payload = await json_object(request)
    return await _call(
        request,
        "external_daily_invoice_status",
        json={"invoiceId": payload.get("invoiceId"), "status": payload.get("status")},
    )


@router.put("/external-daily-invoice/update/{invoice_id}")
async def update_external_daily_invoice(invoice_id: str, request: Request) -> Response:
    return await _call(
        request,
        "external_daily_invoice_update",
        json=await json_payload(request),
        id=invoice_id,
    )


@router.post("/external-daily-invoice/send-email/{invoice_id}")
async def send_external_daily_invoice_email(invoice_id: str, request: Request) -> Response:
    payload = await json_object(request)
    pdf_base64 = payload.get("pdfBase64")
    if not pdf_base64:
        raise HTTPException(status_code=400, detail="PDF base64 is required")
    return await _call(
        request,
        "external_daily_invoice_send_email",
        json={"pdfBase64": pdf_base64},
        invoice_id=invoice_id,
    )


@router.delete("/external-daily-invoice/delete/{invoice_id}")
async def delete_external_daily_invoice(invoice_id: str, request: Request) -> Response:
    return await _call(request, "external_daily_invoice_delete", id=invoice_id)


# -- cars and companies -------------------------------------------------------


@router.post("/cars")
async def create_car(request: Request) -> Response:
    return await _call(request, "car_create", json=await json_payload(request))


@router.post("/cars/carlist")
async def car_list(request: Request) -> Response:
    payload = await json_object(request)
    return await _call(request, "car_list", json={"role": payload.get("role") or 0})


@router.get("/cars/{car_id}")
async def get_car(car_id: str, request: Request) -> Response:
    return await _call(request, "car_get", id=car_id)


@router.put("/cars/{car_id}")
async def update_car(car_id: str, request: Request) -> Response:
    return await _call(request, "car_update", json=await json_payload(request), id=car_id)


@router.delete("/cars/{car_id}")
async def delete_car(car_id: str, request: Request) -> Response:
    return await _call(request, "car_delete", id=car_id)


@router.get("/Companies/active")
async def active_companies(request: Request) -> Response:
    try:
        return await _call(request, "companies_active")
    except UpstreamError as exc:
        # The company picker treats every failure the same way.
        logger.warning("companies_fetch_failed error_type=%s", exc.__class__.__name__)
        return JSONResponse(
            status_code=500,
            content={"reason": -1, "message": "Failed to fetch companies"},
        )


@router.post("/Companies")
async def create_company(request: Request) -> Response:
    return await _call(request, "company_create", json=await json_payload(request))


@router.get("/Companies/{company_id}")
async def get_company(company_id: str, request: Request) -> Response:
    return await _call(request, "company_get", id=company_id)


@router.put("/Companies/{company_id}")
async def update_company(company_id: str, request: Request) -> Response:
    return await _call(
        request,
        "company_update",
        json=await json_payload(request),
        id=company_id,
    )


@router.delete("/Companies/{company_id}")
async def delete_company(company_id: str, request: Request) -> Response:
    return await _call(request, "company_delete", id=company_id)
