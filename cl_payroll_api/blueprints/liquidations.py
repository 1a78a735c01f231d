from __future__ import annotations
from typing import Any, Dict, Optional

from flask import Blueprint, request

from cl_payroll_api.common.errors import APIError, ValidationError
from cl_payroll_api.common.http import ok
from cl_payroll_api.common.paging import page_limit, paginate
from cl_payroll_api.extensions import db
from cl_payroll_api.models.employee import Employee
from cl_payroll_api.services import liquidation_service as svc
from cl_payroll_api.services.payroll_common import ensure_not_future, parse_period, period_bounds

bp = Blueprint("liquidations", __name__, url_prefix="/api/v1/liquidations")

# period inputs accepted in request bodies
INPUT_KEYS = (
    "overtime_hours", "bonuses", "commissions", "gratification",
    "food_allowance", "transport_allowance",
    "loan_deductions", "advance_payments", "voluntary_savings", "other_deductions",
    "partial",
)

# ---------- helpers ----------
def _int(x, field: str) -> Optional[int]:
    if x is None or x == "":
        return None
    try:
        return int(x)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be an integer", fields=[field])

def _inputs(j: Dict[str, Any]) -> Dict[str, Any]:
    src = j.get("inputs") if isinstance(j.get("inputs"), dict) else j
    return {k: src[k] for k in INPUT_KEYS if k in src}

def _target(j: Dict[str, Any]):
    company_id = _int(j.get("company_id"), "company_id")
    employee_id = _int(j.get("employee_id"), "employee_id")
    missing = [n for n, v in (("company_id", company_id), ("employee_id", employee_id), ("period", j.get("period"))) if v in (None, "")]
    if missing:
        raise ValidationError("Missing mandatory identifiers", fields=missing)
    year, month = parse_period(j.get("period"))
    return company_id, employee_id, year, month


# ---------- routes ----------
@bp.get("")
def list_liquidations():
    company_id = _int(request.args.get("company_id"), "company_id")
    if company_id is None:
        raise ValidationError("company_id is required", fields=["company_id"])
    year = month = None
    if request.args.get("period"):
        year, month = parse_period(request.args.get("period"))
    page, size = page_limit()
    items, total = paginate(svc.list_liquidations(company_id, year, month, request.args.get("status")), page, size)
    rows, notices = [], []
    for liq in items:
        row, n = svc.serialize(liq)
        row["notices"] = n
        rows.append(row)
        notices.extend(n)
    return ok(rows, page=page, size=size, total=total, notice_count=len(notices))


@bp.post("/calculate")
def preview():
    j = request.get_json(silent=True) or {}
    company_id, employee_id, year, month = _target(j)
    result, _, _ = svc.calculate(company_id, employee_id, year, month, _inputs(j))
    data = result.as_dict()
    return ok(data, notices=data["notices"], warnings=data["warnings"])


@bp.post("")
def generate():
    j = request.get_json(silent=True) or {}
    company_id, employee_id, year, month = _target(j)
    liq, result, created = svc.generate_liquidation(company_id, employee_id, year, month, _inputs(j))
    row, notices = svc.serialize(liq)
    return ok(row, 201 if created else 200, notices=notices, warnings=result.warnings)


@bp.post("/generate-period")
def generate_period():
    """Generate (or refresh) liquidations for every active employee of a company."""
    j = request.get_json(silent=True) or {}
    company_id = _int(j.get("company_id"), "company_id")
    if company_id is None:
        raise ValidationError("company_id is required", fields=["company_id"])
    year, month = parse_period(j.get("period"))
    ensure_not_future(year, month)
    per_employee = j.get("inputs_by_employee") or {}
    month_end = period_bounds(year, month)[1]

    done, skipped = [], []
    employees = Employee.query.filter_by(company_id=company_id, status="active").order_by(Employee.id.asc()).all()
    for emp in employees:
        if emp.active_contract(month_end) is None:
            skipped.append({"employee_id": emp.id, "reason": "no active contract"})
            continue
        try:
            liq, _, created = svc.generate_liquidation(
                company_id, emp.id, year, month, per_employee.get(str(emp.id)) or {}
            )
        except APIError as e:
            db.session.rollback()
            skipped.append({"employee_id": emp.id, "reason": e.message, "code": e.code})
            continue
        done.append({"employee_id": emp.id, "liquidation_id": liq.id, "created": created})
    return ok({"generated": done, "skipped": skipped}, generated=len(done), skipped=len(skipped))


@bp.get("/<int:liq_id>")
def get_one(liq_id: int):
    row, notices = svc.serialize(svc.get_liquidation(liq_id))
    return ok(row, notices=notices)


@bp.put("/<int:liq_id>")
def edit(liq_id: int):
    j = request.get_json(silent=True) or {}
    liq, result = svc.regenerate_liquidation(svc.get_liquidation(liq_id), _inputs(j))
    row, notices = svc.serialize(liq)
    return ok(row, notices=notices, warnings=result.warnings)


@bp.post("/<int:liq_id>/status")
def set_status(liq_id: int):
    j = request.get_json(silent=True) or {}
    if not j.get("status"):
        raise ValidationError("status is required", fields=["status"])
    liq = svc.change_status(svc.get_liquidation(liq_id), j["status"])
    return ok({"id": liq.id, "status": liq.status})
