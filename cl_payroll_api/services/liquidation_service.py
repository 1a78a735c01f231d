from __future__ import annotations

import logging
from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from flask import current_app

from cl_payroll_api.common.errors import (
    MissingPrerequisiteError, NotFoundError, StateTransitionError, ValidationError,
)
from cl_payroll_api.common.notices import ReconciliationWarning
from cl_payroll_api.extensions import db
from cl_payroll_api.models.employee import Employee
from cl_payroll_api.models.master import Company
from cl_payroll_api.models.payroll.liquidation import Liquidation
from .liquidation_calc import (
    ContractTerms, LiquidationCalculator, LiquidationResult, PayrollSettings, PeriodInput,
    reconcile_totals,
)
from .payroll_common import ensure_not_future, format_period, period_bounds
from .regulatory_config import load_params
from .rut import is_valid_rut

log = logging.getLogger(__name__)

# status -> statuses reachable from it
ALLOWED_TRANSITIONS = {
    "draft": {"review", "cancelled"},
    "review": {"draft", "approved"},
    "approved": {"review", "paid"},
    "paid": set(),
    "cancelled": {"draft"},
}
EDITABLE_STATUSES = {"draft", "review"}


def reconciliation_tolerance() -> int:
    return int(current_app.config.get("PAYROLL_RECONCILIATION_TOLERANCE", 1))


def _require_ids(**ids):
    missing = [name for name, value in ids.items() if value in (None, "")]
    if missing:
        raise ValidationError("Missing mandatory identifiers", fields=missing)


def _load_context(company_id: int, employee_id: int, year: int, month: int):
    company = db.session.get(Company, company_id)
    if company is None:
        raise NotFoundError(f"Company {company_id} not found")
    emp = db.session.get(Employee, employee_id)
    if emp is None or emp.company_id != company_id:
        raise NotFoundError(f"Employee {employee_id} not found in company {company_id}")
    if not is_valid_rut(emp.rut):
        raise ValidationError(f"Employee RUT {emp.rut!r} is not valid", fields=["employee.rut"])
    _, month_end = period_bounds(year, month)
    contract = emp.active_contract(month_end)
    if contract is None:
        raise MissingPrerequisiteError(
            f"Employee {employee_id} has no active contract for {format_period(year, month)}",
            payload={"hint": "register an employment contract first"},
        )
    return company, emp, contract


def calculate(company_id, employee_id, year, month, inputs: Optional[Dict[str, Any]] = None,
              today: Optional[date] = None) -> Tuple[LiquidationResult, Employee, Any]:
    """Run the engine for one employee and period without touching storage."""
    _require_ids(company_id=company_id, employee_id=employee_id, year=year, month=month)
    ensure_not_future(year, month, today)
    company, emp, contract = _load_context(company_id, employee_id, year, month)
    params = load_params(company_id, period_bounds(year, month)[1])
    period = PeriodInput.from_dict(year, month, inputs)
    result = LiquidationCalculator(params).calculate(
        ContractTerms.from_model(contract),
        PayrollSettings.from_model(emp.payroll_config),
        period,
        work_accident_rate=company.work_accident_rate,
    )
    return result, emp, contract


def generate_liquidation(company_id, employee_id, year, month, inputs: Optional[Dict[str, Any]] = None,
                         today: Optional[date] = None) -> Tuple[Liquidation, LiquidationResult, bool]:
    """
    Upsert the liquidation for (employee, period). Identical inputs give an identical record.
    Returns (liquidation, result, created).
    """
    result, emp, contract = calculate(company_id, employee_id, year, month, inputs, today)
    liq = Liquidation.query.filter_by(employee_id=emp.id, period_year=year, period_month=month).first()
    created = liq is None
    if created:
        liq = Liquidation(company_id=company_id, employee_id=emp.id, status="draft")
        db.session.add(liq)
    elif liq.status not in EDITABLE_STATUSES:
        raise StateTransitionError(
            f"Liquidation {liq.id} is {liq.status}; only draft or review liquidations can be regenerated"
        )
    _apply(liq, result, contract, inputs)
    db.session.commit()
    log.info("liquidation %s %s for employee %s (%s)", liq.id, "created" if created else "regenerated",
             emp.id, format_period(year, month))
    return liq, result, created


def regenerate_liquidation(liq: Liquidation, inputs: Optional[Dict[str, Any]] = None,
                           today: Optional[date] = None) -> Tuple[Liquidation, LiquidationResult]:
    """Edit: recompute every derived value from new inputs."""
    if liq.status not in EDITABLE_STATUSES:
        raise StateTransitionError(f"Liquidation {liq.id} is {liq.status} and cannot be edited")
    merged = dict(liq.inputs_json or {})
    merged.update(inputs or {})
    liq, result, _ = generate_liquidation(liq.company_id, liq.employee_id, liq.period_year, liq.period_month,
                                          merged, today)
    return liq, result


def _apply(liq: Liquidation, result: LiquidationResult, contract, inputs):
    for name, value in result.column_values().items():
        setattr(liq, name, value)
    liq.contract_id = contract.id
    liq.inputs_json = PeriodInput.from_dict(result.period_year, result.period_month, inputs).as_dict()


def change_status(liq: Liquidation, new_status: str) -> Liquidation:
    new_status = (new_status or "").strip().lower()
    if new_status not in ALLOWED_TRANSITIONS:
        raise ValidationError(f"Unknown status {new_status!r}", fields=["status"])
    if new_status not in ALLOWED_TRANSITIONS[liq.status]:
        raise StateTransitionError(
            f"Cannot move liquidation from {liq.status} to {new_status}",
            payload={"from": liq.status, "to": new_status,
                     "allowed": sorted(ALLOWED_TRANSITIONS[liq.status])},
        )
    liq.status = new_status
    db.session.commit()
    return liq


def get_liquidation(liq_id: int) -> Liquidation:
    liq = db.session.get(Liquidation, liq_id)
    if liq is None:
        raise NotFoundError(f"Liquidation {liq_id} not found")
    return liq


def reconcile(liq: Liquidation, persist: bool = False) -> List[ReconciliationWarning]:
    """Recompute totals; with persist=True the stored totals are overwritten (caller commits)."""
    totals, warnings = reconcile_totals(liq, reconciliation_tolerance())
    for w in warnings:
        log.warning("liquidation %s: stored %s=%s, recomputed %s", liq.id, w.field, w.stored, w.recomputed)
    if persist:
        for name, value in totals.as_dict().items():
            setattr(liq, name, value)
    return warnings


def _plain(v):
    if isinstance(v, Decimal):
        return str(v)
    if isinstance(v, date):
        return v.isoformat()
    return v


def serialize(liq: Liquidation) -> Tuple[Dict[str, Any], List[Dict[str, Any]]]:
    """Row dict with canonical totals plus the notices to show next to it."""
    totals, warnings = reconcile_totals(liq, reconciliation_tolerance())
    row = {c.name: _plain(getattr(liq, c.name)) for c in Liquidation.__table__.columns}
    row.update(totals.as_dict())
    row["period"] = liq.period
    row["employee_name"] = liq.employee.full_name if liq.employee else None
    row["employee_rut"] = liq.employee.rut if liq.employee else None
    row["employer_total"] = (liq.employer_unemployment or 0) + (liq.employer_work_accident or 0) + (liq.employer_sis or 0)
    notices = list(liq.notices or []) + [w.as_dict() for w in warnings]
    return row, notices


def list_liquidations(company_id: int, year: Optional[int] = None, month: Optional[int] = None,
                      status: Optional[str] = None):
    q = Liquidation.query.filter(Liquidation.company_id == company_id)
    if year is not None:
        q = q.filter(Liquidation.period_year == year)
    if month is not None:
        q = q.filter(Liquidation.period_month == month)
    if status:
        q = q.filter(Liquidation.status == status)
    return q.order_by(Liquidation.period_year.desc(), Liquidation.period_month.desc(), Liquidation.id.asc())

