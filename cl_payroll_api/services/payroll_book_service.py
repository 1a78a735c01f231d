from __future__ import annotations

import logging
from datetime import date
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import func

from cl_payroll_api.common.errors import MissingPrerequisiteError, NotFoundError, StateTransitionError
from cl_payroll_api.common.notices import notices_as_dicts
from cl_payroll_api.extensions import db
from cl_payroll_api.models.master import Company
from cl_payroll_api.models.payroll.liquidation import Liquidation
from cl_payroll_api.models.payroll.payroll_book import PayrollBook, PayrollBookDetail
from .liquidation_calc import compute_totals, employer_costs, reconcile_totals
from .liquidation_service import reconcile, reconciliation_tolerance
from .lre_export import ExportEntry, StatutoryExportAssembler, StatutoryExportRecord
from .payroll_common import ensure_not_future, format_period, parse_period, period_bounds
from .previred_export import PreviredExporter, PreviredLine
from .regulatory_config import RegulatoryParams, load_params
from .statutory_codes import StatutoryCodeResolver

log = logging.getLogger(__name__)


def _surname_order(liq: Liquidation):
    emp = liq.employee
    return ((emp.last_name or "").casefold(), (emp.mother_last_name or "").casefold(), (emp.first_name or "").casefold())


def generate_book(company_id: int, period: str, today: Optional[date] = None) -> Tuple[PayrollBook, List[Dict[str, Any]]]:
    """
    Build the payroll book for (company, period) from its liquidations.

    An existing book for the period is deleted and the new one inserted inside
    one transaction; on any failure the previous book stays untouched.
    """
    year, month = parse_period(period)
    ensure_not_future(year, month, today)
    company = db.session.get(Company, company_id)
    if company is None:
        raise NotFoundError(f"Company {company_id} not found")
    period = format_period(year, month)

    liqs = (
        Liquidation.query
        .filter(Liquidation.company_id == company_id,
                Liquidation.period_year == year,
                Liquidation.period_month == month,
                Liquidation.status != "cancelled")
        .all()
    )
    if not liqs:
        raise MissingPrerequisiteError(
            f"No liquidations found for {period}",
            payload={"period": period, "hint": "generate liquidations for the period first"},
        )

    existing = PayrollBook.query.filter_by(company_id=company_id, period=period).first()
    if existing is not None and existing.status == "approved":
        raise StateTransitionError(f"Payroll book {existing.book_number} for {period} is approved and cannot be regenerated")

    params = load_params(company_id, period_bounds(year, month)[1])
    last_number = (
        db.session.query(func.max(PayrollBook.book_number))
        .filter(PayrollBook.company_id == company_id)
        .scalar()
    )

    try:
        if existing is not None:
            log.info("replacing payroll book %s (#%s) for company %s %s",
                     existing.id, existing.book_number, company_id, period)
            db.session.delete(existing)
            db.session.flush()

        notices: List[Dict[str, Any]] = []
        book = PayrollBook(
            company_id=company_id,
            period=period,
            book_number=(last_number or 0) + 1,
            status="draft",
        )
        for order, liq in enumerate(sorted(liqs, key=_surname_order), start=1):
            for w in reconcile(liq, persist=True):
                notices.append(dict(w.as_dict(), liquidation_id=liq.id, employee_id=liq.employee_id))
            for n in liq.notices or []:
                notices.append(dict(n, liquidation_id=liq.id, employee_id=liq.employee_id))
            book.details.append(_detail(liq, order, params, company))

        _sum_details(book)
        book.notices = notices
        db.session.add(book)
        db.session.commit()
    except Exception:
        db.session.rollback()
        log.exception("payroll book generation failed for company %s %s", company_id, period)
        raise

    log.info("payroll book #%s generated for company %s %s with %d employees",
             book.book_number, company_id, period, book.total_employees)
    return book, notices


def _detail(liq: Liquidation, order: int, params: RegulatoryParams, company: Company) -> PayrollBookDetail:
    totals = compute_totals(liq)
    employer = employer_costs(
        totals.total_taxable_income, liq.contract_type or params.default_contract_type,
        params, company.work_accident_rate,
    )
    return PayrollBookDetail(
        liquidation_id=liq.id,
        employee_id=liq.employee_id,
        sort_order=order,
        employee_rut=liq.employee.rut,
        employee_name=liq.employee.full_name,
        days_worked=liq.days_worked,
        total_taxable_income=totals.total_taxable_income,
        total_non_taxable_income=totals.total_non_taxable_income,
        total_gross_income=totals.total_gross_income,
        total_deductions=totals.total_deductions,
        net_salary=totals.net_salary,
        employer_contributions=employer.total,
    )


def _sum_details(book: PayrollBook):
    d = book.details
    book.total_employees = len(d)
    book.total_taxable_income = sum(x.total_taxable_income for x in d)
    book.total_non_taxable_income = sum(x.total_non_taxable_income for x in d)
    book.total_gross_income = sum(x.total_gross_income for x in d)
    book.total_deductions = sum(x.total_deductions for x in d)
    book.total_net = sum(x.net_salary for x in d)
    book.total_employer_contributions = sum(x.employer_contributions for x in d)


def get_book(book_id: int) -> PayrollBook:
    book = db.session.get(PayrollBook, book_id)
    if book is None:
        raise NotFoundError(f"Payroll book {book_id} not found")
    return book


def approve_book(book: PayrollBook) -> PayrollBook:
    if book.status != "draft":
        raise StateTransitionError(f"Payroll book {book.id} is already {book.status}")
    book.status = "approved"
    db.session.commit()
    return book


def serialize_book(book: PayrollBook, with_details: bool = False) -> Dict[str, Any]:
    out = {
        "id": book.id,
        "company_id": book.company_id,
        "period": book.period,
        "book_number": book.book_number,
        "status": book.status,
        "total_employees": book.total_employees,
        "total_taxable_income": book.total_taxable_income,
        "total_non_taxable_income": book.total_non_taxable_income,
        "total_gross_income": book.total_gross_income,
        "total_deductions": book.total_deductions,
        "total_net": book.total_net,
        "total_employer_contributions": book.total_employer_contributions,
        "generated_at": book.generated_at.isoformat() if book.generated_at else None,
        "notices": book.notices or [],
    }
    if with_details:
        out["details"] = [
            {
                "employee_id": x.employee_id,
                "liquidation_id": x.liquidation_id,
                "employee_rut": x.employee_rut,
                "employee_name": x.employee_name,
                "days_worked": x.days_worked,
                "total_taxable_income": x.total_taxable_income,
                "total_non_taxable_income": x.total_non_taxable_income,
                "total_gross_income": x.total_gross_income,
                "total_deductions": x.total_deductions,
                "net_salary": x.net_salary,
                "employer_contributions": x.employer_contributions,
            }
            for x in book.details
        ]
    return out


# ---------- exports ----------

def _entries(book: PayrollBook) -> List[ExportEntry]:
    year, month = parse_period(book.period)
    month_end = period_bounds(year, month)[1]
    out = []
    for d in book.details:
        liq, emp = d.liquidation, d.employee
        contract = liq.contract or emp.active_contract(month_end)
        out.append(ExportEntry(liquidation=liq, employee=emp, contract=contract, settings=emp.payroll_config))
    if not out:
        raise MissingPrerequisiteError(f"Payroll book {book.id} has no employees",
                                       payload={"hint": "generate liquidations first"})
    return out


def _params_for(book: PayrollBook) -> RegulatoryParams:
    year, month = parse_period(book.period)
    return load_params(book.company_id, period_bounds(year, month)[1])


def _liquidation_notices(book: PayrollBook) -> List[Dict[str, Any]]:
    """Stored fallback notices plus drift between stored and recomputed totals, per employee."""
    tolerance = reconciliation_tolerance()
    out = []
    for d in book.details:
        liq = d.liquidation
        _, drift = reconcile_totals(liq, tolerance)
        for n in notices_as_dicts(list(liq.notices or []) + drift):
            out.append(dict(n, liquidation_id=liq.id, employee_id=d.employee_id))
    return out


def build_lre(book: PayrollBook) -> Tuple[List[StatutoryExportRecord], List[Dict[str, Any]]]:
    params = _params_for(book)
    assembler = StatutoryExportAssembler(params, StatutoryCodeResolver.from_params(params, "lre"), book.company)
    records = assembler.assemble(_entries(book))
    notices = _liquidation_notices(book)
    notices += [dict(n.as_dict(), employee_id=r.employee_id) for r in records for n in r.notices]
    return records, notices


def build_previred(book: PayrollBook) -> Tuple[List[PreviredLine], List[Dict[str, Any]]]:
    year, month = parse_period(book.period)
    params = _params_for(book)
    exporter = PreviredExporter(params, StatutoryCodeResolver.from_params(params, "previred"), book.company)
    lines = exporter.lines(_entries(book), year, month)
    notices = _liquidation_notices(book)
    notices += [dict(n.as_dict(), employee_id=ln.employee_id) for ln in lines for n in ln.notices]
    return lines, notices
