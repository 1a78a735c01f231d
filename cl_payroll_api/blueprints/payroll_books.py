from __future__ import annotations

from flask import Blueprint, current_app, request

from cl_payroll_api.common.errors import ValidationError
from cl_payroll_api.common.http import attachment, ok
from cl_payroll_api.common.paging import page_limit, paginate
from cl_payroll_api.models.payroll.payroll_book import PayrollBook
from cl_payroll_api.services import payroll_book_service as books
from cl_payroll_api.services.lre_export import (
    CSV_MIMETYPE, XLSX_MIMETYPE, csv_filename, render_csv, render_xlsx,
)
from cl_payroll_api.services.payroll_common import parse_period
from cl_payroll_api.services.previred_export import TXT_MIMETYPE, previred_filename, render_previred

bp = Blueprint("payroll_books", __name__, url_prefix="/api/v1/payroll-books")


def _company_id(raw):
    try:
        return int(raw)
    except (TypeError, ValueError):
        raise ValidationError("company_id is required and must be integer", fields=["company_id"])


@bp.post("")
def generate():
    j = request.get_json(silent=True) or {}
    missing = [k for k in ("company_id", "period") if j.get(k) in (None, "")]
    if missing:
        raise ValidationError("Missing mandatory identifiers", fields=missing)
    book, notices = books.generate_book(_company_id(j["company_id"]), j["period"])
    return ok(books.serialize_book(book, with_details=True), 201, notices=notices)


@bp.get("")
def list_books():
    q = PayrollBook.query.filter(PayrollBook.company_id == _company_id(request.args.get("company_id")))
    if request.args.get("period"):
        y, m = parse_period(request.args.get("period"))
        q = q.filter(PayrollBook.period == f"{y:04d}-{m:02d}")
    page, size = page_limit()
    items, total = paginate(q.order_by(PayrollBook.book_number.desc()), page, size)
    return ok([books.serialize_book(b) for b in items], page=page, size=size, total=total)


@bp.get("/<int:book_id>")
def get_one(book_id: int):
    book = books.get_book(book_id)
    return ok(books.serialize_book(book, with_details=True), notices=book.notices or [])


@bp.post("/<int:book_id>/approve")
def approve(book_id: int):
    book = books.approve_book(books.get_book(book_id))
    return ok(books.serialize_book(book))


@bp.get("/<int:book_id>/lre")
def export_lre(book_id: int):
    fmt = (request.args.get("format") or "csv").lower()
    if fmt not in ("csv", "xlsx", "json"):
        raise ValidationError("format must be csv, xlsx or json", fields=["format"])
    book = books.get_book(book_id)
    records, notices = books.build_lre(book)
    company_rut = book.company.rut if book.company else None

    if fmt == "json":
        return ok([r.as_dict() for r in records], period=book.period, book_number=book.book_number,
                  field_count=len(records[0].values) if records else 0, notices=notices)
    if fmt == "xlsx":
        name = csv_filename(book.period, company_rut).rsplit(".", 1)[0] + ".xlsx"
        return attachment(render_xlsx(records), name, XLSX_MIMETYPE, notices)

    delimiter = current_app.config.get("PAYROLL_LRE_DELIMITER", ";")
    return attachment(render_csv(records, delimiter), csv_filename(book.period, company_rut), CSV_MIMETYPE, notices)


@bp.get("/<int:book_id>/previred")
def export_previred(book_id: int):
    book = books.get_book(book_id)
    lines, notices = books.build_previred(book)
    year, month = parse_period(book.period)
    company_rut = book.company.rut if book.company else None
    return attachment(render_previred(lines), previred_filename(year, month, company_rut), TXT_MIMETYPE, notices)
