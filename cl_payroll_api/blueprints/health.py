from flask import Blueprint
from sqlalchemy import text

from cl_payroll_api.common.http import ok
from cl_payroll_api.extensions import db

bp = Blueprint("health", __name__)


@bp.get("/health")
def health():
    db.session.execute(text("SELECT 1"))
    return ok({"status": "ok"})
