from __future__ import annotations
from datetime import date, datetime, timedelta
from typing import Optional

from flask import Blueprint, request
from sqlalchemy import or_

from cl_payroll_api.common.http import ok, fail
from cl_payroll_api.extensions import db
from cl_payroll_api.models.payroll.stat_config import StatConfig, STAT_CONFIG_TYPES
from cl_payroll_api.services.regulatory_config import load_params, resolve_configs

bp = Blueprint("stat_configs", __name__, url_prefix="/api/v1/regulatory/configs")

# ---------- tiny helpers ----------
def _d(s) -> Optional[date]:
    if not s: return None
    try: return date.fromisoformat(str(s))
    except ValueError: return None

def _opt_int(x):
    if x is None or str(x).strip() == "":
        return None
    return int(x)

def _overlaps(tp: str, company_id, priority: int, eff_from: date, eff_to: Optional[date], exclude_id=None):
    q = (StatConfig.query
         .filter(StatConfig.type == tp, StatConfig.priority == priority, StatConfig.closed_at.is_(None))
         .filter(StatConfig.effective_from <= (eff_to or date.max))
         .filter(or_(StatConfig.effective_to.is_(None), StatConfig.effective_to >= eff_from)))
    if company_id is None:
        q = q.filter(StatConfig.scope_company_id.is_(None))
    else:
        q = q.filter(StatConfig.scope_company_id == company_id)
    if exclude_id is not None:
        q = q.filter(StatConfig.id != exclude_id)
    return q.first() is not None


@bp.get("")
def list_configs():
    q = StatConfig.query
    if request.args.get("type"):
        q = q.filter(StatConfig.type == request.args["type"].upper())
    if request.args.get("company_id"):
        try:
            q = q.filter(StatConfig.scope_company_id == int(request.args["company_id"]))
        except ValueError:
            return fail("company_id must be integer", 422)
    active_on = _d(request.args.get("active_on"))
    if active_on:
        q = q.filter(
            StatConfig.effective_from <= active_on,
            or_(StatConfig.effective_to.is_(None), StatConfig.effective_to >= active_on),
        )
    rows = q.order_by(StatConfig.type.asc(), StatConfig.priority.asc(), StatConfig.effective_from.desc()).all()
    return ok([r.as_dict() for r in rows])


@bp.post("")
def create_config():
    j = request.get_json(silent=True) or {}
    tp = (j.get("type") or "").strip().upper()
    if tp not in STAT_CONFIG_TYPES:
        return fail(f"type must be one of {', '.join(STAT_CONFIG_TYPES)}", 422)
    eff_from = _d(j.get("effective_from"))
    if not eff_from:
        return fail("effective_from is required (YYYY-MM-DD)", 422)
    eff_to = _d(j.get("effective_to"))
    if eff_to and eff_to < eff_from:
        return fail("effective_to must be >= effective_from", 422)
    try:
        comp = _opt_int(j.get("scope_company_id", j.get("company_id")))
        prio = _opt_int(j.get("priority"))
    except (TypeError, ValueError):
        return fail("company_id and priority must be integers", 422)
    prio = 100 if prio is None else prio
    value = j.get("value")
    if not isinstance(value, dict):
        return fail("value (JSON object) is required", 422)
    if _overlaps(tp, comp, prio, eff_from, eff_to):
        return fail("Overlapping config period for the same type/scope/priority", 409)

    rec = StatConfig(
        type=tp,
        key=(j.get("key") or f"{tp}_{eff_from.isoformat()}"),
        value_json=value,
        scope_company_id=comp,
        priority=prio,
        effective_from=eff_from,
        effective_to=eff_to,
    )
    db.session.add(rec)
    db.session.commit()
    return ok(rec.as_dict(), 201)


@bp.put("/<int:config_id>/close")
def close_config(config_id: int):
    """End a version the day before `new_from`, optionally opening its successor."""
    cur = db.get_or_404(StatConfig, config_id)
    j = request.get_json(silent=True) or {}
    new_from = _d(j.get("new_from"))
    if not new_from:
        return fail("new_from is required (YYYY-MM-DD)", 422)
    if new_from <= cur.effective_from:
        return fail("new_from must be after current effective_from", 422)

    cur.effective_to = new_from - timedelta(days=1)
    created = None
    if "new_value" in j:
        if not isinstance(j["new_value"], dict):
            return fail("new_value must be a JSON object", 422)
        if _overlaps(cur.type, cur.scope_company_id, cur.priority, new_from, None, exclude_id=cur.id):
            db.session.rollback()
            return fail("Overlapping config period for the same type/scope/priority", 409)
        created = StatConfig(
            type=cur.type,
            key=j.get("new_key") or f"{cur.type}_{new_from.isoformat()}",
            value_json=j["new_value"],
            scope_company_id=cur.scope_company_id,
            priority=cur.priority,
            effective_from=new_from,
        )
        db.session.add(created)
    db.session.commit()
    return ok({"closed": cur.as_dict(), "created": created.as_dict() if created else None})


@bp.delete("/<int:config_id>")
def retire_config(config_id: int):
    """Withdraw a version entirely; it stops taking part in resolution."""
    cur = db.get_or_404(StatConfig, config_id)
    cur.closed_at = datetime.utcnow()
    db.session.commit()
    return ok(cur.as_dict())


@bp.get("/resolve")
def resolve():
    on = _d(request.args.get("on")) or date.today()
    try:
        comp = _opt_int(request.args.get("company_id"))
    except ValueError:
        return fail("company_id must be integer", 422)
    stack = {tp: [r.as_dict() for r in resolve_configs(tp, comp, on)] for tp in STAT_CONFIG_TYPES}
    params = load_params(comp, on)
    return ok({"stack": stack, "effective": params.snapshot()}, on=on.isoformat())
