import csv
import io
import json
import os
from datetime import date

import pytest

from cl_payroll_api import create_app
from cl_payroll_api.common.http import NOTICES_HEADER
from cl_payroll_api.extensions import db
from cl_payroll_api.models.employee import Employee, EmploymentContract, PayrollConfig
from cl_payroll_api.models.master import Company
from cl_payroll_api.services.regulatory_config import seed_stat_configs


@pytest.fixture(scope="function")
def app():
    os.environ["DATABASE_URL"] = "sqlite:///:memory:"
    app = create_app()
    app.config["TESTING"] = True
    with app.app_context():
        db.create_all()
        seed_stat_configs(db.session)
        yield app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def company(app):
    c = Company(code="API", name="Api SpA", rut="76.123.456-0")
    db.session.add(c)
    db.session.commit()
    return c


def _employee(company, rut="11.111.111-1", last="Rojas", with_config=True):
    e = Employee(company_id=company.id, rut=rut, first_name="Ana", last_name=last)
    db.session.add(e)
    db.session.flush()
    db.session.add(EmploymentContract(employee_id=e.id, contract_type="plazo_fijo", base_salary=529000,
                                      weekly_hours=44, start_date=date(2024, 1, 1)))
    if with_config:
        db.session.add(PayrollConfig(employee_id=e.id, pension_fund="HABITAT", health_provider="FONASA"))
    db.session.commit()
    return e


def _generate(client, company, emp, period="2025-08", **inputs):
    return client.post("/api/v1/liquidations", json={
        "company_id": company.id, "employee_id": emp.id, "period": period, **inputs,
    })


def test_health(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.get_json()["data"]["status"] == "ok"


def test_create_then_regenerate(client, company):
    emp = _employee(company)
    r = _generate(client, company, emp)
    assert r.status_code == 201
    body = r.get_json()
    assert body["success"] is True
    assert body["data"]["net_salary"] == 540439

    r = _generate(client, company, emp)
    assert r.status_code == 200
    assert r.get_json()["data"]["id"] == body["data"]["id"]


def test_preview_does_not_persist(client, company):
    emp = _employee(company)
    r = client.post("/api/v1/liquidations/calculate", json={
        "company_id": company.id, "employee_id": emp.id, "period": "2025-08", "inputs": {"bonuses": 1000},
    })
    assert r.status_code == 200
    assert r.get_json()["data"]["bonuses"] == 1000
    listing = client.get(f"/api/v1/liquidations?company_id={company.id}").get_json()
    assert listing["meta"]["total"] == 0


def test_missing_identifiers_return_422(client, company):
    r = client.post("/api/v1/liquidations", json={"company_id": company.id, "period": "2025-08"})
    assert r.status_code == 422
    err = r.get_json()["error"]
    assert err["code"] == "VALIDATION_ERROR"
    assert err["detail"]["fields"] == ["employee_id"]


def test_future_period_returns_period_error(client, company):
    emp = _employee(company)
    r = _generate(client, company, emp, period="2999-01")
    assert r.status_code == 422
    assert r.get_json()["error"]["code"] == "PERIOD_ERROR"


def test_bad_period_format(client, company):
    emp = _employee(company)
    r = _generate(client, company, emp, period="08/2025")
    assert r.status_code == 422
    assert r.get_json()["error"]["detail"]["fields"] == ["period"]


def test_non_numeric_amount_returns_422(client, company):
    emp = _employee(company)
    r = _generate(client, company, emp, bonuses="NaN")
    assert r.status_code == 422
    assert r.get_json()["error"]["detail"]["fields"] == ["bonuses"]


def test_unknown_liquidation_is_404(client):
    r = client.get("/api/v1/liquidations/999")
    assert r.status_code == 404
    assert r.get_json()["error"]["code"] == "NOT_FOUND"


def test_status_endpoint(client, company):
    emp = _employee(company)
    liq_id = _generate(client, company, emp).get_json()["data"]["id"]
    r = client.post(f"/api/v1/liquidations/{liq_id}/status", json={"status": "paid"})
    assert r.status_code == 409
    assert r.get_json()["error"]["code"] == "INVALID_TRANSITION"
    r = client.post(f"/api/v1/liquidations/{liq_id}/status", json={"status": "review"})
    assert r.get_json()["data"]["status"] == "review"


def test_edit_endpoint(client, company):
    emp = _employee(company)
    liq_id = _generate(client, company, emp).get_json()["data"]["id"]
    r = client.put(f"/api/v1/liquidations/{liq_id}", json={"bonuses": 20000})
    assert r.status_code == 200
    assert r.get_json()["data"]["total_taxable_income"] == 661250 + 20000


def test_generate_period_for_all_active_employees(client, company):
    _employee(company)
    _employee(company, rut="22.222.222-2", last="Soto")
    bad = Employee(company_id=company.id, rut="33.333.333-3", first_name="Sin", last_name="Contrato")
    db.session.add(bad)
    db.session.commit()

    r = client.post("/api/v1/liquidations/generate-period", json={"company_id": company.id, "period": "2025-08"})
    assert r.status_code == 200
    meta = r.get_json()["meta"]
    assert (meta["generated"], meta["skipped"]) == (2, 1)


def test_list_shows_fallback_notices(client, company):
    emp = _employee(company, with_config=False)
    _generate(client, company, emp)
    body = client.get(f"/api/v1/liquidations?company_id={company.id}&period=2025-08").get_json()
    assert body["meta"]["total"] == 1
    settings = {n["setting"] for n in body["data"][0]["notices"]}
    assert {"pension_fund", "health_provider"} <= settings


def test_book_and_lre_csv_download(client, company):
    _generate(client, company, _employee(company))
    r = client.post("/api/v1/payroll-books", json={"company_id": company.id, "period": "2025-08"})
    assert r.status_code == 201
    book = r.get_json()["data"]
    assert book["book_number"] == 1
    assert len(book["details"]) == 1

    r = client.get(f"/api/v1/payroll-books/{book['id']}/lre")
    assert r.status_code == 200
    assert r.mimetype == "text/csv"
    disposition = r.headers["Content-Disposition"]
    assert disposition.startswith("attachment")
    assert "libro_remuneraciones_761234560_2025-08.csv" in disposition
    assert r.data.startswith(b"\xef\xbb\xbf")
    rows = list(csv.reader(io.StringIO(r.data.decode("utf-8-sig")), delimiter=";"))
    assert len(rows) == 2 and len(rows[1]) == 147


def test_lre_json_and_xlsx(client, company):
    _generate(client, company, _employee(company))
    book_id = client.post("/api/v1/payroll-books",
                          json={"company_id": company.id, "period": "2025-08"}).get_json()["data"]["id"]
    body = client.get(f"/api/v1/payroll-books/{book_id}/lre?format=json").get_json()
    assert body["meta"]["field_count"] == 147
    assert body["data"][0]["5501"] == "540439"

    r = client.get(f"/api/v1/payroll-books/{book_id}/lre?format=xlsx")
    assert r.status_code == 200
    assert r.mimetype.endswith("spreadsheetml.sheet")

    assert client.get(f"/api/v1/payroll-books/{book_id}/lre?format=pdf").status_code == 422


def test_export_notices_travel_in_header(client, company):
    emp = _employee(company, with_config=False)
    liq_id = _generate(client, company, emp).get_json()["data"]["id"]
    cfg = PayrollConfig(employee_id=emp.id, pension_fund="HABITAT", health_provider="MYSTERY CARE")
    db.session.add(cfg)
    db.session.commit()
    client.put(f"/api/v1/liquidations/{liq_id}", json={})

    book_id = client.post("/api/v1/payroll-books",
                          json={"company_id": company.id, "period": "2025-08"}).get_json()["data"]["id"]
    r = client.get(f"/api/v1/payroll-books/{book_id}/lre")
    notices = json.loads(r.headers[NOTICES_HEADER])
    assert any(n.get("setting") == "lre.health_provider" for n in notices)


def test_lre_json_lists_liquidation_fallbacks(client, company):
    emp = _employee(company, with_config=False)
    _generate(client, company, emp)
    book_id = client.post("/api/v1/payroll-books",
                          json={"company_id": company.id, "period": "2025-08"}).get_json()["data"]["id"]
    notices = client.get(f"/api/v1/payroll-books/{book_id}/lre?format=json").get_json()["meta"]["notices"]
    settings = {n.get("setting") for n in notices if n["employee_id"] == emp.id}
    assert {"pension_fund", "health_provider"} <= settings


def test_previred_download(client, company):
    _generate(client, company, _employee(company))
    book_id = client.post("/api/v1/payroll-books",
                          json={"company_id": company.id, "period": "2025-08"}).get_json()["data"]["id"]
    r = client.get(f"/api/v1/payroll-books/{book_id}/previred")
    assert r.status_code == 200
    assert "previred_082025_761234560.txt" in r.headers["Content-Disposition"]
    assert len(r.data.decode("utf-8").split(";")) == 105


def test_book_without_liquidations_is_409(client, company):
    r = client.post("/api/v1/payroll-books", json={"company_id": company.id, "period": "2025-08"})
    assert r.status_code == 409
    assert r.get_json()["error"]["code"] == "MISSING_PREREQUISITE"


def test_approve_book_and_block_regeneration(client, company):
    _generate(client, company, _employee(company))
    book_id = client.post("/api/v1/payroll-books",
                          json={"company_id": company.id, "period": "2025-08"}).get_json()["data"]["id"]
    assert client.post(f"/api/v1/payroll-books/{book_id}/approve").get_json()["data"]["status"] == "approved"
    r = client.post("/api/v1/payroll-books", json={"company_id": company.id, "period": "2025-08"})
    assert r.status_code == 409


def test_regulatory_config_admin(client, company):
    payload = {"type": "INDICATORS", "effective_from": "2025-01-01", "value": {"uf": 1, "utm": 1, "minimum_wage": 1}}
    r = client.post("/api/v1/regulatory/configs", json=payload)
    # the seeded global INDICATORS row already covers 2025 at the same priority
    assert r.status_code == 409

    scoped = dict(payload, company_id=company.id)
    r = client.post("/api/v1/regulatory/configs", json=scoped)
    assert r.status_code == 201
    cfg_id = r.get_json()["data"]["id"]

    r = client.put(f"/api/v1/regulatory/configs/{cfg_id}/close",
                   json={"new_from": "2025-07-01", "new_value": {"uf": 2, "utm": 2, "minimum_wage": 2}})
    assert r.status_code == 200
    closed = r.get_json()["data"]["closed"]
    assert closed["effective_to"] == "2025-06-30"

    r = client.get(f"/api/v1/regulatory/configs/resolve?company_id={company.id}&on=2025-08-01")
    stack = r.get_json()["data"]["stack"]["INDICATORS"]
    assert stack[0]["value"]["minimum_wage"] == 2
    assert stack[-1]["scope_company_id"] is None

    r = client.post("/api/v1/regulatory/configs", json=dict(payload, type="BOGUS"))
    assert r.status_code == 422


def test_retired_config_leaves_resolution(client, company):
    payload = {"type": "LIMITS", "effective_from": "2025-01-01", "company_id": company.id,
               "value": {"pension_cap_uf": 90, "unemployment_cap_uf": 135}}
    cfg_id = client.post("/api/v1/regulatory/configs", json=payload).get_json()["data"]["id"]

    r = client.delete(f"/api/v1/regulatory/configs/{cfg_id}")
    assert r.status_code == 200
    assert r.get_json()["data"]["closed_at"] is not None

    stack = client.get(f"/api/v1/regulatory/configs/resolve?company_id={company.id}&on=2025-08-01"
                       ).get_json()["data"]["stack"]["LIMITS"]
    assert all(row["id"] != cfg_id for row in stack)
    assert client.delete("/api/v1/regulatory/configs/9999").status_code == 404
