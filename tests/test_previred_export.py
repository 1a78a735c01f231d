from datetime import date
from decimal import Decimal
from types import SimpleNamespace

import pytest

from cl_payroll_api.services.liquidation_calc import (
    ContractTerms, LiquidationCalculator, PayrollSettings, PeriodInput,
)
from cl_payroll_api.services.lre_export import ExportEntry
from cl_payroll_api.services.previred_export import (
    PREVIRED_FIELD_COUNT, PreviredExporter, ascii_text, previred_filename, render_previred,
)
from cl_payroll_api.services.regulatory_config import bundled_params
from cl_payroll_api.services.statutory_codes import StatutoryCodeResolver


@pytest.fixture(scope="module")
def params():
    return bundled_params()


@pytest.fixture
def exporter(params):
    return PreviredExporter(params, StatutoryCodeResolver.from_params(params, "previred"))


def _entry(params, settings=None, start=date(2024, 1, 1), last="Muñoz"):
    settings = settings or PayrollSettings(pension_fund="HABITAT", health_provider="FONASA",
                                           statutory_gratification=True)
    contract = ContractTerms(base_salary=529000, contract_type="plazo_fijo",
                             weekly_hours=Decimal("44"), start_date=start)
    liq = LiquidationCalculator(params).calculate(contract, settings, PeriodInput.from_dict(2025, 8, {}))
    emp = SimpleNamespace(id=7, rut="12.345.678-5", first_name="José", last_name=last,
                          mother_last_name="Peña", gender="M")
    return ExportEntry(liquidation=liq, employee=emp, contract=contract, settings=settings)


def _field(line, n):
    """1-based position, as numbered in the Previred layout."""
    return line.fields[n - 1]


def test_line_has_105_fields(params, exporter):
    line = exporter.line(_entry(params), 2025, 8)
    assert PREVIRED_FIELD_COUNT == 105
    assert len(line.fields) == 105
    assert len(line.render().split(";")) == 105


def test_worker_identification(params, exporter):
    line = exporter.line(_entry(params), 2025, 8)
    assert _field(line, 1) == "12345678"
    assert _field(line, 2) == "5"
    assert _field(line, 3) == "Munoz"
    assert _field(line, 5) == "Jose"
    assert _field(line, 9) == "082025"
    assert _field(line, 13) == "30"


def test_pension_and_health_amounts(params, exporter):
    line = exporter.line(_entry(params), 2025, 8)
    assert _field(line, 26) == "05"
    assert _field(line, 27) == "661250"
    assert _field(line, 28) == str(66125 + 8398)
    assert _field(line, 29) == "12432"           # SIS, employer funded
    assert _field(line, 64) == "661250"          # FONASA base
    assert _field(line, 70) == "46288"
    assert _field(line, 75) == "07"
    assert _field(line, 94) == "5951"            # 0.9% of the pension base
    assert (_field(line, 100), _field(line, 101), _field(line, 102)) == ("661250", "0", "19838")


def test_work_accident_goes_to_isl_without_mutual(params, exporter):
    line = exporter.line(_entry(params), 2025, 8)
    assert _field(line, 71) == "6150"
    assert _field(line, 98) == "0"


def test_work_accident_goes_to_mutual_when_affiliated(params, exporter):
    settings = PayrollSettings(pension_fund="HABITAT", health_provider="FONASA",
                               statutory_gratification=True, work_accident_insurer="ACHS")
    line = exporter.line(_entry(params, settings=settings), 2025, 8)
    assert _field(line, 71) == "0"
    assert _field(line, 96) == "01"
    assert _field(line, 98) == "6150"


def test_isapre_amounts_go_to_health_section(params, exporter):
    settings = PayrollSettings(pension_fund="HABITAT", health_provider="COLMENA",
                               statutory_gratification=True)
    line = exporter.line(_entry(params, settings=settings), 2025, 8)
    assert _field(line, 64) == "0"
    assert _field(line, 75) == "04"
    assert _field(line, 77) == "661250"
    assert _field(line, 80) == "46288"


def test_partial_month_movement(params, exporter):
    line = exporter.line(_entry(params, start=date(2025, 8, 16)), 2025, 8)
    assert _field(line, 13) == "16"
    assert _field(line, 15) == "5"
    assert _field(line, 16) == "16-08-2025"


def test_unknown_fund_is_reported(params, exporter):
    entry = _entry(params, settings=PayrollSettings(pension_fund="HABITAT", health_provider="FONASA"))
    entry.liquidation.pension_fund = "GHOST"
    line = exporter.line(entry, 2025, 8)
    assert _field(line, 26) == "00"
    assert [n.setting for n in line.notices] == ["previred.pension_fund"]


def test_render_and_filename(params, exporter):
    lines = exporter.lines([_entry(params), _entry(params, last="Araya")], 2025, 8)
    body = render_previred(lines).decode("utf-8")
    assert len(body.split("\n")) == 2
    assert previred_filename(2025, 8, "76.123.456-0") == "previred_082025_761234560.txt"
    assert ascii_text("Peña; Ñuñoa") == "Pena  Nunoa"
