import csv
import io
from datetime import date
from decimal import Decimal
from types import SimpleNamespace

import pytest
from openpyxl import load_workbook

from cl_payroll_api.services.liquidation_calc import (
    ContractTerms, LiquidationCalculator, PayrollSettings, PeriodInput,
)
from cl_payroll_api.services.lre_export import (
    LRE_CODES, LRE_FIELD_COUNT, LRE_HEADERS, ExportEntry, StatutoryExportAssembler,
    csv_filename, lre_date, render_csv, render_xlsx, semana_corrida,
)
from cl_payroll_api.services.regulatory_config import bundled_params
from cl_payroll_api.services.statutory_codes import StatutoryCodeResolver


@pytest.fixture(scope="module")
def params():
    return bundled_params()


@pytest.fixture
def assembler(params):
    return StatutoryExportAssembler(params, StatutoryCodeResolver.from_params(params, "lre"))


def _entry(params, rut="11.111.111-1", first="Ana", last="Rojas", mother="Vera",
           settings=None, inputs=None, base=529000, ctype="plazo_fijo", start=date(2024, 1, 1), emp_id=1):
    settings = settings or PayrollSettings(pension_fund="HABITAT", health_provider="FONASA",
                                           statutory_gratification=True)
    contract = ContractTerms(base_salary=base, contract_type=ctype, weekly_hours=Decimal("44"), start_date=start)
    liq = LiquidationCalculator(params).calculate(contract, settings, PeriodInput.from_dict(2025, 8, inputs))
    emp = SimpleNamespace(id=emp_id, rut=rut, first_name=first, last_name=last, mother_last_name=mother, gender="F")
    return ExportEntry(liquidation=liq, employee=emp, contract=contract, settings=settings)


def test_header_has_147_coded_columns():
    assert LRE_FIELD_COUNT == 147
    assert len(LRE_HEADERS) == 147
    assert len(set(LRE_CODES)) == 147
    assert LRE_HEADERS[0].endswith("(1101)")


def test_reference_record_values(params, assembler):
    rec = assembler.record(_entry(params))
    v = rec.as_dict()
    assert len(rec.values) == 147
    assert v["1101"] == "11111111-1"
    assert v["1102"] == "01/01/2024"
    assert v["1115"] == "30"
    assert v["1141"] == "14"
    assert v["1143"] == "102"
    assert v["2101"] == "529000"
    assert v["2106"] == "132250"
    assert v["3141"] == str(66125 + 8398)
    assert v["3143"] == "46288"
    assert v["3151"] == "0"
    assert v["5201"] == "661250"
    assert v["5301"] == "120811"
    assert v["5501"] == "540439"
    assert v["4155"] == "12432"
    assert v["5410"] == str(19838 + 6150 + 12432)
    assert rec.notices == []


def test_isapre_plan_excess_is_voluntary_health(params, assembler):
    settings = PayrollSettings(pension_fund="HABITAT", health_provider="COLMENA",
                               health_plan_uf=Decimal("4.5"), statutory_gratification=True)
    entry = _entry(params, settings=settings)
    v = assembler.record(entry).as_dict()
    assert entry.liquidation.health_amount == 177224
    assert v["3143"] == "46288"
    assert v["3144"] == str(177224 - 46288)

    fonasa = assembler.record(_entry(params)).as_dict()
    assert fonasa["3144"] == "0"


def test_section_totals_add_up(params, assembler):
    rec = assembler.record(_entry(params, inputs={
        "food_allowance": 50000, "transport_allowance": 20000, "loan_deductions": 15000,
        "advance_payments": 5000, "voluntary_savings": 10000, "other_deductions": 3000,
        "commissions": 60000,
    }))
    v = {k: int(x) for k, x in rec.as_dict().items() if x.lstrip("-").isdigit()}
    assert v["5201"] == v["5210"] + v["5220"] + v["5230"] + v["5240"]
    assert v["5230"] == 70000
    assert v["5220"] == 0
    assert v["5301"] == v["5361"] + v["5341"] + v["5302"]
    assert v["5302"] == 15000 + 5000 + 3000
    assert v["3188"] == 20000
    assert v["3155"] == 10000
    assert v["5501"] == v["5201"] - v["5301"]
    assert v["5410"] == v["4151"] + v["4152"] + v["4155"]


def test_optional_fields_blank_others_zero(params, assembler):
    v = assembler.record(_entry(params)).as_dict()
    for code in ("1103", "1104", "1154", "1132", "1171", "1180"):
        assert v[code] == ""
    assert v["4131"] == "0"
    assert v["3162"] == "0"


def test_company_location_overrides_defaults(params):
    company = SimpleNamespace(region_code="5", commune_code="5101", work_accident_rate=None)
    a = StatutoryExportAssembler(params, StatutoryCodeResolver.from_params(params, "lre"), company)
    v = a.record(_entry(params)).as_dict()
    assert (v["1105"], v["1106"]) == ("5", "5101")

    default = StatutoryExportAssembler(params, StatutoryCodeResolver.from_params(params, "lre"))
    v = default.record(_entry(params)).as_dict()
    assert (v["1105"], v["1106"]) == ("13", "13101")


def test_unknown_health_provider_emits_notice(params, assembler):
    entry = _entry(params, settings=PayrollSettings(pension_fund="HABITAT", health_provider="MYSTERY CARE",
                                                    statutory_gratification=True))
    rec = assembler.record(entry)
    assert rec.as_dict()["1143"] == "102"
    assert [n.setting for n in rec.notices] == ["lre.health_provider"]
    assert rec.notices[0].kind == "configuration_fallback"


def test_records_sorted_by_surnames(params, assembler):
    entries = [
        _entry(params, rut="22.222.222-2", first="Luis", last="Soto", mother="Diaz", emp_id=1),
        _entry(params, rut="33.333.333-3", first="Eva", last="Araya", mother="Perez", emp_id=2),
        _entry(params, rut="44.444.444-4", first="Juan", last="Araya", mother="Bravo", emp_id=3),
    ]
    records = assembler.assemble(entries)
    assert [r.employee_id for r in records] == [3, 2, 1]


def test_semana_corrida():
    assert semana_corrida(60000, 0) == 10000
    assert semana_corrida(0, 0) == 0
    assert semana_corrida(3, 0) == 1   # 0.5 rounds up
    assert semana_corrida(0, 12000) == 2000


def test_semana_corrida_is_informational(params, assembler):
    v = assembler.record(_entry(params, inputs={"commissions": 60000})).as_dict()
    assert v["2104"] == "10000"
    assert int(v["5210"]) == 661250 + 60000


def test_csv_rendering(params, assembler):
    records = assembler.assemble([_entry(params)])
    raw = render_csv(records)
    assert raw.startswith(b"\xef\xbb\xbf")
    text = raw.decode("utf-8-sig")
    assert "\r\n" not in text
    rows = list(csv.reader(io.StringIO(text), delimiter=";"))
    assert len(rows) == 2
    assert rows[0] == list(LRE_HEADERS)
    assert len(rows[1]) == 147


def test_xlsx_rendering(params, assembler):
    records = assembler.assemble([_entry(params)])
    wb = load_workbook(io.BytesIO(render_xlsx(records)))
    ws = wb.active
    assert ws.max_column == 147
    assert ws.max_row == 2


def test_dates_and_filenames():
    assert lre_date(date(2025, 3, 7)) == "07/03/2025"
    assert lre_date(None) == ""
    assert csv_filename("2025-08") == "libro_remuneraciones_2025-08.csv"
    assert csv_filename("2025-08", "76.123.456-0") == "libro_remuneraciones_761234560_2025-08.csv"
