"""
Libro de Remuneraciones Electrónico (LRE).

One record per employee with exactly 147 fields in the order published by the
Dirección del Trabajo. Records are a projection of stored liquidations and are
rebuilt on every export; totals and employer contributions are recomputed
from components, never copied from the stored aggregates.
"""
from __future__ import annotations

import csv
import io
import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from openpyxl import Workbook

from cl_payroll_api.common.notices import ConfigurationFallbackNotice
from .liquidation_calc import compute_totals, employer_costs
from .money import D, round_clp
from .regulatory_config import RegulatoryParams
from .rut import lre_rut
from .statutory_codes import StatutoryCodeResolver

log = logging.getLogger(__name__)

LRE_FIELDS: Tuple[Tuple[str, str], ...] = (
    ("1101", "Rut trabajador"),
    ("1102", "Fecha inicio contrato"),
    ("1103", "Fecha término de contrato"),
    ("1104", "Causal término de contrato"),
    ("1105", "Región prestación de servicios"),
    ("1106", "Comuna prestación de servicios"),
    ("1170", "Tipo impuesto a la renta"),
    ("1146", "Técnico extranjero exención cot. previsionales"),
    ("1107", "Código tipo de jornada"),
    ("1108", "Persona con Discapacidad - Pensionado por Invalidez"),
    ("1109", "Pensionado por vejez"),
    ("1141", "AFP"),
    ("1142", "IPS (ExINP)"),
    ("1143", "FONASA - ISAPRE"),
    ("1151", "AFC"),
    ("1110", "CCAF"),
    ("1152", "Org. administrador ley 16.744"),
    ("1111", "Nro cargas familiares legales autorizadas"),
    ("1112", "Nro de cargas familiares maternales"),
    ("1113", "Nro de cargas familiares invalidez"),
    ("1114", "Tramo asignación familiar"),
    ("1171", "Rut org sindical 1"),
    ("1172", "Rut org sindical 2"),
    ("1173", "Rut org sindical 3"),
    ("1174", "Rut org sindical 4"),
    ("1175", "Rut org sindical 5"),
    ("1176", "Rut org sindical 6"),
    ("1177", "Rut org sindical 7"),
    ("1178", "Rut org sindical 8"),
    ("1179", "Rut org sindical 9"),
    ("1180", "Rut org sindical 10"),
    ("1115", "Nro días trabajados en el mes"),
    ("1116", "Nro días de licencia médica en el mes"),
    ("1117", "Nro días de vacaciones en el mes"),
    ("1118", "Subsidio trabajador joven"),
    ("1154", "Puesto Trabajo Pesado"),
    ("1155", "APVI"),
    ("1157", "APVC"),
    ("1131", "Indemnización a todo evento"),
    ("1132", "Tasa indemnización a todo evento"),
    ("2101", "Sueldo"),
    ("2102", "Sobresueldo"),
    ("2103", "Comisiones"),
    ("2104", "Semana corrida"),
    ("2105", "Participación"),
    ("2106", "Gratificación"),
    ("2107", "Recargo 30% día domingo"),
    ("2108", "Remun. variable pagada en vacaciones"),
    ("2109", "Remun. variable pagada en clausura"),
    ("2110", "Aguinaldo"),
    ("2111", "Bonos u otras remun. fijas mensuales"),
    ("2112", "Tratos"),
    ("2113", "Bonos u otras remun. variables mensuales o superiores a un mes"),
    ("2114", "Ejercicio opción no pactada en contrato"),
    ("2115", "Beneficios en especie constitutivos de remun"),
    ("2116", "Remuneraciones bimestrales"),
    ("2117", "Remuneraciones trimestrales"),
    ("2118", "Remuneraciones cuatrimestral"),
    ("2119", "Remuneraciones semestrales"),
    ("2120", "Remuneraciones anuales"),
    ("2121", "Participación anual"),
    ("2122", "Gratificación anual"),
    ("2123", "Otras remuneraciones superiores a un mes"),
    ("2124", "Pago por horas de trabajo sindical"),
    ("2161", "Sueldo empresarial"),
    ("2201", "Subsidio por incapacidad laboral por licencia médica"),
    ("2202", "Beca de estudio"),
    ("2203", "Gratificaciones de zona"),
    ("2204", "Otros ingresos no constitutivos de renta"),
    ("2301", "Colación"),
    ("2302", "Movilización"),
    ("2303", "Viáticos"),
    ("2304", "Asignación de pérdida de caja"),
    ("2305", "Asignación de desgaste herramienta"),
    ("2311", "Asignación familiar legal"),
    ("2306", "Gastos por causa del trabajo"),
    ("2307", "Gastos por cambio de residencia"),
    ("2308", "Sala cuna"),
    ("2309", "Asignación trabajo a distancia o teletrabajo"),
    ("2347", "Depósito convenido hasta UF 900"),
    ("2310", "Alojamiento por razones de trabajo"),
    ("2312", "Asignación de traslación"),
    ("2313", "Indemnización por feriado legal"),
    ("2314", "Indemnización años de servicio"),
    ("2315", "Indemnización sustitutiva del aviso previo"),
    ("2316", "Indemnización fuero maternal"),
    ("2331", "Pago indemnización a todo evento"),
    ("2417", "Indemnizaciones voluntarias tributables"),
    ("2418", "Indemnizaciones contractuales tributables"),
    ("3141", "Cotización obligatoria previsional (AFP o IPS)"),
    ("3143", "Cotización obligatoria salud 7%"),
    ("3144", "Cotización voluntaria para salud"),
    ("3151", "Cotización AFC - trabajador"),
    ("3146", "Cotizaciones técnico extranjero para seguridad social fuera de Chile"),
    ("3147", "Descuento depósito convenido hasta UF 900 anual"),
    ("3155", "Cotización APVi Mod A"),
    ("3156", "Cotización APVi Mod B hasta UF50"),
    ("3157", "Cotización APVc Mod A"),
    ("3158", "Cotización APVc Mod B hasta UF50"),
    ("3161", "Impuesto retenido por remuneraciones"),
    ("3162", "Impuesto retenido por indemnizaciones"),
    ("3163", "Mayor retención de impuestos solicitada por el trabajador"),
    ("3164", "Impuesto retenido por reliquidación remun. devengadas otros períodos"),
    ("3165", "Diferencia impuesto reliquidación remun. devengadas en este período"),
    ("3166", "Retención préstamo clase media 2020 (Ley 21.252)"),
    ("3167", "Rebaja zona extrema DL 889"),
    ("3171", "Cuota sindical 1"),
    ("3172", "Cuota sindical 2"),
    ("3173", "Cuota sindical 3"),
    ("3174", "Cuota sindical 4"),
    ("3175", "Cuota sindical 5"),
    ("3176", "Cuota sindical 6"),
    ("3177", "Cuota sindical 7"),
    ("3178", "Cuota sindical 8"),
    ("3179", "Cuota sindical 9"),
    ("3180", "Cuota sindical 10"),
    ("3110", "Crédito social CCAF"),
    ("3181", "Cuota vivienda o educación"),
    ("3182", "Crédito cooperativas de ahorro"),
    ("3183", "Otros descuentos autorizados y solicitados por el trabajador"),
    ("3154", "Cotización adicional trabajo pesado - trabajador"),
    ("3184", "Donaciones culturales y de reconstrucción"),
    ("3185", "Otros descuentos"),
    ("3186", "Pensiones de alimentos"),
    ("3187", "Descuento mujer casada"),
    ("3188", "Descuentos por anticipos y préstamos"),
    ("4151", "AFC - Aporte empleador"),
    ("4152", "Aporte empleador seguro accidentes del trabajo y Ley SANNA"),
    ("4131", "Aporte empleador indemnización a todo evento"),
    ("4154", "Aporte adicional trabajo pesado - empleador"),
    ("4155", "Aporte empleador seguro invalidez y sobrevivencia"),
    ("4157", "APVC - Aporte Empleador"),
    ("5201", "Total haberes"),
    ("5210", "Total haberes imponibles y tributables"),
    ("5220", "Total haberes imponibles no tributables"),
    ("5230", "Total haberes no imponibles y no tributables"),
    ("5240", "Total haberes no imponibles y tributables"),
    ("5301", "Total descuentos"),
    ("5361", "Total descuentos impuestos a las remuneraciones"),
    ("5362", "Total descuentos impuestos por indemnizaciones"),
    ("5341", "Total descuentos por cotizaciones del trabajador"),
    ("5302", "Total otros descuentos"),
    ("5410", "Total aportes empleador"),
    ("5501", "Total líquido"),
    ("5502", "Total indemnizaciones"),
    ("5564", "Total indemnizaciones tributables"),
    ("5565", "Total indemnizaciones no tributables"),
)

LRE_FIELD_COUNT = 147
LRE_CODES = tuple(code for code, _ in LRE_FIELDS)
LRE_HEADERS = tuple(f"{label}({code})" for code, label in LRE_FIELDS)

# Optional identification fields left blank instead of zero-filled.
_BLANK_CODES = frozenset(
    {"1103", "1104", "1154", "1132"} | {str(c) for c in range(1171, 1181)}
)

XLSX_MIMETYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
CSV_MIMETYPE = "text/csv; charset=utf-8"


def lre_date(d: Optional[date]) -> str:
    return d.strftime("%d/%m/%Y") if d else ""


def health_split(liq) -> Tuple[int, int]:
    """
    (mandatory 7%, voluntary excess) of the health deduction.

    An isapre plan priced above the statutory rate is reported as a voluntary
    contribution; the two parts always add up to the stored health amount.
    """
    total = int(liq.health_amount or 0)
    if not liq.health_rate:
        return total, 0
    base = (getattr(liq, "calc_meta", None) or {}).get("health_base")
    if base is None:
        base = compute_totals(liq).total_taxable_income
    mandatory = min(total, round_clp(D(base) * D(liq.health_rate)))
    return mandatory, total - mandatory


def semana_corrida(commissions: int, overtime_amount: int) -> int:
    """Weekly rest day pay owed on variable remuneration."""
    commissions, overtime_amount = int(commissions or 0), int(overtime_amount or 0)
    if commissions <= 0 and overtime_amount <= 0:
        return 0
    return round_clp(D(commissions + overtime_amount) / 6)


@dataclass
class ExportEntry:
    """Everything the assembler reads for one employee."""
    liquidation: Any
    employee: Any
    contract: Any = None
    settings: Any = None


@dataclass
class StatutoryExportRecord:
    employee_id: Optional[int]
    rut: str
    sort_key: Tuple[str, ...]
    values: Tuple[str, ...]
    notices: List[ConfigurationFallbackNotice] = field(default_factory=list)

    def as_dict(self) -> Dict[str, str]:
        return dict(zip(LRE_CODES, self.values))


def _surname_key(employee) -> Tuple[str, ...]:
    return tuple(
        (getattr(employee, attr, None) or "").casefold()
        for attr in ("last_name", "mother_last_name", "first_name")
    )


class StatutoryExportAssembler:
    def __init__(self, params: RegulatoryParams, resolver: StatutoryCodeResolver, company=None):
        self.params = params
        self.codes = resolver
        self.company = company

    def assemble(self, entries: Iterable[ExportEntry]) -> List[StatutoryExportRecord]:
        records = [self.record(e) for e in entries]
        records.sort(key=lambda r: r.sort_key)
        log.info("assembled %d LRE records", len(records))
        return records

    def record(self, entry: ExportEntry) -> StatutoryExportRecord:
        liq, emp, contract, settings = entry.liquidation, entry.employee, entry.contract, entry.settings
        notices: List[ConfigurationFallbackNotice] = []
        values = self._values(liq, emp, contract, settings, notices)
        row = tuple(
            str(values[code]) if code in values else ("" if code in _BLANK_CODES else "0")
            for code in LRE_CODES
        )
        if len(row) != LRE_FIELD_COUNT:
            raise ValueError(f"LRE record has {len(row)} fields, expected {LRE_FIELD_COUNT}")
        return StatutoryExportRecord(
            employee_id=getattr(emp, "id", None),
            rut=values["1101"],
            sort_key=_surname_key(emp),
            values=row,
            notices=notices,
        )

    def _code(self, category: str, identifier: Any, notices: List, who: str) -> str:
        code = self.codes.resolve(category, identifier)
        if self.codes.is_fallback(category, identifier):
            shown = identifier if identifier else "not set"
            notices.append(ConfigurationFallbackNotice(
                setting=f"{self.codes.scheme}.{category}",
                default_used=code,
                message=f"{who}: {category} {shown!r} has no {self.codes.scheme} code; using {code!r}",
            ))
        return code

    def _values(self, liq, emp, contract, settings, notices) -> Dict[str, Any]:
        p = self.params
        c = self.codes
        company = self.company
        who = lre_rut(getattr(emp, "rut", "")) or f"employee {getattr(emp, 'id', '?')}"

        totals = compute_totals(liq)
        employer = employer_costs(
            totals.total_taxable_income,
            liq.contract_type or p.default_contract_type,
            p,
            getattr(company, "work_accident_rate", None),
        )
        partial = getattr(liq, "partial_period", None) or {}
        if not isinstance(partial, dict):
            partial = partial.as_dict()

        end_date = getattr(contract, "end_date", None)
        commissions = int(liq.commissions or 0)
        overtime = int(liq.overtime_amount or 0)

        worker_contributions = (
            int(liq.pension_amount or 0) + int(liq.pension_commission_amount or 0)
            + int(liq.health_amount or 0) + int(liq.unemployment_amount or 0)
            + int(liq.voluntary_savings or 0)
        )
        health_mandatory, health_voluntary = health_split(liq)
        tax = int(liq.income_tax_amount or 0)
        other = int(liq.loan_deductions or 0) + int(liq.advance_payments or 0) + int(liq.other_deductions or 0)

        return {
            # identification
            "1101": lre_rut(getattr(emp, "rut", "")),
            "1102": lre_date(getattr(contract, "start_date", None)),
            "1103": lre_date(end_date),
            "1104": (getattr(contract, "termination_reason", None) or "") if end_date else "",
            "1105": c.default("region", getattr(company, "region_code", None)),
            "1106": c.default("commune", getattr(company, "commune_code", None)),
            "1170": c.default("tax_type"),
            "1146": c.default("foreign_technician"),
            "1107": c.default("workday_type"),
            "1141": self._code("pension_fund", liq.pension_fund, notices, who),
            "1143": self._code("health_provider", liq.health_provider, notices, who),
            "1151": c.default("afc_affiliated"),
            "1110": c.family_fund_code(getattr(settings, "family_fund", None)),
            "1152": c.work_accident_insurer_code(getattr(settings, "work_accident_insurer", None)),
            "1111": int(liq.dependents or 0),
            "1114": c.family_bracket_code(liq.family_allowance_bracket),
            # days
            "1115": int(liq.days_worked or 0),
            "1116": int(partial.get("sick_leave_days") or 0),
            "1117": int(partial.get("vacation_days") or 0),
            # taxable earnings
            "2101": int(liq.base_salary or 0),
            "2102": overtime,
            "2103": commissions,
            "2104": semana_corrida(commissions, overtime),
            "2106": int(liq.gratification or 0) + int(liq.legal_gratification or 0),
            "2111": int(liq.bonuses or 0),
            # non taxable earnings
            "2301": int(liq.food_allowance or 0),
            "2302": int(liq.transport_allowance or 0),
            "2311": int(liq.family_allowance or 0),
            # worker deductions
            "3141": int(liq.pension_amount or 0) + int(liq.pension_commission_amount or 0),
            "3143": health_mandatory,
            "3144": health_voluntary,
            "3151": int(liq.unemployment_amount or 0),
            "3155": int(liq.voluntary_savings or 0),
            "3161": tax,
            "3185": int(liq.other_deductions or 0),
            "3188": int(liq.loan_deductions or 0) + int(liq.advance_payments or 0),
            # employer contributions
            "4151": employer.unemployment,
            "4152": employer.work_accident,
            "4155": employer.sis,
            # totals
            "5201": totals.total_gross_income,
            "5210": totals.total_taxable_income,
            "5230": totals.total_non_taxable_income,
            "5301": totals.total_deductions,
            "5361": tax,
            "5341": worker_contributions,
            "5302": other,
            "5410": employer.total,
            "5501": totals.net_salary,
        }


# ---------- renderers ----------

def render_csv(records: Sequence[StatutoryExportRecord], delimiter: str = ";") -> bytes:
    """UTF-8 with BOM, one header row, one row per employee."""
    buf = io.StringIO()
    writer = csv.writer(buf, delimiter=delimiter, lineterminator="\n")
    writer.writerow(LRE_HEADERS)
    for r in records:
        writer.writerow(r.values)
    return buf.getvalue().encode("utf-8-sig")


def render_xlsx(records: Sequence[StatutoryExportRecord], title: str = "LRE") -> bytes:
    wb = Workbook()
    ws = wb.active
    ws.title = title
    ws.append(list(LRE_HEADERS))
    for r in records:
        ws.append(list(r.values))
    bio = io.BytesIO()
    wb.save(bio)
    return bio.getvalue()


def csv_filename(period: str, company_rut: Optional[str] = None) -> str:
    """libro_remuneraciones_<period>.csv, with the company RUT when known."""
    if company_rut:
        return f"libro_remuneraciones_{lre_rut(company_rut).replace('-', '')}_{period}.csv"
    return f"libro_remuneraciones_{period}.csv"
