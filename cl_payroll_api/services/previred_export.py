"""Previred contribution file: one `;` separated line of 105 fields per employee, no header."""
from __future__ import annotations

import unicodedata
from dataclasses import dataclass, field
from typing import Any, List, Optional, Sequence

from cl_payroll_api.common.notices import ConfigurationFallbackNotice
from .liquidation_calc import compute_totals, employer_costs
from .lre_export import ExportEntry
from .money import round_clp
from .regulatory_config import RegulatoryParams
from .rut import split_rut
from .statutory_codes import StatutoryCodeResolver

PREVIRED_FIELD_COUNT = 105
TXT_MIMETYPE = "text/plain; charset=utf-8"


def ascii_text(text: Optional[str]) -> str:
    s = unicodedata.normalize("NFKD", text or "")
    return "".join(ch for ch in s if not unicodedata.combining(ch)).replace(";", " ").strip()


def previred_period(year: int, month: int) -> str:
    return f"{month:02d}{year:04d}"


@dataclass
class PreviredLine:
    employee_id: Optional[int]
    fields: List[str]
    notices: List[ConfigurationFallbackNotice] = field(default_factory=list)

    def render(self) -> str:
        return ";".join(self.fields)


class PreviredExporter:
    def __init__(self, params: RegulatoryParams, resolver: StatutoryCodeResolver, company=None):
        self.params = params
        self.codes = resolver
        self.company = company

    def lines(self, entries: Sequence[ExportEntry], year: int, month: int) -> List[PreviredLine]:
        return [self.line(e, year, month) for e in entries]

    def line(self, entry: ExportEntry, year: int, month: int) -> PreviredLine:
        p = self.params
        liq, emp, contract, settings = entry.liquidation, entry.employee, entry.contract, entry.settings
        notices: List[ConfigurationFallbackNotice] = []
        period = previred_period(year, month)
        number, dv = split_rut(getattr(emp, "rut", ""))

        totals = compute_totals(liq)
        taxable = totals.total_taxable_income
        pension_base = min(taxable, p.pension_ceiling())
        health_base = min(taxable, p.health_ceiling())
        afc_base = min(taxable, p.unemployment_ceiling())
        contract_type = liq.contract_type or p.default_contract_type
        employer = employer_costs(taxable, contract_type, p, getattr(self.company, "work_accident_rate", None))
        life_expectancy = round_clp(pension_base * p.life_expectancy_rate)

        afp_code = self.codes.pension_fund_code(liq.pension_fund)
        if self.codes.is_fallback("pension_fund", liq.pension_fund):
            notices.append(ConfigurationFallbackNotice(
                setting="previred.pension_fund", default_used=afp_code,
                message=f"{number}-{dv}: pension fund {liq.pension_fund!r} has no Previred code",
            ))
        public_health = p.is_public_health(liq.health_provider or p.default_health_provider)
        health_code = self.codes.health_provider_code(liq.health_provider)
        health_amount = int(liq.health_amount or 0)

        days = int(liq.days_worked or 30)
        movement = "5" if days < 30 else "0"
        start = getattr(contract, "start_date", None)
        movement_from = start.strftime("%d-%m-%Y") if movement != "0" and start else ""

        dependents = int(liq.dependents or 0)
        bracket = self.codes.family_bracket_code(liq.family_allowance_bracket) if dependents else "D"
        gender = (getattr(emp, "gender", None) or "M").upper()[:1]
        ccaf_code = self.codes.family_fund_code(getattr(settings, "family_fund", None))
        mutual_code = self.codes.work_accident_insurer_code(getattr(settings, "work_accident_insurer", None))
        uses_mutual = not self.codes.is_fallback("work_accident_insurer", getattr(settings, "work_accident_insurer", None))

        f: List[Any] = [
            # 1-14 worker
            number, dv,
            ascii_text(getattr(emp, "last_name", "")),
            ascii_text(getattr(emp, "mother_last_name", "")),
            ascii_text(getattr(emp, "first_name", "")),
            "F" if gender == "F" else "M",
            "0",            # nationality
            "01",           # payment type: remuneraciones
            period, period,
            "AFP",
            "0",            # active worker
            days,
            "00",           # main line
            # 15-25 movement and family allowance
            movement, movement_from, "",
            bracket, dependents, 0, 0,
            int(liq.family_allowance or 0), 0, 0,
            "N",
            # 26-39 AFP
            afp_code, pension_base,
            int(liq.pension_amount or 0) + int(liq.pension_commission_amount or 0),
            employer.sis,
            0, 0, "00,00", 0, "00", "", "", "", "00,00", 0,
            # 40-49 APV
            "000", "", 0, int(liq.voluntary_savings or 0), 0, "000", "", 0, 0, 0,
            # 50-61 voluntary affiliate
            0, "", "", "", "", 0, "", "", 0, 0, 0, 0,
            # 62-74 IPS / ISL / FONASA
            "0000", "00,00",
            health_base if public_health else 0,
            0, 0, "0000", "00,00", 0,
            health_amount if public_health else 0,
            0 if uses_mutual else employer.work_accident,
            0, 0, 0,
            # 75-82 health
            health_code, "",
            0 if public_health else health_base,
            "1", 0,
            0 if public_health else health_amount,
            0, 0,
            # 83-95 CCAF
            ccaf_code, taxable if ccaf_code.strip("0") else 0,
            0, 0, 0, 0, 0, 0, 0, 0,
            "1",            # full time
            life_expectancy,
            0,
            # 96-99 mutual
            mutual_code,
            pension_base if uses_mutual else 0,
            employer.work_accident if uses_mutual else 0,
            0,
            # 100-102 AFC
            afc_base, int(liq.unemployment_amount or 0), employer.unemployment,
            # 103-105
            0, "", "",
        ]
        fields = [str(x) for x in f]
        if len(fields) != PREVIRED_FIELD_COUNT:
            raise ValueError(f"Previred line has {len(fields)} fields, expected {PREVIRED_FIELD_COUNT}")
        return PreviredLine(employee_id=getattr(emp, "id", None), fields=fields, notices=notices)


def render_previred(lines: Sequence[PreviredLine]) -> bytes:
    return "\n".join(line.render() for line in lines).encode("utf-8")


def previred_filename(year: int, month: int, company_rut: Optional[str] = None) -> str:
    number, dv = split_rut(company_rut or "")
    suffix = f"{number}{dv}" if number else "empresa"
    return f"previred_{previred_period(year, month)}_{suffix}.txt"
