from datetime import datetime, date
from cl_payroll_api.extensions import db

# One row per regulatory parameter family and validity window.
STAT_CONFIG_TYPES = (
    "INDICATORS",        # UF, UTM, minimum wage
    "GRATIFICATION",     # Art. 50 rate and cap in minimum wages
    "PENSION",           # AFP rate, ceiling, fund commissions
    "HEALTH",            # 7% rate, default provider
    "UNEMPLOYMENT",      # AFC split by contract type, ceiling
    "INCOME_TAX",        # monthly brackets in UTM
    "FAMILY_ALLOWANCE",  # brackets by income
    "OVERTIME",          # factor table by weekly hours
    "EMPLOYER",          # SIS, work accident, life expectancy
    "LIMITS",            # deduction warning thresholds
    "CODES",             # LRE / Previred code tables
)


class StatConfig(db.Model):
    __tablename__ = "stat_configs"

    id = db.Column(db.Integer, primary_key=True)
    type = db.Column(db.Enum(*STAT_CONFIG_TYPES, name="statconfig_type"), nullable=False)
    key = db.Column(db.String(80), nullable=False)
    value_json = db.Column(db.JSON, nullable=False)

    # Scoping: company specific or global (NULL)
    scope_company_id = db.Column(db.Integer, db.ForeignKey("companies.id"), nullable=True)
    priority = db.Column(db.Integer, nullable=False, default=100)

    effective_from = db.Column(db.Date, nullable=False, default=date.today)
    effective_to = db.Column(db.Date)
    closed_at = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    __table_args__ = (
        db.Index(
            "ix_statcfg_resolve",
            "type",
            "scope_company_id",
            "effective_from",
            "effective_to",
            "priority",
        ),
    )

    def as_dict(self):
        return {
            "id": self.id,
            "type": self.type,
            "key": self.key,
            "scope_company_id": self.scope_company_id,
            "priority": self.priority,
            "effective_from": self.effective_from.isoformat() if self.effective_from else None,
            "effective_to": self.effective_to.isoformat() if self.effective_to else None,
            "closed_at": self.closed_at.isoformat() if self.closed_at else None,
            "value": self.value_json,
        }
