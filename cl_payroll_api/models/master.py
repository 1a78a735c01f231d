from datetime import datetime

from sqlalchemy.sql import func

from cl_payroll_api.extensions import db


class Company(db.Model):
    """
    An employer. Identification fields feed the payroll book and exports:

      rut                -> company tax id, e.g. "76.123.456-7"
      region_code        -> LRE region where services are rendered (optional)
      commune_code       -> LRE commune code (optional)
      work_accident_rate -> company specific mutual premium; falls back to
                            the regulatory default when NULL
    """

    __tablename__ = "companies"

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(50), unique=True, nullable=False)
    name = db.Column(db.String(255), nullable=False)
    rut = db.Column(db.String(20), nullable=True)

    region_code = db.Column(db.String(4), nullable=True)
    commune_code = db.Column(db.String(8), nullable=True)
    work_accident_rate = db.Column(db.Numeric(6, 5), nullable=True)

    is_active = db.Column(db.Boolean, default=True, nullable=False)
    deleted_at = db.Column(db.DateTime(timezone=True))
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    def soft_delete(self):
        self.is_active = False
        self.deleted_at = func.now()
