# cl_payroll_api/models/__init__.py

def load_all():
    """Import every model module so the metadata is complete before create_all / migrations."""
    from . import master, employee  # noqa: F401
    from .payroll import stat_config, liquidation, payroll_book  # noqa: F401
