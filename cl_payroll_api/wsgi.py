from cl_payroll_api import create_app

app = create_app()
