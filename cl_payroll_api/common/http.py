# cl_payroll_api/common/http.py
import json
from io import BytesIO

from flask import jsonify, send_file

NOTICES_HEADER = "X-Payroll-Notices"

def ok(data=None, status=200, **meta):
    payload = {"success": True, "data": data}
    if meta:
        payload["meta"] = meta
    return jsonify(payload), status

def fail(message="Bad Request", status=400, code=None, detail=None):
    err = {"message": message}
    if code: err["code"] = code
    if detail: err["detail"] = detail
    return jsonify({"success": False, "error": err}), status

def attachment(content: bytes, filename: str, mimetype: str, notices=None):
    """Stream `content` as a download. Notices travel in a response header as JSON."""
    resp = send_file(BytesIO(content), mimetype=mimetype, as_attachment=True, download_name=filename)
    if notices:
        resp.headers[NOTICES_HEADER] = json.dumps(notices, ensure_ascii=True, separators=(",", ":"))
    return resp
