from typing import Any, Dict, Optional


def success_response(data: Any = None, message: str = "success") -> Dict:
    return {"success": True, "message": message, "data": data}


def error_response(code: str, message: str, details: Optional[Dict] = None) -> Dict:
    body = {"success": False, "error": message, "code": code}
    if details:
        body["details"] = details
    return body
