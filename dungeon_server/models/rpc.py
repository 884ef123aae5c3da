"""Wire format of the settlement protocol.

Requests are ``{"req": [id, method, params, timestamp], "sig": [...]}``.
Responses are ``{"res": [id, method, params, timestamp]}`` or
``{"err": [id, code, message]}``; a ``res`` whose method is ``error``
is treated the same as ``err``.
"""

import json
import logging
import time
from dataclasses import dataclass
from typing import Any

log = logging.getLogger(__name__)

ERROR_METHOD = "error"


@dataclass
class Frame:
    request_id: Any
    method: str | None
    params: Any = None
    error_code: Any = None
    error_message: str | None = None

    @property
    def is_error(self) -> bool:
        return self.error_message is not None


def now_ms() -> int:
    return int(time.time() * 1000)


def build_request(request_id: Any, method: str, params: Any, timestamp: int | None = None) -> list:
    return [request_id, method, params, timestamp if timestamp is not None else now_ms()]


def parse_frame(raw: str | bytes) -> Frame | None:
    try:
        message = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError):
        log.warning(f"Dropping non-JSON frame: {raw!r:.80}")
        return None
    if not isinstance(message, dict):
        return None

    res = message.get("res")
    if isinstance(res, list) and len(res) >= 3:
        request_id, method, params = res[0], res[1], res[2]
        if method == ERROR_METHOD:
            error = params.get("error") if isinstance(params, dict) else params
            return Frame(request_id, method, params, error_message=str(error or "Unknown error"))
        return Frame(request_id, method, params)

    err = message.get("err")
    if isinstance(err, list) and len(err) >= 3:
        return Frame(err[0], None, error_code=err[1], error_message=str(err[2]))

    return None
