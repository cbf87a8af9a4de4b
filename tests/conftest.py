import json

import httplib2
import pytest
from googleapiclient.errors import HttpError


def make_http_error(status: int, message: str = "boom") -> HttpError:
    resp = httplib2.Response({"status": status, "reason": message})
    content = json.dumps({"error": {"code": status, "message": message}}).encode()
    return HttpError(resp, content)


@pytest.fixture
def http_error():
    return make_http_error
