"""
Pytest configuration and shared fixtures.
"""
import json
import os
from typing import Any, Callable, List, Optional, Tuple

import httpx
import pytest
from dotenv import load_dotenv

from dify_client import log

load_dotenv()


class RecordingLogger:
    """Logger that keeps (level, message) pairs for assertions."""

    def __init__(self):
        self.records: List[Tuple[str, str]] = []
        self._level = log.Level.DEBUG

    def _record(self, level: str, msg: str, *args: Any) -> None:
        self.records.append((level, msg % args if args else msg))

    def debug(self, msg, *args):
        self._record("debug", msg, *args)

    def info(self, msg, *args):
        self._record("info", msg, *args)

    def warn(self, msg, *args):
        self._record("warn", msg, *args)

    def error(self, msg, *args):
        self._record("error", msg, *args)

    def fatal(self, msg, *args):
        self._record("fatal", msg, *args)

    def set_level(self, level):
        self._level = level

    def get_level(self):
        return self._level

    def messages(self, level: str) -> List[str]:
        return [m for lv, m in self.records if lv == level]


@pytest.fixture
def recording_logger():
    return RecordingLogger()


@pytest.fixture
def test_base_url():
    """Base URL of the stub Dify server"""
    return "http://test-dify.local"


@pytest.fixture
def api_key():
    return "app-test-key"


@pytest.fixture
def sse_body():
    """Encode a list of payloads as an SSE body, one ``data:`` line per payload."""
    def _encode(payloads: List[Any], *, separator: bytes = b"\n\n") -> bytes:
        lines = []
        for payload in payloads:
            data = payload if isinstance(payload, (bytes, str)) else json.dumps(payload)
            if isinstance(data, str):
                data = data.encode()
            lines.append(b"data: " + data)
        return separator.join(lines) + b"\n"
    return _encode


@pytest.fixture
def recorder():
    """Build an ``httpx.MockTransport`` that records every request it serves."""
    def _create(handler: Callable[[httpx.Request], Any]) -> Tuple[httpx.MockTransport, List[httpx.Request]]:
        calls: List[httpx.Request] = []

        async def _handle(request: httpx.Request):
            calls.append(request)
            result = handler(request)
            if not isinstance(result, httpx.Response):
                result = await result
            return result

        return httpx.MockTransport(_handle), calls
    return _create


@pytest.fixture
def sample_workflow_response():
    """Blocking workflow run response"""
    return {
        "workflow_run_id": "djflajgkldjgd",
        "task_id": "9da23599-e713-473b-982c-4328d4f5c78a",
        "data": {
            "id": "fdlsjfjejkghjda",
            "workflow_id": "fldjaslkfjlsda",
            "status": "succeeded",
            "outputs": {"text": "Nice to meet you."},
            "error": None,
            "elapsed_time": 0.875,
            "total_tokens": 3562,
            "total_steps": 8,
            "created_at": 1705407629,
            "finished_at": 1727807631,
        },
    }


@pytest.fixture
def sample_stream_events():
    """Workflow events as streamed by Dify"""
    return [
        {
            "event": "workflow_started",
            "task_id": "5ad4cb98-f0c7-4085-b384-88c403be6290",
            "workflow_run_id": "5ad498-f0c7-4085-b384-88cbe6290",
            "data": {"id": "5ad498-f0c7-4085-b384-88cbe6290", "workflow_id": "dfjasklfjdslag", "created_at": 1679586595},
        },
        {
            "event": "node_finished",
            "task_id": "5ad4cb98-f0c7-4085-b384-88c403be6290",
            "workflow_run_id": "5ad498-f0c7-4085-b384-88cbe6290",
            "data": {"id": "fdlsjfjejkghjda", "status": "succeeded", "elapsed_time": 0.324, "created_at": 1679586595},
        },
        {
            "event": "workflow_finished",
            "task_id": "5ad4cb98-f0c7-4085-b384-88c403be6290",
            "workflow_run_id": "5ad498-f0c7-4085-b384-88cbe6290",
            "data": {
                "id": "5ad498-f0c7-4085-b384-88cbe6290",
                "workflow_id": "dfjasklfjdslag",
                "status": "succeeded",
                "outputs": {"text": "done"},
                "elapsed_time": 0.324,
                "total_tokens": 63127864,
                "total_steps": 2,
                "created_at": 1679586595,
                "finished_at": 1679976595,
            },
        },
    ]


@pytest.fixture
def real_api_keys():
    """Real credentials (integration tests only)"""
    return {
        "base_url": os.getenv("DIFY_BASE_URL", "https://api.dify.ai"),
        "workflow": os.getenv("DIFY_API_KEY"),
    }


def pytest_configure(config):
    config.addinivalue_line(
        "markers", "integration: integration tests (need a real API key)"
    )
    config.addinivalue_line(
        "markers", "unit: unit tests (mocked transport)"
    )
