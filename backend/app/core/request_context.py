"""Per-request values that log records pick up automatically."""

from contextvars import ContextVar

request_id_var: ContextVar[str] = ContextVar("request_id", default="-")
developer_id_var: ContextVar[str] = ContextVar("developer_id", default="-")
