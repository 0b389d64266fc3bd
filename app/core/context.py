import contextvars

_worker: contextvars.ContextVar[str] = contextvars.ContextVar("worker", default="-")
_request_id: contextvars.ContextVar[str] = contextvars.ContextVar("request_id", default="-")


def set_worker(name: str) -> None:
    _worker.set(name)


def get_worker() -> str:
    return _worker.get()


def set_request_id(request_id: str) -> None:
    _request_id.set(request_id)


def get_request_id() -> str:
    return _request_id.get()


def clear_context() -> None:
    _worker.set("-")
    _request_id.set("-")
