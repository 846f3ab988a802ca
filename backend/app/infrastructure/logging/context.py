from contextvars import ContextVar, Token

_request_id_var: ContextVar[str | None] = ContextVar("platform_request_id", default=None)
_user_id_var: ContextVar[str | None] = ContextVar("platform_user_id", default=None)


def set_request_id(request_id: str | None) -> Token:
    return _request_id_var.set(request_id)


def reset_request_id(token: Token) -> None:
    _request_id_var.reset(token)


def bind_user_id(user_id: str | None) -> Token:
    return _user_id_var.set(user_id)


def current_log_context() -> dict[str, str]:
    """Request-scoped fields for log records; unset fields are left out."""
    context: dict[str, str] = {}
    request_id = _request_id_var.get()
    if request_id:
        context["request_id"] = request_id
    user_id = _user_id_var.get()
    if user_id:
        context["user_id"] = user_id
    return context
