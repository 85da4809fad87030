"""OperationResult: the discriminated value every request operation returns."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from .errors import MeruError


class OperationError(BaseModel):
    model_config = {"frozen": True}

    kind: str
    message: str
    status_hint: int


class OperationResult(BaseModel):
    """Outcome of one request operation.

    Attributes:
        ok: Whether the operation succeeded.
        op: Name of the operation (e.g. ``"CreateAccount"``).
        data: Operation-specific fields on success.
        warnings: Non-fatal issues, such as a failed invite mail.
        error: Populated when ``ok`` is False.
    """

    model_config = {"frozen": True}

    ok: bool
    op: str
    data: dict[str, Any] = Field(default_factory=dict)
    warnings: list[str] = Field(default_factory=list)
    error: OperationError | None = None

    @classmethod
    def success(cls, op: str, data: dict[str, Any] | None = None, warnings: list[str] | None = None) -> "OperationResult":
        return cls(ok=True, op=op, data=data or {}, warnings=warnings or [])

    @classmethod
    def failure(cls, op: str, exc: MeruError) -> "OperationResult":
        return cls(
            ok=False,
            op=op,
            error=OperationError(kind=exc.kind.value, message=exc.message, status_hint=exc.status_hint),
        )

    @property
    def status_hint(self) -> int:
        return self.error.status_hint if self.error is not None else 200

    def to_payload(self) -> dict[str, Any]:
        """Flatten into ``{ok: true, ...}`` or ``{ok: false, errorKind, message, statusHint}``."""

        if self.error is not None:
            return {
                "ok": False,
                "errorKind": self.error.kind,
                "message": self.error.message,
                "statusHint": self.error.status_hint,
            }
        payload: dict[str, Any] = {"ok": True, **self.data}
        if self.warnings:
            payload["warnings"] = list(self.warnings)
        return payload


__all__ = ["OperationError", "OperationResult"]
