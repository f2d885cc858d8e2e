"""The uniform result shape returned by every voice function."""

from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel


class VoiceFunctionResult(BaseModel):
    """Success flag, a speakable message, and a payload on success only."""

    success: bool
    message: str
    data: dict[str, Any] = {}
    error: Optional[str] = None

    @classmethod
    def ok(cls, message: str, **data: Any) -> "VoiceFunctionResult":
        return cls(success=True, message=message, data=data)

    @classmethod
    def fail(cls, message: str, error: str) -> "VoiceFunctionResult":
        return cls(success=False, message=message, error=error)

    def as_payload(self) -> dict[str, Any]:
        """Flatten into the wire shape the voice agent platform expects."""
        payload: dict[str, Any] = {"success": self.success, "message": self.message}
        if self.success:
            payload.update(self.data)
        else:
            payload["error"] = self.error
        return payload
