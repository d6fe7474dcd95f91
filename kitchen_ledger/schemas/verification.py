"""Schemas for repair results."""

from pydantic import BaseModel


class RepairOutcome(BaseModel):
    """
    What one corrective step did.

    ok is False when the step failed and was rolled back;
    details then carries the error.
    """
    action: str
    details: str = ""
    ok: bool = True
