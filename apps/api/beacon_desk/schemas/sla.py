from pydantic import BaseModel


class SlaConfigOut(BaseModel):
    config: dict[str, int]


class SlaRunOut(BaseModel):
    warnings_sent: int
    breaches_sent: int
    reminders_sent: int
    auto_closed: int
    total_tickets: int
    errors: int
