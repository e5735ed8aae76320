from pydantic import BaseModel

# Fields stay optional here so the visit service can report every missing
# field in one response instead of failing on the first.


class VisitorRequestCreate(BaseModel):
    hostId: str | None = None
    purpose: str | None = None
    company: str | None = None
    notes: str | None = None
    startTime: str | None = None
    endTime: str | None = None


class PreApprovalCreate(BaseModel):
    visitorName: str | None = None
    visitorEmail: str | None = None
    visitorContact: str | None = None
    purpose: str | None = None
    company: str | None = None
    startTime: str | None = None
    endTime: str | None = None
    notes: str | None = None


class VisitDecisionPayload(BaseModel):
    status: str | None = None
