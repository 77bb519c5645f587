from pydantic import BaseModel, Field
from typing import List
from uuid import UUID
from datetime import datetime


class SequenceOut(BaseModel):
    id: UUID
    key: str
    current_value: int
    updated_at: datetime

    class Config:
        from_attributes = True


class SequenceList(BaseModel):
    sequences: List[SequenceOut]


class SequenceSet(BaseModel):
    current_value: int = Field(..., ge=0, description="Último valor emitido; el próximo documento usará este + 1")


class SequenceSyncResult(BaseModel):
    success: bool
    updated: int
