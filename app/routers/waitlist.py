from fastapi import APIRouter, Depends, Query

from ..deps import Container, get_container
from .. import schemas

router = APIRouter(prefix="/waitlist", tags=["waitlist"])

@router.get("/slot/{slot_id}", response_model=schemas.WaitlistResponse)
def waitlist_for_slot(slot_id: str, c: Container = Depends(get_container)):
    entries = c.queue.list_for_slot(slot_id)
    return schemas.WaitlistResponse(entries=[schemas.WaitlistEntryOut.model_validate(e) for e in entries])

@router.get("/student/{student_id}", response_model=schemas.WaitlistResponse)
def waitlist_for_student(student_id: str, c: Container = Depends(get_container)):
    entries = c.queue.list_for_student(student_id)
    return schemas.WaitlistResponse(entries=[schemas.WaitlistEntryOut.model_validate(e) for e in entries])

@router.delete("/{slot_id}")
def waitlist_withdraw(slot_id: str, student_id: str = Query(..., min_length=1), c: Container = Depends(get_container)):
    c.controller.withdraw(student_id, slot_id)
    return {"ok": True, "slot_id": slot_id, "student_id": student_id}
