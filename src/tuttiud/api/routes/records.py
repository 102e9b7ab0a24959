"""Tenant record passthroughs (students, session records, backup)."""

from fastapi import APIRouter, Query, Request

from tuttiud.dependencies import Records
from tuttiud.models.setup import SessionRecordRequest

router = APIRouter(tags=["Records"])


@router.get("/students")
async def list_students(request: Request, service: Records, org_id: str = Query("", alias="orgId")) -> dict:
    students = await service.list_students(request.headers, org_id.strip())
    return {"success": True, "students": students}


@router.post("/session-records", status_code=201)
async def create_session_record(body: SessionRecordRequest, request: Request, service: Records) -> dict:
    record = await service.create_session_record(
        request.headers,
        body.org_id.strip(),
        body.student_id.strip(),
        body.date.strip(),
        content=body.content,
        service_context=body.service_context,
    )
    return {"success": True, "record": record}


@router.get("/backup")
async def backup(request: Request, service: Records, org_id: str = Query("", alias="orgId")) -> dict:
    payload = await service.backup(request.headers, org_id.strip())
    return {"success": True, **payload}
