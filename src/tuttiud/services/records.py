"""Tenant-scoped record access: students, session records and backups."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Mapping

from tuttiud.errors.exceptions import (
    BadRequestError,
    ForbiddenError,
    NotFoundError,
    UnknownUpstreamError,
)
from tuttiud.models.enums import Role
from tuttiud.tenancy.client import TenantStoreError
from tuttiud.tenancy.resolver import TenantContextResolver

logger = logging.getLogger(__name__)

STUDENTS_TABLE = "Students"
INSTRUCTORS_TABLE = "Instructors"
SESSION_RECORDS_TABLE = "SessionRecords"

STUDENT_COLUMNS = "id, name, contact_info, assigned_instructor_id, tags, notes"
SESSION_RECORD_COLUMNS = "id, student_id, date, content, service_context, created_at"


class RecordsService:
    def __init__(self, resolver: TenantContextResolver):
        self.resolver = resolver

    async def list_students(self, headers: Mapping[str, str], org_id: str) -> list[dict]:
        """List students; members only see the students assigned to them."""
        context = await self.resolver.resolve(headers, org_id, Role.MEMBER)
        filters = None
        if context.role == Role.MEMBER:
            filters = {"assigned_instructor_id": context.identity.user_id}

        try:
            async with context.tenant_client as client:
                return await client.select(
                    STUDENTS_TABLE, columns=STUDENT_COLUMNS, filters=filters, order="name.asc"
                )
        except TenantStoreError as exc:
            raise UnknownUpstreamError("Loading the students failed.", details=exc.as_details()) from exc

    async def create_session_record(
        self,
        headers: Mapping[str, str],
        org_id: str,
        student_id: str,
        date: str,
        content: str = "",
        service_context: str = "",
    ) -> dict | None:
        if not student_id or not date:
            raise BadRequestError("A student and a session date are required.")

        context = await self.resolver.resolve(headers, org_id, Role.MEMBER)
        try:
            async with context.tenant_client as client:
                student = await client.select_one(
                    STUDENTS_TABLE,
                    columns="id, assigned_instructor_id",
                    filters={"id": student_id},
                )
                if student is None:
                    raise NotFoundError("Student", student_id)
                if context.role == Role.MEMBER and student.get("assigned_instructor_id") != context.identity.user_id:
                    raise ForbiddenError("This student is not assigned to you.")

                record = await client.insert(
                    SESSION_RECORDS_TABLE,
                    {
                        "student_id": student_id,
                        "date": date,
                        "content": content,
                        "service_context": service_context or None,
                    },
                    returning=SESSION_RECORD_COLUMNS,
                )
        except TenantStoreError as exc:
            raise UnknownUpstreamError("Saving the session record failed.", details=exc.as_details()) from exc

        logger.info("Session record created for org %s", org_id)
        return record

    async def backup(self, headers: Mapping[str, str], org_id: str) -> dict:
        """Export the tenant's core tables in one document."""
        context = await self.resolver.resolve(headers, org_id, Role.ADMIN)
        try:
            async with context.tenant_client as client:
                students, instructors, records = await asyncio.gather(
                    client.select(STUDENTS_TABLE),
                    client.select(INSTRUCTORS_TABLE),
                    client.select(SESSION_RECORDS_TABLE),
                )
        except TenantStoreError as exc:
            raise UnknownUpstreamError("Creating the backup failed.", details=exc.as_details()) from exc

        logger.info("Backup generated for org %s", org_id)
        return {
            "generatedAt": datetime.now(timezone.utc).isoformat(),
            "students": students,
            "instructors": instructors,
            "sessionRecords": records,
        }
