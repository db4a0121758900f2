# Keeps one user document row per (approved employee, active template) pair
import logging
import time
from typing import Iterable, Iterator, List, Optional, Sequence, Set, Tuple

from motor.motor_asyncio import AsyncIOMotorDatabase
from pydantic import BaseModel
from pymongo.errors import BulkWriteError, PyMongoError

from document_compliance_service.app.config import settings
from document_compliance_service.app.models import (
    DocumentTemplateDB, EmployeeRecord, RetentionPolicy, UserDocumentStatusDB
)
from document_compliance_service.app.observability import sync_duration_histogram, sync_rows_created_counter, tracer
from document_compliance_service.app.service.exceptions import BatchPartialFailureError, EntityNotFoundError
from document_compliance_service.app.service.interfaces.employee_directory import AbstractEmployeeDirectory
from document_compliance_service.infrastructure.database import template_store, user_document_store

logger = logging.getLogger(__name__)

DUPLICATE_KEY_ERROR = 11000


class SyncReport(BaseModel):
    created: int = 0
    skipped: int = 0
    failed: int = 0
    chunks: int = 0
    failed_chunks: int = 0


def chunked(rows: Sequence[UserDocumentStatusDB], size: int) -> Iterator[Sequence[UserDocumentStatusDB]]:
    for start in range(0, len(rows), size):
        yield rows[start:start + size]


def _new_row(employee: EmployeeRecord, template: DocumentTemplateDB) -> UserDocumentStatusDB:
    return UserDocumentStatusDB(
        employee_id=employee.employee_id,
        employee_name=employee.display_name,
        template_id=template.id,
    )


def _eligible_unique(employees: Iterable[EmployeeRecord]) -> List[EmployeeRecord]:
    seen: Set[str] = set()
    unique = []
    for employee in employees:
        if not employee.is_eligible or employee.employee_id in seen:
            continue
        seen.add(employee.employee_id)
        unique.append(employee)
    return unique


async def _commit_in_chunks(
    db: AsyncIOMotorDatabase,
    rows: List[UserDocumentStatusDB],
    report: SyncReport,
    batch_size: Optional[int],
) -> SyncReport:
    """Writes rows chunk by chunk. A failed chunk is logged and counted; later chunks still run."""
    size = batch_size or settings.SYNC_BATCH_SIZE
    for index, chunk in enumerate(chunked(rows, size)):
        report.chunks += 1
        try:
            created = await user_document_store.bulk_create_missing(db, chunk)
        except BulkWriteError as e:
            write_errors = e.details.get("writeErrors", [])
            created = e.details.get("nUpserted", 0)
            lost_races = sum(1 for err in write_errors if err.get("code") == DUPLICATE_KEY_ERROR)
            failed = len(write_errors) - lost_races
            report.created += created
            report.skipped += len(chunk) - created - failed
            if failed:
                report.failed += failed
                report.failed_chunks += 1
                logger.error(str(BatchPartialFailureError(index, len(chunk), created, e)))
            continue
        except PyMongoError as e:
            report.failed += len(chunk)
            report.failed_chunks += 1
            logger.error(str(BatchPartialFailureError(index, len(chunk), 0, e)), exc_info=True)
            continue

        report.created += created
        # Pairs created concurrently between the pre-filter and the write
        report.skipped += len(chunk) - created
        logger.debug(f"Sync chunk {index}: {created} of {len(chunk)} rows created.")

    if report.created:
        sync_rows_created_counter.add(report.created)
    return report


def _plan_rows(
    employees: Sequence[EmployeeRecord],
    templates: Sequence[DocumentTemplateDB],
    existing: Set[Tuple[str, str]],
) -> Tuple[List[UserDocumentStatusDB], int]:
    rows = []
    skipped = 0
    for template in templates:
        for employee in employees:
            if (employee.employee_id, template.id) in existing:
                skipped += 1
                continue
            rows.append(_new_row(employee, template))
    return rows, skipped


async def initialize_for_template(
    db: AsyncIOMotorDatabase,
    template_id: str,
    directory: AbstractEmployeeDirectory,
    batch_size: Optional[int] = None,
) -> SyncReport:
    """Ensures every approved, non-admin employee has a not_started row for a newly active template."""
    with tracer.start_as_current_span("sync.initialize_for_template") as span:
        span.set_attribute("template.id", template_id)
        start_time = time.monotonic()

        template = await template_store.get_template_by_id(db, template_id)
        if template is None or not template.is_active:
            logger.warning(f"{EntityNotFoundError('Active DocumentTemplate', template_id)} Nothing to reconcile.")
            return SyncReport()

        employees = _eligible_unique(await directory.list_approved_employees())
        existing_employee_ids = await user_document_store.existing_employee_ids_for_template(db, template.id)
        existing = {(employee_id, template.id) for employee_id in existing_employee_ids}
        rows, skipped = _plan_rows(employees, [template], existing)

        report = await _commit_in_chunks(db, rows, SyncReport(skipped=skipped), batch_size)
        sync_duration_histogram.record(time.monotonic() - start_time, {"sync.trigger": "template"})
        span.set_attribute("sync.created", report.created)
        logger.info(f"Template {template.id} ({template.title}) synchronized: {report.model_dump()}")
        return report


async def initialize_for_employee(
    db: AsyncIOMotorDatabase,
    employee: EmployeeRecord,
    batch_size: Optional[int] = None,
) -> SyncReport:
    """Ensures a newly approved employee has a not_started row for every active template."""
    with tracer.start_as_current_span("sync.initialize_for_employee") as span:
        span.set_attribute("employee.id", employee.employee_id)
        start_time = time.monotonic()

        if not employee.is_eligible:
            logger.info(
                f"Employee {employee.employee_id} is not eligible (status={employee.status}, role={employee.role}); "
                f"nothing to reconcile."
            )
            return SyncReport()

        templates = await template_store.list_templates(db, RetentionPolicy.ACTIVE_ONLY)
        existing_template_ids = await user_document_store.existing_template_ids_for_employee(db, employee.employee_id)
        existing = {(employee.employee_id, template_id) for template_id in existing_template_ids}
        rows, skipped = _plan_rows([employee], templates, existing)

        report = await _commit_in_chunks(db, rows, SyncReport(skipped=skipped), batch_size)
        sync_duration_histogram.record(time.monotonic() - start_time, {"sync.trigger": "employee"})
        span.set_attribute("sync.created", report.created)
        logger.info(f"Employee {employee.employee_id} synchronized: {report.model_dump()}")
        return report


async def run_full_sweep(
    db: AsyncIOMotorDatabase,
    directory: AbstractEmployeeDirectory,
    batch_size: Optional[int] = None,
) -> SyncReport:
    """
    Cross-checks every active template against every approved employee and creates the
    missing rows. Safe to re-run at any time; a second run over unchanged inputs creates nothing.
    """
    with tracer.start_as_current_span("sync.full_sweep") as span:
        start_time = time.monotonic()

        templates = await template_store.list_templates(db, RetentionPolicy.ACTIVE_ONLY)
        employees = _eligible_unique(await directory.list_approved_employees())
        existing = await user_document_store.existing_pairs(db)
        rows, skipped = _plan_rows(employees, templates, existing)
        span.set_attribute("sync.templates", len(templates))
        span.set_attribute("sync.employees", len(employees))

        report = await _commit_in_chunks(db, rows, SyncReport(skipped=skipped), batch_size)
        sync_duration_histogram.record(time.monotonic() - start_time, {"sync.trigger": "sweep"})
        span.set_attribute("sync.created", report.created)
        logger.info(
            f"Full sweep over {len(templates)} templates x {len(employees)} employees finished: {report.model_dump()}"
        )
        return report
