"""HTTP entry points: inbound WhatsApp webhook, ops triggers and reports."""

from __future__ import annotations

import functools
import logging
from datetime import date
from typing import Any, Awaitable, Callable

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse, PlainTextResponse

from cuidador.api.schemas import (
    ManualReminderRequest,
    RegistrationRequest,
    OutboundMessageRequest,
    serialize,
)
from cuidador.channels.base import ChannelRouter, normalize_address
from cuidador.db.models import EmergencyContact, Guardian, Medication, Subject
from cuidador.engine.registration import PlanLimitExceeded
from cuidador.services import Services
from cuidador.utils.constants import DEFAULT_EXPORT_DAYS

logger = logging.getLogger(__name__)


def _error(status_code: int, message: str, **extra: Any) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "error": message, **extra},
    )


def guarded(name: str) -> Callable:
    """Convert unexpected failures of an endpoint into a JSON 500 response."""

    def decorator(func: Callable[..., Awaitable[Any]]) -> Callable[..., Awaitable[Any]]:
        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            try:
                return await func(*args, **kwargs)
            except HTTPException:
                raise
            except Exception as e:
                logger.exception(f"{name} error: {e}")
                return _error(500, str(e) or "Internal server error")

        return wrapper

    return decorator


async def _read_payload(request: Request) -> dict[str, Any]:
    """Read a webhook body sent either as JSON or as a Twilio form post."""
    content_type = request.headers.get("content-type", "")
    if content_type.startswith("application/json"):
        try:
            data = await request.json()
        except ValueError:
            return {}
        return data if isinstance(data, dict) else {}

    form = await request.form()
    return {key: value for key, value in form.items() if isinstance(value, str)}


def create_app(services: Services) -> FastAPI:
    app = FastAPI(title="Cuidador", docs_url=None, redoc_url=None)

    @app.post("/webhooks/whatsapp")
    @guarded("Webhook")
    async def whatsapp_webhook(request: Request):
        payload = await _read_payload(request)
        sender = payload.get("From") or payload.get("from")
        body = payload.get("Body") or payload.get("body")

        if not sender or not body:
            return _error(400, "Missing From or Body")

        logger.info(f"WhatsApp webhook from {sender} (sid {payload.get('MessageSid', '-')})")

        try:
            normalize_address(str(sender), services.config.default_country_code)
        except ValueError as e:
            return _error(400, str(e))

        outcome = await services.responder.handle(str(sender), str(body))

        return {
            "success": True,
            "action": outcome.action.value,
            "response": outcome.response,
            "status": outcome.status.value if outcome.status else None,
            "occurrence_id": outcome.occurrence_id,
            "followup_id": outcome.followup_id,
            "detail": outcome.detail,
        }

    @app.post("/debug/scheduler")
    @guarded("Scheduler trigger")
    async def trigger_scheduler():
        logger.info("Manual trigger: scheduler tick")
        result = await services.scheduler.tick()
        return {
            "success": True,
            "message": "Scheduler tick executed manually",
            "result": serialize(result),
            "timestamp": services.clock.now().isoformat(),
        }

    @app.post("/debug/sweeper")
    @guarded("Sweeper trigger")
    async def trigger_sweeper():
        logger.info("Manual trigger: escalation sweep")
        result = await services.sweeper.sweep()
        return {
            "success": True,
            "message": "Escalation sweep executed manually",
            "result": serialize(result),
            "timestamp": services.clock.now().isoformat(),
        }

    @app.post("/debug/daily-reports")
    @guarded("Daily report trigger")
    async def trigger_daily_reports(day: date | None = Query(default=None, alias="date")):
        logger.info("Manual trigger: daily reports")
        sent = await services.reports.send_daily_reports(day)
        return {
            "success": True,
            "message": "Daily reports executed manually",
            "sent": sent,
            "timestamp": services.clock.now().isoformat(),
        }

    @app.post("/debug/test-message")
    @guarded("Test message")
    async def send_test_message(request: OutboundMessageRequest):
        try:
            address = normalize_address(request.to, services.config.default_country_code)
        except ValueError as e:
            return _error(400, str(e))

        logger.info(f"Manual trigger: test message to {address}")
        result = await services.channel.send(address, request.message)
        if not result.success:
            return _error(502, result.error or "Send failed", provider_id=result.provider_id)
        return {
            "success": True,
            "provider_id": result.provider_id,
            "status": result.status,
            "to": address,
        }

    @app.get("/health")
    async def health():
        now = services.clock.now()
        try:
            counts = await services.repo.get_counts()
        except Exception as e:
            logger.error(f"Health check error: {e}")
            return JSONResponse(
                status_code=500,
                content={"status": "error", "error": str(e), "timestamp": now.isoformat()},
            )

        channel = services.channel
        if isinstance(channel, ChannelRouter):
            channels = channel.status()
        else:
            channels = {channel.name: channel.configured}

        return {
            "status": "healthy",
            "timestamp": now.isoformat(),
            "local_time": services.clock.local(now).isoformat(),
            "services": {"store": True, **channels},
            "environment": {
                "timezone": services.config.timezone,
                "snooze_delay_minutes": services.config.snooze_delay_minutes,
                "unanswered_threshold_minutes": services.config.unanswered_threshold_minutes,
                "reply_lookback_minutes": services.config.reply_lookback_minutes,
            },
            "database": counts,
        }

    @app.get("/reports/{subject_id}")
    @guarded("Report generation")
    async def subject_report(subject_id: int, day: date | None = Query(default=None, alias="date")):
        if not await services.repo.get_subject(subject_id):
            return _error(404, "Subject not found")

        report = await services.reports.daily_report(subject_id, day)
        stats = report.stats
        return {
            "success": True,
            "data": {
                "date": report.day.isoformat(),
                "stats": stats.to_dict(),
                "occurrences": [serialize(o) for o in report.occurrences],
                "summary": {
                    "adherence_rate": stats.adherence_rate,
                    "total": stats.total,
                    "taken": stats.taken,
                    "missed": stats.not_taken,
                },
            },
        }

    @app.get("/reports/{subject_id}/csv")
    @guarded("CSV generation")
    async def subject_report_csv(subject_id: int, days: int = Query(default=DEFAULT_EXPORT_DAYS, ge=1)):
        if not await services.repo.get_subject(subject_id):
            return _error(404, "Subject not found")

        csv_text = await services.reports.export_csv(subject_id, days)
        filename = f"occurrences_{subject_id}_{services.clock.today().isoformat()}.csv"
        return PlainTextResponse(
            csv_text,
            media_type="text/csv",
            headers={"Content-Disposition": f'attachment; filename="{filename}"'},
        )

    @app.post("/reminders/manual")
    @guarded("Manual reminder")
    async def manual_reminder(request: ManualReminderRequest):
        result = await services.scheduler.send_manual(request.subject_id, request.medication_id)
        if not result.found:
            return _error(404, "Subject or medication not found")
        return {
            "success": True,
            "data": {
                "occurrence_id": result.occurrence_id,
                "sent": result.sent,
                "provider_id": result.provider_id,
                "error": result.error,
            },
        }

    @app.post("/registrations")
    @guarded("Registration")
    async def register(request: RegistrationRequest):
        if not request.consent:
            return _error(400, "Consent is required")

        try:
            result = await services.registration.register(
                guardian=Guardian(
                    name=request.guardian.name,
                    address=request.guardian.address,
                    plan=request.guardian.plan,
                ),
                subject=Subject(guardian_id=0, name=request.subject.name, address=request.subject.address),
                contacts=[
                    EmergencyContact(subject_id=0, name=c.name, address=c.address)
                    for c in request.contacts
                ],
                medications=[
                    Medication(
                        subject_id=0,
                        name=m.name,
                        dosage=m.dosage,
                        times=list(m.times),
                        weekdays=list(m.weekdays),
                    )
                    for m in request.medications
                ],
            )
        except PlanLimitExceeded as e:
            return _error(
                400,
                str(e),
                plan_limits={"plan": e.plan, "current": e.current, "limit": e.limit},
            )
        except ValueError as e:
            return _error(400, str(e))

        return {
            "success": True,
            "data": {
                "guardian_id": result.guardian.id,
                "subject_id": result.subject.id,
                "contacts_count": len(result.contacts),
                "medications_count": len(result.medications),
                "medication_ids": [m.id for m in result.medications],
                "welcome_sent": result.welcome_sent,
                "welcome_provider_id": result.welcome_provider_id,
            },
        }

    return app
