"""Wiring of the engine components around one repository and channel."""

from dataclasses import dataclass

from cuidador.channels.base import NotificationChannel
from cuidador.config import Config
from cuidador.db.repository import Repository
from cuidador.engine.escalation import EscalationSweeper
from cuidador.engine.opt_out import OptOutHandler
from cuidador.engine.registration import RegistrationService
from cuidador.engine.reporting import ReportService
from cuidador.engine.responder import ResponseHandler
from cuidador.engine.scheduler import Scheduler
from cuidador.utils.time_utils import Clock


@dataclass
class Services:
    config: Config
    clock: Clock
    repo: Repository
    channel: NotificationChannel
    scheduler: Scheduler
    responder: ResponseHandler
    opt_out: OptOutHandler
    sweeper: EscalationSweeper
    reports: ReportService
    registration: RegistrationService


def build_services(
    config: Config,
    repo: Repository,
    channel: NotificationChannel,
    clock: Clock | None = None,
) -> Services:
    """Construct every component with explicit dependencies."""
    clock = clock or Clock(config.timezone)
    opt_out = OptOutHandler(repo, channel, clock)
    return Services(
        config=config,
        clock=clock,
        repo=repo,
        channel=channel,
        scheduler=Scheduler(repo, channel, config, clock),
        responder=ResponseHandler(repo, channel, config, clock, opt_out),
        opt_out=opt_out,
        sweeper=EscalationSweeper(repo, channel, config, clock),
        reports=ReportService(repo, channel, clock),
        registration=RegistrationService(repo, channel, config),
    )
