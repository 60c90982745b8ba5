from dataclasses import dataclass
from motor.motor_asyncio import AsyncIOMotorDatabase
from typing import Optional

from app.core.clock import Clock
from app.core.events import DomainEvent, EventBus
from app.services.challenge.audit import AuditService
from app.services.challenge.challenge import ChallengeService
from app.services.challenge.submission import SubmissionService
from app.services.challenge.voting import VotingService
from app.services.gamification.achievements import AchievementService
from app.services.gamification.profile import ProfileService


@dataclass
class Services:
    """Wired service graph shared by routes and scheduler jobs"""
    db: AsyncIOMotorDatabase
    bus: EventBus
    clock: Clock
    audit: AuditService
    profiles: ProfileService
    voting: VotingService
    submissions: SubmissionService
    challenges: ChallengeService
    achievements: AchievementService


def build_services(
    db: AsyncIOMotorDatabase,
    bus: EventBus,
    clock: Optional[Clock] = None
) -> Services:
    """Create every service on one database/bus/clock and subscribe the event handlers"""
    clock = clock or Clock()

    audit = AuditService(db, clock)
    profiles = ProfileService(db, bus, clock)
    voting = VotingService(db, bus, clock)
    submissions = SubmissionService(db, bus, clock, profiles)
    challenges = ChallengeService(db, bus, clock, profiles, voting, audit)
    achievements = AchievementService(db, bus, clock)

    bus.subscribe(DomainEvent.ACCOUNT_CREATED, profiles.handle_account_created)
    achievements.subscribe()

    return Services(
        db=db,
        bus=bus,
        clock=clock,
        audit=audit,
        profiles=profiles,
        voting=voting,
        submissions=submissions,
        challenges=challenges,
        achievements=achievements
    )
