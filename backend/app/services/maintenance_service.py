import logging

from sqlalchemy.orm import Session

from app.repositories.cart_candidate_repository import CartCandidateRepository
from app.schemas.recovery import MaintenanceSummary
from app.services.journey_service import RecoveryJourneyService

logger = logging.getLogger(__name__)

CANDIDATE_BATCH_LIMIT = 200


class RecoveryMaintenanceService:
    """Promotes quiet carts into journeys and closes journeys that can no longer run."""

    def __init__(self, db: Session):
        self.db = db
        self.journeys = RecoveryJourneyService(db)
        self.candidate_repo = CartCandidateRepository(db)

    def run(self, limit: int = CANDIDATE_BATCH_LIMIT) -> MaintenanceSummary:
        summary = MaintenanceSummary()
        campaign = self.journeys.get_campaign()
        if campaign.enabled:
            candidates = self.candidate_repo.list_due(campaign.inactivity_minutes, limit=limit)
            summary.candidates_checked = len(candidates)
            for candidate in candidates:
                if self.journeys.promote_candidate(candidate, campaign) is not None:
                    summary.promoted += 1

        summary.expired = self.journeys.close_expired_journeys()
        summary.cancelled = self.journeys.close_empty_cart_journeys()

        if summary.promoted or summary.expired or summary.cancelled:
            logger.info(
                "Recovery maintenance: promoted=%s expired=%s cancelled=%s",
                summary.promoted,
                summary.expired,
                summary.cancelled,
            )
        return summary
