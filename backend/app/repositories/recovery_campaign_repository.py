"""RecoveryCampaign repository for the singleton campaign row."""

from typing import Any

from sqlalchemy.orm import Session

from app.models.recovery_campaign import RecoveryCampaign

CAMPAIGN_ROW_ID = 1


class RecoveryCampaignRepository:
    def __init__(self, db: Session):
        self.db = db

    def get(self) -> RecoveryCampaign | None:
        return self.db.query(RecoveryCampaign).filter(RecoveryCampaign.id == CAMPAIGN_ROW_ID).first()

    def save(self, values: dict[str, Any]) -> RecoveryCampaign:
        """Insert or update the campaign row with the given column values."""
        campaign = self.get()
        if campaign is None:
            campaign = RecoveryCampaign(id=CAMPAIGN_ROW_ID, **values)
            self.db.add(campaign)
        else:
            for key, value in values.items():
                setattr(campaign, key, value)
        self.db.commit()
        self.db.refresh(campaign)
        return campaign
