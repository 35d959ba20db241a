"""
CampaignRepository - Data access layer for Campaign entities
Isolates all database queries related to campaigns
"""

from datetime import timedelta
from sqlalchemy import and_, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError
from utils.datetime_utils import utc_now
from repositories.base_repository import BaseRepository
from services.common.errors import RecordConflict, RecordNotFound
from campaign_database import Campaign
import logging

logger = logging.getLogger(__name__)

DEFAULT_IN_FLIGHT_TTL_SECONDS = 120


class CampaignRepository(BaseRepository[Campaign]):
    """Record store for campaigns.

    Every write commits on its own; callers treat each call as one transaction.
    """

    def __init__(self, session, in_flight_ttl_seconds: int = DEFAULT_IN_FLIGHT_TTL_SECONDS):
        """Initialize repository with database session"""
        super().__init__(session, Campaign)
        self.in_flight_ttl_seconds = in_flight_ttl_seconds

    def get_campaign(self, campaign_id: str) -> Campaign:
        """
        Get a campaign by its local id.

        Raises:
            RecordNotFound: If no campaign has this id
        """
        campaign = self.get_by_id(campaign_id)
        if campaign is None:
            raise RecordNotFound(f"Campaign {campaign_id} not found", details={'campaign_id': campaign_id})
        return campaign

    def get_campaign_by_remote_id(self, remote_id: str) -> Campaign:
        """
        Get a campaign by its Gateway-assigned id.

        Raises:
            RecordNotFound: If no campaign carries this remote id
        """
        campaign = self.find_one_by(remote_id=remote_id)
        if campaign is None:
            raise RecordNotFound(f"Campaign with remote id {remote_id} not found",
                                 details={'remote_id': remote_id})
        return campaign

    def save_campaign(self, campaign: Campaign) -> Campaign:
        """
        Persist a campaign in a single commit.

        Raises:
            RecordConflict: If the row was changed by someone else since it was read
        """
        try:
            self.session.add(campaign)
            self.session.commit()
            return campaign
        except StaleDataError as e:
            self.session.rollback()
            logger.warning("Stale campaign write rejected", extra={'campaign_id': campaign.id})
            raise RecordConflict(f"Campaign {campaign.id} was modified concurrently",
                                 details={'campaign_id': campaign.id}) from e
        except SQLAlchemyError as e:
            logger.error(f"Error saving campaign {campaign.id}: {e}")
            self.session.rollback()
            raise

    def delete_campaign(self, campaign: Campaign) -> None:
        self.delete(campaign)

    def acquire_in_flight(self, campaign_id: str) -> bool:
        """
        Set the in-flight flag with a single conditional UPDATE.

        A flag older than the configured TTL is treated as abandoned and taken over.

        Returns:
            True if this caller now holds the flag
        """
        now = utc_now()
        stale_before = now - timedelta(seconds=self.in_flight_ttl_seconds)
        try:
            updated = self.session.query(Campaign).filter(
                and_(
                    Campaign.id == campaign_id,
                    or_(
                        Campaign.in_flight.is_(False),
                        Campaign.in_flight_since.is_(None),
                        Campaign.in_flight_since < stale_before,
                    )
                )
            ).update({
                Campaign.in_flight: True,
                Campaign.in_flight_since: now,
                Campaign.version: Campaign.version + 1,
            }, synchronize_session=False)
            self.session.commit()
        except SQLAlchemyError as e:
            logger.error(f"Error acquiring in-flight flag for campaign {campaign_id}: {e}")
            self.session.rollback()
            raise

        acquired = updated == 1
        logger.debug("In-flight flag acquisition", extra={'campaign_id': campaign_id, 'acquired': acquired})
        return acquired

    def release_in_flight(self, campaign_id: str) -> None:
        """Clear the in-flight flag. Safe to call when it is not held."""
        try:
            self.session.rollback()
            self.session.query(Campaign).filter(
                Campaign.id == campaign_id,
                Campaign.in_flight.is_(True)
            ).update({
                Campaign.in_flight: False,
                Campaign.in_flight_since: None,
                Campaign.version: Campaign.version + 1,
            }, synchronize_session=False)
            self.session.commit()
        except SQLAlchemyError as e:
            logger.error(f"Error releasing in-flight flag for campaign {campaign_id}: {e}")
            self.session.rollback()
            raise
