from typing import Dict, Optional
from sqlalchemy.exc import SQLAlchemyError
from twilio.base.exceptions import TwilioException
from app.database import get_db
from app.models import AgentHandoff, Booking, Cleaner, Owner, Property
from app.models.booking import BookingStatus
from app.integrations import TwilioClient
from config.config import Config
from app.utils.logger import get_logger

logger = get_logger(__name__)


class NotificationService:
    """Service for booking-related WhatsApp notifications. Failures are logged, never raised."""

    def __init__(self, twilio: TwilioClient = None):
        self.twilio = twilio or TwilioClient()

    def _load(self, db, booking_id: int):
        booking = db.query(Booking).filter_by(id=booking_id).first()
        if not booking:
            return None, None, None, None
        cleaner = db.query(Cleaner).filter_by(id=booking.cleaner_id).first()
        owner = db.query(Owner).filter_by(id=booking.owner_id).first()
        prop = db.query(Property).filter_by(id=booking.property_id).first()
        return booking, cleaner, owner, prop

    def _details(self, booking: Booking, cleaner: Cleaner, owner: Owner,
                 prop: Optional[Property]) -> Dict:
        return {
            'owner_name': (owner.name if owner else None) or 'Villa Owner',
            'cleaner_name': cleaner.name if cleaner else 'Your cleaner',
            'date': booking.date.strftime('%A %d %B %Y'),
            'time': booking.time,
            'service': booking.service,
            'price': f"{booking.price:.2f}",
            'address': prop.address if prop else '',
            'placeholder_property': bool(prop and prop.is_placeholder),
            'review_link': f"{Config.APP_URL}/bookings/{booking.id}/review"
        }

    def send_booking_created(self, booking_id: int):
        """Notify the cleaner of a new request, or of a booking the agent confirmed"""
        try:
            with get_db() as db:
                booking, cleaner, owner, prop = self._load(db, booking_id)
                if not booking or not cleaner or not cleaner.phone:
                    return

                details = self._details(booking, cleaner, owner, prop)
                if booking.created_by_ai:
                    self.twilio.send_ai_booking_notice(cleaner.phone, details)
                else:
                    self.twilio.send_new_booking_request(cleaner.phone, details)

                logger.info(f"Sent booking created notification for booking {booking_id}")

        except (SQLAlchemyError, TwilioException) as e:
            logger.error(f"Error sending booking created notification: {str(e)}")

    def send_status_change(self, booking_id: int, new_status: BookingStatus, actor: str = None):
        """Notify the affected party of a lifecycle transition"""
        try:
            with get_db() as db:
                booking, cleaner, owner, prop = self._load(db, booking_id)
                if not booking:
                    return

                details = self._details(booking, cleaner, owner, prop)

                if new_status == BookingStatus.CONFIRMED and owner and owner.phone:
                    self.twilio.send_booking_confirmation(owner.phone, details)
                elif new_status == BookingStatus.COMPLETED and owner and owner.phone:
                    self.twilio.send_booking_completed(owner.phone, details)
                elif new_status == BookingStatus.CANCELLED:
                    # Tell whoever did not cancel
                    recipient = cleaner if actor == 'owner' else owner
                    if recipient and recipient.phone:
                        self.twilio.send_cancellation(recipient.phone, details)

                logger.info(f"Sent {new_status.value} notification for booking {booking_id}")

        except (SQLAlchemyError, TwilioException) as e:
            logger.error(f"Error sending status notification: {str(e)}")

    def send_handoff_alert(self, handoff_id: int):
        try:
            with get_db() as db:
                handoff = db.query(AgentHandoff).filter_by(id=handoff_id).first()
                if not handoff:
                    return
                cleaner = db.query(Cleaner).filter_by(id=handoff.cleaner_id).first()
                owner = db.query(Owner).filter_by(id=handoff.owner_id).first() if handoff.owner_id else None
                if not cleaner or not cleaner.phone:
                    return

                self.twilio.send_handoff_alert(cleaner.phone, {
                    'owner_name': (owner.name if owner else None) or 'a villa owner',
                    'reason': handoff.reason
                })
                logger.info(f"Sent handoff alert {handoff_id} to cleaner {cleaner.id}")

        except (SQLAlchemyError, TwilioException) as e:
            logger.error(f"Error sending handoff alert: {str(e)}")
