from twilio.rest import Client
from twilio.base.exceptions import TwilioRestException
from typing import Optional, Dict
from config.config import Config
from app.utils.logger import get_logger

logger = get_logger(__name__)


class TwilioClient:
    """Wrapper for Twilio WhatsApp messaging"""

    def __init__(self):
        self.account_sid = Config.TWILIO_ACCOUNT_SID
        self.auth_token = Config.TWILIO_AUTH_TOKEN
        self.whatsapp_number = Config.TWILIO_WHATSAPP_NUMBER

        if self.account_sid and self.auth_token:
            self.client = Client(self.account_sid, self.auth_token)
        else:
            self.client = None
            logger.warning("Twilio credentials not configured")

    def send_whatsapp(self, to_number: str, message: str) -> Optional[Dict]:
        """Send a WhatsApp message"""
        if not self.client or not self.whatsapp_number:
            logger.error("Twilio WhatsApp not configured")
            return None

        formatted_to = to_number if to_number.startswith('whatsapp:') else f"whatsapp:{to_number}"

        try:
            sent = self.client.messages.create(
                body=message,
                from_=self.whatsapp_number,
                to=formatted_to
            )
            logger.info(f"WhatsApp message sent: {sent.sid}")
            return {'sid': sent.sid, 'status': sent.status, 'to': sent.to}
        except TwilioRestException as e:
            logger.error(f"Error sending WhatsApp message to {to_number}: {str(e)}")
            return None

    def send_new_booking_request(self, to_number: str, details: Dict) -> Optional[Dict]:
        """Tell a cleaner about a booking awaiting their acceptance"""
        message = (
            f"*New Booking Request!*\n\n"
            f"*Client:* {details['owner_name']}\n"
            f"*Date:* {details['date']}\n"
            f"*Time:* {details['time']}\n"
            f"*Service:* {details['service']}\n"
            f"*Price:* €{details['price']}\n\n"
            f"*Address:*\n{details['address']}\n\n"
            f"Reply ACCEPT or DECLINE"
        )
        return self.send_whatsapp(to_number, message)

    def send_ai_booking_notice(self, to_number: str, details: Dict) -> Optional[Dict]:
        """Tell a cleaner the sales assistant confirmed a booking for them"""
        message = (
            f"*Booking Confirmed by your assistant*\n\n"
            f"*Client:* {details['owner_name']}\n"
            f"*Date:* {details['date']}\n"
            f"*Time:* {details['time']}\n"
            f"*Service:* {details['service']}\n"
            f"*Price:* €{details['price']}\n\n"
            f"*Address:*\n{details['address']}"
        )
        if details.get('placeholder_property'):
            message += "\n\nThe property was added from the chat with default room counts. Please check the details."
        return self.send_whatsapp(to_number, message)

    def send_booking_confirmation(self, to_number: str, details: Dict) -> Optional[Dict]:
        """Tell an owner their booking is confirmed"""
        message = (
            f"*Booking Confirmed!*\n\n"
            f"*Cleaner:* {details['cleaner_name']}\n"
            f"*Date:* {details['date']}\n"
            f"*Time:* {details['time']}\n"
            f"*Service:* {details['service']}\n"
            f"*Price:* €{details['price']}\n\n"
            f"Questions? Reply to this message."
        )
        return self.send_whatsapp(to_number, message)

    def send_cancellation(self, to_number: str, details: Dict) -> Optional[Dict]:
        message = (
            f"*Booking Cancelled*\n\n"
            f"The {details['service']} on {details['date']} at {details['time']} has been cancelled."
        )
        return self.send_whatsapp(to_number, message)

    def send_booking_completed(self, to_number: str, details: Dict) -> Optional[Dict]:
        message = (
            f"*Cleaning Complete!*\n\n"
            f"{details['cleaner_name']} has finished cleaning your villa.\n\n"
            f"We'd love to hear how it went! Leave a review:\n{details['review_link']}"
        )
        return self.send_whatsapp(to_number, message)

    def send_handoff_alert(self, to_number: str, details: Dict) -> Optional[Dict]:
        message = (
            f"*Your assistant needs you*\n\n"
            f"A conversation with {details['owner_name']} needs your personal attention.\n"
            f"*Reason:* {details['reason']}"
        )
        return self.send_whatsapp(to_number, message)
