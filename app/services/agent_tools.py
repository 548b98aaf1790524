"""
Tools the conversational booking agent may call.

The agent can only act through the closed set of commands below. Raw tool
calls arrive as a name plus JSON arguments; they are validated into a
command model and dispatched to AgentBookingTool, which goes through the
same resolver and booking guard as the human booking flow. Every outcome,
including malformed input, comes back as a ToolResult the agent can read.
"""

import datetime as dt
import json
import re
from dataclasses import dataclass, field
from typing import Annotated, ClassVar, Dict, List, Literal, Optional, Tuple, Union

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, ValidationError

from app.database import get_db
from app.models import AgentHandoff, Cleaner, Property
from app.models.booking import BookingStatus
from app.services.availability_service import (
    AvailabilityResolver, BOOKING_SOURCE, conflict_message, has_free_slot
)
from app.services.booking_guard import BookingConflictGuard
from app.services.calendar_sync_service import CalendarSyncService
from app.services.exceptions import ConflictReason, SchedulingError, TransientIOError
from app.services.notification_service import NotificationService
from app.utils.logger import get_logger
from app.utils.time_utils import end_time_for
from app.utils.validators import validate_time
from config.config import Config

logger = get_logger(__name__)

ServiceName = Literal['Regular clean', 'Deep clean', 'Arrival prep']

ADDRESS_MATCH_THRESHOLD = 0.6
SUGGESTION_COUNT = 3


class ToolCommand(BaseModel):
    model_config = ConfigDict(extra='forbid')

    tool_name: ClassVar[str]
    description: ClassVar[str]


def _check_time(value: str) -> str:
    valid, error = validate_time(value)
    if not valid:
        raise ValueError(error)
    return value.strip()


ClockTime = Annotated[str, AfterValidator(_check_time)]


class CheckAvailability(ToolCommand):
    tool_name: ClassVar[str] = 'check_availability'
    description: ClassVar[str] = (
        'Check if the cleaner is available on specific dates. '
        'Use this before confirming a booking.'
    )

    dates: List[dt.date] = Field(
        min_length=1, max_length=14,
        description='Dates to check in YYYY-MM-DD format'
    )
    time: Optional[ClockTime] = Field(None, description='Start time to check in HH:MM format')
    hours: Optional[float] = Field(None, gt=0, le=12, description='Length of the job in hours')


class CreateBooking(ToolCommand):
    tool_name: ClassVar[str] = 'create_booking'
    description: ClassVar[str] = (
        'Create a confirmed booking for the owner. '
        'Only use after confirming all details with the owner.'
    )

    service: ServiceName = Field(description='Type of cleaning service')
    date: dt.date = Field(description='Booking date in YYYY-MM-DD format')
    time: ClockTime = Field(description='Start time in HH:MM format (e.g. "10:00")')
    property_address: Optional[str] = Field(
        None, max_length=500,
        description='Property address if not already known from the conversation'
    )
    notes: Optional[str] = Field(None, max_length=1000, description='Special instructions from the owner')
    extras: List[str] = Field(default_factory=list, description='Optional add-ons requested by the owner')


class RequestHandoff(ToolCommand):
    tool_name: ClassVar[str] = 'request_handoff'
    description: ClassVar[str] = (
        'Hand the conversation to the cleaner when the request is outside '
        'what you can handle.'
    )

    reason: str = Field(min_length=1, max_length=1000, description='Why a human is needed')


COMMANDS = {cls.tool_name: cls for cls in (CheckAvailability, CreateBooking, RequestHandoff)}


@dataclass
class AgentContext:
    """Who the agent is talking to, supplied by the chat layer"""

    cleaner_id: int
    owner_id: Optional[int] = None
    conversation_id: Optional[str] = None
    property_id: Optional[int] = None
    owner_name: Optional[str] = None


@dataclass
class ToolResult:
    success: bool
    message: str
    data: Dict = field(default_factory=dict)
    booking_id: Optional[int] = None
    retryable: bool = False

    def to_dict(self) -> dict:
        result = {'success': self.success, 'message': self.message, 'retryable': self.retryable}
        if self.data:
            result['data'] = self.data
        if self.booking_id is not None:
            result['booking_id'] = self.booking_id
        return result


def _address_tokens(value: str) -> set:
    return {token for token in re.findall(r'\w+', value.lower()) if len(token) > 1}


def match_property(properties: List[Property], address: str) -> Optional[Property]:
    """Best fuzzy match for an address among an owner's properties"""
    wanted = address.strip().lower()
    if not wanted:
        return None

    for prop in properties:
        known = (prop.address or '').lower()
        if known and (wanted in known or known in wanted):
            return prop

    wanted_tokens = _address_tokens(wanted)
    if not wanted_tokens:
        return None

    best, best_score = None, 0.0
    for prop in properties:
        tokens = _address_tokens(prop.address or '')
        if not tokens:
            continue
        score = len(wanted_tokens & tokens) / len(wanted_tokens)
        if score > best_score:
            best, best_score = prop, score

    return best if best_score >= ADDRESS_MATCH_THRESHOLD else None


class AgentBookingTool:
    """Executes validated agent commands against the scheduling core"""

    def __init__(self, resolver: AvailabilityResolver = None, guard: BookingConflictGuard = None,
                 notification_service: NotificationService = None):
        self.resolver = resolver or AvailabilityResolver()
        self.guard = guard or BookingConflictGuard(store=self.resolver.store)
        self._notification_service = notification_service

    @property
    def notification_service(self) -> NotificationService:
        if self._notification_service is None:
            self._notification_service = NotificationService()
        return self._notification_service

    def check_availability(self, command: CheckAvailability, context: AgentContext) -> ToolResult:
        today = self.resolver.cleaner_today(context.cleaner_id)
        results = []

        for day in command.dates:
            entry = {'date': day.isoformat()}
            if command.time:
                hours = command.hours or Config.DEFAULT_SLOT_HOURS
                try:
                    end_time = end_time_for(command.time, hours)
                except ValueError as e:
                    entry.update(available=False, reason=str(e))
                    results.append(entry)
                    continue
                check = self.resolver.check_slot(context.cleaner_id, day, command.time, end_time)
                entry['available'] = check.available
                if not check.available:
                    entry['reason'] = conflict_message(check.reason)
            elif day < today:
                entry.update(available=False, reason=conflict_message(ConflictReason.PAST_DATE))
            else:
                intervals = self.resolver.get_unavailable_intervals(context.cleaner_id, day)
                entry['available'] = has_free_slot(intervals, command.hours)
                if not entry['available']:
                    booked = any(i.source == BOOKING_SOURCE for i in intervals)
                    entry['reason'] = 'Already booked' if booked else 'Blocked'
            results.append(entry)

        available = [r['date'] for r in results if r['available']]
        unavailable = [r for r in results if not r['available']]

        message = ''
        if available:
            message += f"Available: {', '.join(available)}. "
        if unavailable:
            message += 'Unavailable: ' + ', '.join(f"{r['date']} ({r['reason']})" for r in unavailable) + '.'

        data = {'results': results}
        if not available:
            suggestions = self._suggest_dates(context.cleaner_id, max(command.dates), command.hours)
            data['suggestions'] = suggestions
            if suggestions:
                message += f" Next available: {', '.join(suggestions)}."

        return ToolResult(True, message.strip(), data=data)

    def create_booking(self, command: CreateBooking, context: AgentContext) -> ToolResult:
        if not context.owner_id:
            return ToolResult(False, 'This conversation is not associated with an owner. Cannot create booking.')

        hours = Config.SERVICE_HOURS[command.service]
        try:
            end_time = end_time_for(command.time, hours)
        except ValueError as e:
            return ToolResult(False, str(e))

        date_str = command.date.isoformat()
        check = self.resolver.check_slot(context.cleaner_id, command.date, command.time, end_time)
        if not check.available:
            suggestions = self._suggest_dates(context.cleaner_id, command.date, hours)
            message = f"{date_str} at {command.time} is not available ({conflict_message(check.reason)})."
            if suggestions:
                message += f" Next available dates: {', '.join(suggestions)}. Ask the owner which they prefer."
            return ToolResult(False, message, data={'reason': check.reason, 'suggestions': suggestions})

        property_id, placeholder = self._resolve_property(context, command.property_address)
        if not property_id:
            return ToolResult(False, 'No property found. Please ask for the property address.')

        with get_db() as db:
            hourly_rate = db.query(Cleaner.hourly_rate).filter(Cleaner.id == context.cleaner_id).scalar() or 0
        price = float(hourly_rate) * hours

        notes = command.notes
        if command.extras:
            extras = 'Extras: ' + ', '.join(command.extras)
            notes = f"{notes}\n{extras}" if notes else extras

        result = self.guard.try_create_booking(
            cleaner_id=context.cleaner_id,
            owner_id=context.owner_id,
            property_id=property_id,
            service=command.service,
            date=command.date,
            time=command.time,
            hours=hours,
            price=price,
            created_by_ai=True,
            status=BookingStatus.CONFIRMED,
            notes=notes
        )

        if not result.ok:
            # Lost the slot between the check and the locked insert
            logger.info(
                f"Agent booking for cleaner {context.cleaner_id} lost {date_str} {command.time}: "
                f"{result.conflict.reason}"
            )
            return ToolResult(
                False,
                f"Sorry, {date_str} at {command.time} is no longer available. Please suggest another time.",
                data={'reason': result.conflict.reason, 'date': date_str, 'time': command.time},
                retryable=True
            )

        booking = result.booking
        message = f"Booking confirmed! {command.service} on {date_str} at {command.time} for {price:.2f} total."
        if placeholder:
            message += ' The property was added from the address given; the cleaner will confirm its details.'

        return ToolResult(
            True,
            message,
            data={
                'booking_id': booking.id,
                'service': command.service,
                'date': date_str,
                'time': command.time,
                'hours': hours,
                'price': price,
                'placeholder_property': placeholder
            },
            booking_id=booking.id
        )

    def request_handoff(self, command: RequestHandoff, context: AgentContext) -> ToolResult:
        with get_db() as db:
            handoff = AgentHandoff(
                cleaner_id=context.cleaner_id,
                owner_id=context.owner_id,
                conversation_id=context.conversation_id,
                reason=command.reason
            )
            db.add(handoff)
            db.flush()
            handoff_id = handoff.id

        logger.info(f"Agent handed off conversation {context.conversation_id} to cleaner {context.cleaner_id}")
        self.notification_service.send_handoff_alert(handoff_id)

        return ToolResult(
            True,
            'The cleaner has been notified and will reply personally.',
            data={'handoff_id': handoff_id}
        )

    def _resolve_property(self, context: AgentContext, address: Optional[str]) -> Tuple[Optional[int], bool]:
        """Return (property_id, created_placeholder)"""
        with get_db() as db:
            if context.property_id:
                prop = db.query(Property).filter_by(id=context.property_id, owner_id=context.owner_id).first()
                if prop:
                    return prop.id, False

            properties = db.query(Property).filter_by(owner_id=context.owner_id).order_by(Property.id).all()

            if address and address.strip():
                match = match_property(properties, address)
                if match:
                    return match.id, False

                prop = Property(
                    owner_id=context.owner_id,
                    name='My Villa',
                    address=address.strip(),
                    bedrooms=Config.PLACEHOLDER_BEDROOMS,
                    bathrooms=Config.PLACEHOLDER_BATHROOMS,
                    is_placeholder=True
                )
                db.add(prop)
                db.flush()
                logger.info(f"Created placeholder property {prop.id} for owner {context.owner_id}")
                return prop.id, True

            if properties:
                return properties[0].id, False
        return None, False

    def _suggest_dates(self, cleaner_id: int, after: dt.date, hours: float = None) -> List[str]:
        dates = self.resolver.find_next_available(
            cleaner_id,
            from_date=after + dt.timedelta(days=1),
            count=SUGGESTION_COUNT,
            hours=hours
        )
        return [day.isoformat() for day in dates]


def execute_tool(name: str, arguments: Union[str, dict, None], context: AgentContext,
                 tool: AgentBookingTool = None) -> ToolResult:
    """Validate a raw tool call and run it. Never raises for bad input."""
    command_cls = COMMANDS.get(name)
    if not command_cls:
        return ToolResult(False, f"Unknown tool: {name}")

    if isinstance(arguments, str):
        try:
            arguments = json.loads(arguments) if arguments.strip() else {}
        except json.JSONDecodeError:
            return ToolResult(False, f"Arguments for {name} are not valid JSON")

    try:
        command = command_cls.model_validate(arguments or {})
    except ValidationError as e:
        problems = '; '.join(
            f"{'.'.join(str(part) for part in error['loc']) or 'arguments'}: {error['msg']}"
            for error in e.errors()
        )
        return ToolResult(False, f"Invalid arguments for {name}: {problems}")

    tool = tool or AgentBookingTool()
    try:
        return getattr(tool, name)(command, context)
    except TransientIOError as e:
        logger.warning(f"Transient failure running {name} for cleaner {context.cleaner_id}: {str(e)}")
        return ToolResult(False, 'Something went wrong saving that, please try again.', retryable=True)
    except (SchedulingError, ValueError) as e:
        return ToolResult(False, str(e))


def tool_definitions() -> List[dict]:
    """OpenAI function-calling definitions for the command set"""
    return [
        {
            'type': 'function',
            'function': {
                'name': cls.tool_name,
                'description': cls.description,
                'parameters': cls.model_json_schema()
            }
        }
        for cls in COMMANDS.values()
    ]


def agent_schedule_context(cleaner_id: int, resolver: AvailabilityResolver = None,
                           sync_service: CalendarSyncService = None) -> dict:
    """Busy and open dates for the next two weeks, after a short calendar refresh"""
    resolver = resolver or AvailabilityResolver()
    sync_service = sync_service or CalendarSyncService(store=resolver.store)

    status = sync_service.connection_status(cleaner_id)
    if status and status['connected']:
        result = sync_service.sync(cleaner_id, days=Config.AGENT_CONTEXT_DAYS)
        if not result.ok:
            logger.warning(f"Using last synced calendar for cleaner {cleaner_id}: {result.error}")

    today = resolver.cleaner_today(cleaner_id)
    window = resolver.get_range(cleaner_id, today, today + dt.timedelta(days=Config.AGENT_CONTEXT_DAYS - 1))
    busy_dates = [day.isoformat() for day, intervals in sorted(window.items()) if intervals]

    next_available = resolver.find_next_available(
        cleaner_id,
        from_date=today + dt.timedelta(days=1),
        count=Config.NEXT_AVAILABLE_COUNT,
        horizon_days=Config.AGENT_CONTEXT_DAYS
    )

    return {
        'today': today.isoformat(),
        'busy_dates': busy_dates,
        'next_available_dates': [day.isoformat() for day in next_available]
    }
