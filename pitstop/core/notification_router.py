"""
Push notification fan-out for the fixed catalog of domain events.

Each trigger resolves its recipient set, builds the payload, passes every
recipient through the settings gate and sends to all of them concurrently,
returning only once every send has finished.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from pitstop.config import settings
from pitstop.core.reminders import ReminderNotice, reminder_notices, service_notices
from pitstop.core.settings_gate import is_eligible, local_now
from pitstop.core.user_directory import NotificationLocks, Recipient, UserDirectory
from pitstop.core.vehicle_registry import VehicleRegistry
from pitstop.models.beacon import BeaconKind, BeaconRead, BeaconStatus, BeaconTransition
from pitstop.models.events import (
    AppEvent,
    BadgesChanged,
    CarChanged,
    ChatMessage,
    ChatRoom,
    EventComment,
    FriendsChanged,
    ListingType,
    MarketplaceListing,
)
from pitstop.models.notification import NotificationCategory, PushChannel
from pitstop.utils.clock import utc_now
from pitstop.utils.notifications import Dispatcher, FanOutReport, PushMessage, log_fan_out

logger = logging.getLogger(__name__)

BEACON_KIND_LABELS: Dict[BeaconKind, str] = {
    BeaconKind.BREAKDOWN: "breakdown",
    BeaconKind.EMPTY_TANK: "empty tank",
    BeaconKind.ACCIDENT: "accident",
    BeaconKind.FLAT_TIRE: "flat tire",
    BeaconKind.OTHER: "other",
}

EVENT_TYPE_LABELS: Dict[str, str] = {
    "minisraz": "Mini meet",
    "velky_sraz": "Big meet",
    "trackday": "Track day",
    "vyjizdka": "Cruise",
}

LISTING_TYPE_LABELS: Dict[ListingType, str] = {
    ListingType.WANTED_CAR: "Looking for a car",
    ListingType.WANTED_PARTS: "Looking for parts",
    ListingType.SELLING_PARTS: "Selling parts",
    ListingType.SERVICE: "Offering service",
}

BADGE_INFO: Dict[str, Tuple[str, str]] = {
    "early_adopter": ("Early Adopter", "One of the first members of the app"),
    "high_miler": ("High Miler", "Over 100,000 km driven"),
    "wrench_wizard": ("Wrench Wizard", "More than 20 service records"),
    "socialite": ("Socialite", "More than 50 friends"),
    "organizer": ("Organizer", "Organized at least 5 events"),
    "test_driver": ("Test Driver", "Helped test the app"),
    "bk_team": ("BK Team", "Member of the core team"),
}

SOMEONE = "Someone"

def truncate(text: str, limit: int = settings.COMMENT_PREVIEW_LENGTH) -> str:
    """Cut free-form text to `limit` characters, marking the cut with an ellipsis"""
    if len(text) > limit:
        return text[:limit] + "..."
    return text

def unique(ids: Iterable[Optional[str]]) -> List[str]:
    """De-duplicate while keeping first-seen order"""
    seen: Dict[str, None] = {}
    for item in ids:
        if item:
            seen.setdefault(item, None)
    return list(seen)

def format_event_date(value: str) -> str:
    try:
        when = local_now(datetime.fromisoformat(value.replace("Z", "+00:00")))
    except ValueError:
        return value
    return f"{when.day} {when.strftime('%B')}"

def format_price(amount: int) -> str:
    return f"{amount:,} CZK"

@dataclass
class Notice:
    title: str
    body: str
    data: Dict[str, str] = field(default_factory=dict)
    channel: PushChannel = PushChannel.DEFAULT

Delivery = Tuple[Recipient, Notice]

class NotificationRouter:
    def __init__(
        self,
        directory: UserDirectory,
        dispatcher: Dispatcher,
        locks: Optional[NotificationLocks] = None,
        vehicles: Optional[VehicleRegistry] = None,
        clock: Callable[[], datetime] = utc_now
    ):
        self.directory = directory
        self.dispatcher = dispatcher
        self.locks = locks
        self.vehicles = vehicles
        self.clock = clock

    # Shared plumbing

    async def _lookup(self, user_ids: Sequence[str]) -> List[Recipient]:
        found = await asyncio.gather(*(self.directory.get(user_id) for user_id in user_ids))
        return [recipient for recipient in found if recipient is not None]

    def _eligible(
        self,
        recipient: Recipient,
        category: NotificationCategory,
        now: datetime,
        respect_quiet_hours: bool = True,
        event_type: Optional[str] = None
    ) -> bool:
        if not recipient.token:
            return False
        return is_eligible(
            recipient.settings,
            category,
            now=now,
            respect_quiet_hours=respect_quiet_hours,
            event_type=event_type
        )

    async def _fan_out(
        self,
        trigger: str,
        deliveries: Sequence[Delivery],
        category: NotificationCategory,
        *,
        respect_quiet_hours: bool = True,
        event_type: Optional[str] = None,
        emergency: bool = False
    ) -> FanOutReport:
        now = self.clock()
        messages: List[PushMessage] = []
        skipped = 0

        for recipient, notice in deliveries:
            if not self._eligible(recipient, category, now, respect_quiet_hours, event_type):
                skipped += 1
                continue
            messages.append(PushMessage(
                token=recipient.token,
                title=notice.title,
                body=notice.body,
                data=notice.data,
                channel=notice.channel,
                recipient_id=recipient.user_id
            ))

        report = await self.dispatcher.send_many(messages, trigger=trigger)
        report.skipped += skipped
        log_fan_out(report, emergency=emergency)
        return report

    # Beacons

    async def on_beacon_transition(self, transition: BeaconTransition) -> FanOutReport:
        before, after = transition.before, transition.after
        if before is None:
            return await self.on_beacon_created(after)

        if before.status == after.status:
            return FanOutReport(trigger="beacon_status")

        logger.info(f"Beacon {after.id} status changed: {before.status.value} -> {after.status.value}")

        if before.status == BeaconStatus.ACTIVE and after.status == BeaconStatus.HELP_COMING:
            return await self._notify_help_coming(after)

        if before.status == BeaconStatus.HELP_COMING and after.status == BeaconStatus.RESOLVED and after.helper_id:
            return await self._notify_resolved(after)

        return FanOutReport(trigger="beacon_status")

    async def on_beacon_created(self, beacon: BeaconRead) -> FanOutReport:
        logger.warning(f"SOS Beacon created: {beacon.id} by {beacon.display_name}")

        candidates = await self.directory.users_with_setting(NotificationCategory.SOS_ALERTS)
        recipients = [user for user in candidates if user.user_id != beacon.user_id]

        label = BEACON_KIND_LABELS.get(beacon.kind, beacon.kind.value)
        body = (
            f"{beacon.display_name} needs help: {beacon.description}"
            if beacon.description
            else f"{beacon.display_name} reports: {label}"
        )
        notice = Notice(
            title="🚨 SOS call",
            body=body,
            data={"type": "sos_beacon", "beacon_id": beacon.id},
            channel=PushChannel.ALERTS
        )

        return await self._fan_out(
            "sos_beacon",
            [(user, notice) for user in recipients],
            NotificationCategory.SOS_ALERTS,
            emergency=True
        )

    async def _notify_help_coming(self, beacon: BeaconRead) -> FanOutReport:
        helper_name = beacon.helper_name or SOMEONE
        notice = Notice(
            title="🚗 Help is on the way!",
            body=f"{helper_name} is responding to your SOS",
            data={
                "type": "beacon_help_coming",
                "beacon_id": beacon.id,
                "helper_id": beacon.helper_id or ""
            },
            channel=PushChannel.ALERTS
        )
        creator = await self._lookup([beacon.user_id])
        return await self._fan_out(
            "beacon_help_coming",
            [(user, notice) for user in creator],
            NotificationCategory.SOS_ALERTS,
            emergency=True
        )

    async def _notify_resolved(self, beacon: BeaconRead) -> FanOutReport:
        notice = Notice(
            title="✅ Problem solved",
            body=f"{beacon.display_name or SOMEONE} marked the SOS as resolved",
            data={"type": "beacon_resolved", "beacon_id": beacon.id},
            channel=PushChannel.ALERTS
        )
        helper = await self._lookup([beacon.helper_id])
        return await self._fan_out(
            "beacon_resolved",
            [(user, notice) for user in helper],
            NotificationCategory.SOS_ALERTS
        )

    # Chat

    async def on_chat_message(self, room: ChatRoom, message: ChatMessage) -> FanOutReport:
        recipient_id = next((p for p in room.participants if p != message.sender_id), None)
        if recipient_id is None:
            logger.info(f"No recipient found in chat room {room.id}")
            return FanOutReport(trigger="chat_message")

        sender_name = room.participant_names.get(message.sender_id) or "User"
        notice = Notice(
            title=f"New message from {sender_name}",
            body=truncate(message.text),
            data={
                "type": "chat_message",
                "room_id": room.id,
                "sender_id": message.sender_id
            },
            channel=PushChannel.MESSAGES
        )
        recipient = await self._lookup([recipient_id])

        # Chat bypasses quiet hours
        return await self._fan_out(
            "chat_message",
            [(user, notice) for user in recipient],
            NotificationCategory.CHAT_MESSAGES,
            respect_quiet_hours=False
        )

    # Events

    async def on_event_comment(self, event: AppEvent, comment: EventComment) -> FanOutReport:
        recipient_ids = [
            user_id for user_id in unique([*event.participants, event.creator_id])
            if user_id != comment.user_id
        ]
        logger.info(f"New comment on event {event.id} by {comment.user_name}, notifying {len(recipient_ids)} members")

        notice = Notice(
            title=f"💬 {event.title}",
            body=f"{comment.user_name}: {truncate(comment.text)}",
            data={"type": "event_comment", "event_id": event.id}
        )
        recipients = await self._lookup(recipient_ids)
        return await self._fan_out(
            "event_comment",
            [(user, notice) for user in recipients],
            NotificationCategory.EVENT_COMMENTS
        )

    async def on_event_updated(self, before: AppEvent, after: AppEvent) -> FanOutReport:
        changes: List[str] = []
        if before.title != after.title:
            changes.append("title")
        if before.date != after.date or before.end_date != after.end_date:
            changes.append("date")
        if before.location != after.location:
            changes.append("location")

        if not changes:
            return FanOutReport(trigger="event_update")

        recipient_ids = unique([*after.participants, after.creator_id])
        logger.info(f"Event {after.id} updated: {', '.join(changes)}; notifying {len(recipient_ids)} members")

        notice = Notice(
            title="📅 Event changed",
            body=f"{after.title}: {', '.join(changes)} changed",
            data={"type": "event_update", "event_id": after.id}
        )
        recipients = await self._lookup(recipient_ids)
        return await self._fan_out(
            "event_update",
            [(user, notice) for user in recipients],
            NotificationCategory.EVENT_CHANGES
        )

    async def on_event_participation(self, before: AppEvent, after: AppEvent) -> FanOutReport:
        joined = [p for p in after.participants if p not in before.participants]
        left = [p for p in before.participants if p not in after.participants]

        if not joined and not left:
            return FanOutReport(trigger="event_participation")

        logger.info(f"Event {after.id}: {len(joined)} joined, {len(left)} left")

        organizer = await self._lookup([after.creator_id])
        if not organizer:
            return FanOutReport(trigger="event_participation")

        names = {
            person.user_id: person.display_name
            for person in await self._lookup(unique([*joined, *left]))
        }
        notices: List[Notice] = [
            Notice(
                title="👤 New participant",
                body=f"{names.get(participant_id, SOMEONE)} signed up for {after.title}",
                data={
                    "type": "event_participant_joined",
                    "event_id": after.id,
                    "participant_id": participant_id
                }
            )
            for participant_id in joined
        ]

        # Departures are only reported when nobody joined in the same update
        if left and not joined:
            notices.append(Notice(
                title="👋 Participant left",
                body=f"{names.get(left[0], SOMEONE)} left {after.title}",
                data={"type": "event_participant_left", "event_id": after.id}
            ))

        return await self._fan_out(
            "event_participation",
            [(organizer[0], notice) for notice in notices],
            NotificationCategory.EVENT_PARTICIPATION
        )

    async def on_event_created(self, event: AppEvent) -> FanOutReport:
        logger.info(f"New event created: {event.title} ({event.event_type})")

        candidates = await self.directory.users_with_setting(NotificationCategory.NEW_EVENTS)
        type_label = EVENT_TYPE_LABELS.get(event.event_type, event.event_type)
        notice = Notice(
            title=f"📅 New event: {event.title}",
            body=f"{type_label} - {format_event_date(event.date)} at {event.location}",
            data={
                "type": "new_event",
                "event_id": event.id,
                "event_type": event.event_type
            },
            channel=PushChannel.EVENTS
        )

        return await self._fan_out(
            "new_event",
            [(user, notice) for user in candidates if user.user_id != event.creator_id],
            NotificationCategory.NEW_EVENTS,
            event_type=event.event_type
        )

    # Social

    async def on_friends_changed(self, change: FriendsChanged) -> FanOutReport:
        new_friends = [f for f in unique(change.after) if f not in change.before]
        if not new_friends:
            return FanOutReport(trigger="friend_request")

        logger.info(f"User {change.user_id} added {len(new_friends)} new friend(s)")

        now = self.clock()
        adder_name = change.display_name or SOMEONE
        deliveries: List[Delivery] = []
        skipped = 0

        for friend in await self._lookup(new_friends):
            if not self._eligible(friend, NotificationCategory.FRIEND_REQUESTS, now):
                skipped += 1
                continue
            # One notification per pair per cooldown window
            if self.locks is not None and not await self.locks.acquire(
                f"friend_req_{change.user_id}_{friend.user_id}",
                timedelta(hours=settings.FRIEND_NOTIFICATION_COOLDOWN_HOURS),
                now=now
            ):
                logger.info(f"Skipping friend notification to {friend.user_id} from {change.user_id} due to cooldown")
                skipped += 1
                continue
            deliveries.append((friend, Notice(
                title="👋 New friend",
                body=f"{adder_name} added you as a friend",
                data={"type": "friend_request", "user_id": change.user_id}
            )))

        report = await self._fan_out("friend_request", deliveries, NotificationCategory.FRIEND_REQUESTS)
        report.skipped += skipped
        return report

    async def on_badges_changed(self, change: BadgesChanged) -> FanOutReport:
        known = {badge.id for badge in change.before}
        earned = [badge for badge in change.after if badge.id not in known]
        if not earned:
            return FanOutReport(trigger="badge_awarded")

        logger.info(f"User {change.user_id} earned {len(earned)} new badge(s)")

        owner = await self._lookup([change.user_id])
        deliveries: List[Delivery] = []
        for badge in earned:
            name, description = BADGE_INFO.get(badge.id, (badge.id, "Special badge"))
            for user in owner:
                deliveries.append((user, Notice(
                    title="🏆 New badge!",
                    body=f'You earned the "{name}" badge - {description}',
                    data={"type": "badge_awarded", "badge_id": badge.id}
                )))

        return await self._fan_out("badge_awarded", deliveries, NotificationCategory.BADGE_NOTIFICATIONS)

    # Marketplace

    async def on_marketplace_listing(self, listing: MarketplaceListing) -> FanOutReport:
        if not listing.is_active:
            logger.info(f"Listing {listing.id} is not active, skipping notification")
            return FanOutReport(trigger="marketplace_listing")

        candidates = await self.directory.users_with_setting(NotificationCategory.MARKETPLACE)
        type_label = LISTING_TYPE_LABELS.get(listing.type, "New listing")
        price_text = f" - {format_price(listing.price)}" if listing.price else ""
        notice = Notice(
            title=f"{type_label}: {listing.title}",
            body=f"{listing.user_name}{price_text}",
            data={
                "type": "marketplace_listing",
                "listing_id": listing.id,
                "listing_type": listing.type.value
            },
            channel=PushChannel.MARKETPLACE
        )

        return await self._fan_out(
            "marketplace_listing",
            [(user, notice) for user in candidates if user.user_id != listing.user_id],
            NotificationCategory.MARKETPLACE
        )

    async def on_car_changed(self, change: CarChanged) -> FanOutReport:
        """Only the transition into for-sale is announced"""
        before, after = change.before, change.after
        if (before is not None and before.for_sale is True) or after.for_sale is not True:
            return FanOutReport(trigger="car_for_sale")

        owner = await self.directory.get(after.owner_id)
        owner_name = owner.display_name if owner else "User"

        candidates = await self.directory.users_with_setting(NotificationCategory.MARKETPLACE)
        price_text = f" for {format_price(after.sale_price)}" if after.sale_price else ""
        notice = Notice(
            title=f"Car for sale: {after.name}",
            body=f"{owner_name} is selling {after.make} {after.model}{price_text}".replace("  ", " "),
            data={"type": "car_for_sale", "car_id": change.car_id},
            channel=PushChannel.MARKETPLACE
        )

        return await self._fan_out(
            "car_for_sale",
            [(user, notice) for user in candidates if user.user_id != after.owner_id],
            NotificationCategory.MARKETPLACE
        )

    # Scheduled reminders

    async def run_reminder_sweep(self, now: Optional[datetime] = None) -> FanOutReport:
        """Daily check of document and service reminders for every opted-in owner"""
        if self.vehicles is None:
            raise RuntimeError("reminder sweep needs a vehicle registry")

        now = now or self.clock()
        local = local_now(now)
        logger.info(f"Starting vehicle reminder check at {local.isoformat()}")
        if local.hour != settings.REMINDER_SWEEP_HOUR:
            logger.warning(f"Reminder sweep running at {local.hour}:00, expected {settings.REMINDER_SWEEP_HOUR}:00 local")

        owners = await self.directory.users_with_setting(NotificationCategory.VEHICLE_REMINDERS)
        pending: List[Tuple[PushMessage, ReminderNotice]] = []
        skipped = 0

        for owner in owners:
            if not self._eligible(owner, NotificationCategory.VEHICLE_REMINDERS, now):
                skipped += 1
                continue

            for car in await self.vehicles.cars_for_owner(owner.user_id):
                notices: List[ReminderNotice] = []
                for reminder in car.parsed_reminders():
                    notices.extend(reminder_notices(car, reminder, now))
                for service in await self.vehicles.service_records(car.id):
                    notices.extend(service_notices(car, service, now))

                for notice in notices:
                    pending.append((PushMessage(
                        token=owner.token,
                        title=notice.title,
                        body=notice.body,
                        data=notice.data,
                        channel=PushChannel.REMINDERS,
                        recipient_id=owner.user_id
                    ), notice))

        report = await self.dispatcher.send_many([message for message, _ in pending], trigger="vehicle_reminder")
        report.skipped += skipped

        for (_, notice), result in zip(pending, report.results):
            if result.ok and notice.overdue_service_id:
                await self.vehicles.mark_service_notified(notice.overdue_service_id, now)

        log_fan_out(report)
        return report
