import asyncio
import aiohttp
import logging
from typing import Awaitable, Callable, List, Dict, Optional, Sequence
from dataclasses import dataclass, field
from abc import ABC, abstractmethod
from enum import Enum

from pitstop.config import settings
from pitstop.core.exceptions import InvalidTokenError, TransientDeliveryError
from pitstop.models.notification import PushChannel

logger = logging.getLogger(__name__)

# FCM error codes that mean the token will never work again
INVALID_TOKEN_CODES = {"UNREGISTERED"}

def mask_token(token: str) -> str:
    return f"{token[:10]}..." if token else "<none>"

@dataclass
class PushMessage:
    token: str
    title: str
    body: str
    data: Dict[str, str] = field(default_factory=dict)
    channel: PushChannel = PushChannel.DEFAULT
    recipient_id: Optional[str] = None

class DeliveryOutcome(str, Enum):
    DELIVERED = "delivered"
    INVALID_TOKEN = "invalid_token"
    TRANSIENT = "transient"

@dataclass
class DeliveryResult:
    token: str
    outcome: DeliveryOutcome
    recipient_id: Optional[str] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.outcome == DeliveryOutcome.DELIVERED

@dataclass
class FanOutReport:
    """Aggregate outcome of one trigger's deliveries"""
    trigger: str
    results: List[DeliveryResult] = field(default_factory=list)
    skipped: int = 0

    @property
    def attempted(self) -> int:
        return len(self.results)

    @property
    def delivered(self) -> int:
        return sum(1 for result in self.results if result.ok)

    @property
    def failed(self) -> int:
        return self.attempted - self.delivered

    @property
    def invalid_tokens(self) -> List[str]:
        return [r.token for r in self.results if r.outcome == DeliveryOutcome.INVALID_TOKEN]

    def merge(self, other: "FanOutReport") -> "FanOutReport":
        self.results.extend(other.results)
        self.skipped += other.skipped
        return self

    def to_dict(self) -> Dict:
        return {
            "trigger": self.trigger,
            "attempted": self.attempted,
            "delivered": self.delivered,
            "failed": self.failed,
            "skipped": self.skipped,
            "invalid_tokens": len(self.invalid_tokens)
        }

class PushTransport(ABC):
    """Abstract base class for push providers"""

    @abstractmethod
    async def deliver(self, message: PushMessage) -> None:
        """
        Hand one message to the provider.

        Raises InvalidTokenError for permanently dead tokens and
        TransientDeliveryError for anything worth retrying later.
        """

class FcmTransport(PushTransport):
    """Firebase Cloud Messaging, HTTP v1 API"""

    def __init__(
        self,
        project_id: str = settings.FCM_PROJECT_ID,
        access_token: str = settings.FCM_ACCESS_TOKEN,
        api_url: str = settings.FCM_API_URL,
        timeout: float = settings.FCM_TIMEOUT_SECONDS
    ):
        self.project_id = project_id
        self.access_token = access_token
        self.api_url = api_url.format(project_id=project_id)
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self._session: Optional[aiohttp.ClientSession] = None

    @property
    def configured(self) -> bool:
        return bool(self.project_id and self.access_token)

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout)
        return self._session

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()

    def build_payload(self, message: PushMessage) -> Dict:
        return {
            "message": {
                "token": message.token,
                "notification": {
                    "title": message.title,
                    "body": message.body
                },
                "data": {key: str(value) for key, value in message.data.items()},
                "android": {
                    "priority": "high",
                    "notification": {"channel_id": message.channel.value}
                },
                "apns": {
                    "payload": {"aps": {"sound": "default", "badge": 1}}
                }
            }
        }

    async def deliver(self, message: PushMessage) -> None:
        if not self.configured:
            raise TransientDeliveryError("FCM not configured")

        headers = {
            "Authorization": f"Bearer {self.access_token}",
            "Content-Type": "application/json"
        }

        try:
            session = await self._get_session()
            async with session.post(
                self.api_url,
                json=self.build_payload(message),
                headers=headers
            ) as response:
                if response.status == 200:
                    return
                try:
                    error_body = await response.json(content_type=None)
                except (aiohttp.ContentTypeError, ValueError):
                    error_body = {}
                self._raise_for_error(response.status, error_body or {})
        except asyncio.TimeoutError:
            raise TransientDeliveryError("FCM request timeout")
        except aiohttp.ClientError as e:
            raise TransientDeliveryError(f"FCM request error: {e}")

    def _raise_for_error(self, status: int, body: Dict) -> None:
        error = body.get("error", {}) if isinstance(body, dict) else {}
        codes = {
            detail.get("errorCode")
            for detail in error.get("details", [])
            if isinstance(detail, dict)
        }
        message = error.get("message", "")

        if codes & INVALID_TOKEN_CODES or status == 404:
            raise InvalidTokenError("token unregistered")
        if "INVALID_ARGUMENT" in codes and "registration token" in message.lower():
            raise InvalidTokenError("invalid registration token")
        raise TransientDeliveryError(f"FCM error {status}: {message or 'no details'}")

InvalidTokenHandler = Callable[[str], Awaitable[None]]

class Dispatcher:
    """
    Sends push messages and classifies failures.

    Never raises on a failed send: every outcome is returned so a fan-out can
    count it, and dead tokens are handed to `on_invalid_token` for cleanup.
    """

    def __init__(
        self,
        transport: PushTransport,
        on_invalid_token: Optional[InvalidTokenHandler] = None
    ):
        self.transport = transport
        self.on_invalid_token = on_invalid_token

    async def send(
        self,
        token: str,
        title: str,
        body: str,
        data: Optional[Dict[str, str]] = None,
        channel: PushChannel = PushChannel.DEFAULT,
        recipient_id: Optional[str] = None
    ) -> DeliveryResult:
        return await self.deliver(PushMessage(
            token=token,
            title=title,
            body=body,
            data=data or {},
            channel=channel,
            recipient_id=recipient_id
        ))

    async def deliver(self, message: PushMessage) -> DeliveryResult:
        try:
            await self.transport.deliver(message)
        except InvalidTokenError as e:
            logger.info(f"Invalid token {mask_token(message.token)}, should be removed from database")
            await self._report_invalid(message.token)
            return DeliveryResult(message.token, DeliveryOutcome.INVALID_TOKEN, message.recipient_id, str(e))
        except TransientDeliveryError as e:
            logger.error(f"Push notification error for token {mask_token(message.token)}: {e}")
            return DeliveryResult(message.token, DeliveryOutcome.TRANSIENT, message.recipient_id, str(e))
        except Exception as e:
            logger.error(f"Unexpected push error for token {mask_token(message.token)}: {e}")
            return DeliveryResult(message.token, DeliveryOutcome.TRANSIENT, message.recipient_id, str(e))

        logger.info(f"Notification sent successfully to token: {mask_token(message.token)}")
        return DeliveryResult(message.token, DeliveryOutcome.DELIVERED, message.recipient_id)

    async def send_many(self, messages: Sequence[PushMessage], trigger: str = "push") -> FanOutReport:
        """Send all messages concurrently and wait for every one of them"""
        report = FanOutReport(trigger=trigger)
        if not messages:
            return report

        results = await asyncio.gather(
            *(self.deliver(message) for message in messages),
            return_exceptions=True
        )

        for message, result in zip(messages, results):
            if isinstance(result, BaseException):
                logger.error(f"Bulk push error for {mask_token(message.token)}: {result}")
                result = DeliveryResult(
                    message.token, DeliveryOutcome.TRANSIENT, message.recipient_id, str(result)
                )
            report.results.append(result)

        return report

    async def _report_invalid(self, token: str) -> None:
        if self.on_invalid_token is None:
            return
        try:
            await self.on_invalid_token(token)
        except Exception as e:
            logger.error(f"Failed to clear invalid token {mask_token(token)}: {e}")

def log_fan_out(report: FanOutReport, emergency: bool = False) -> None:
    """Log summary of notification results"""
    log_level = logger.critical if emergency and report.attempted and not report.delivered else logger.info
    log_level(
        f"Notification summary - Trigger: {report.trigger}, Sent: {report.delivered}/{report.attempted}, "
        f"Failed: {report.failed}, Skipped: {report.skipped}"
    )
