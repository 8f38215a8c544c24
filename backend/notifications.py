"""
Report notifications for shipwatch

Posts a summary of each update cycle that changed something (or failed)
to the configured notification URLs. URLs use service schemes:

- discord://<token>@<webhook id>
- slack://<token a>/<token b>/<token c>
- telegram://<bot token>@telegram?chats=<chat>[,<chat>...]
- gotify://<host>[:port][/path]/<app token>
- generic+https://<host>/<path> (or a plain http(s) URL): JSON webhook

Delivery is best effort: failures are logged and never affect the cycle.
"""

import logging
import socket
from dataclasses import dataclass
from typing import Any, Dict, List, Optional
from urllib.parse import parse_qs, urlsplit

import httpx

from updates.errors import is_context_error
from updates.progress import ContainerStatus, Report
from updates.types import UpdateSessionResult
from utils.image_id import normalize_image_id

logger = logging.getLogger(__name__)


class NotificationURLError(ValueError):
    """A notification URL could not be parsed"""


@dataclass(frozen=True)
class NotificationTarget:
    """A parsed notification URL: the endpoint to post to and the payload style."""
    service: str
    url: str
    chats: tuple = ()


def _require(value: Optional[str], what: str, raw: str) -> str:
    if not value:
        raise NotificationURLError(f"Notification URL {_redact(raw)} is missing the {what}")
    return value


def _redact(raw: str) -> str:
    parts = urlsplit(raw)
    return f"{parts.scheme}://..." if parts.scheme else "<invalid>"


def parse_notification_url(raw: str) -> NotificationTarget:
    """
    Translate a service URL into the HTTP endpoint it posts to.

    Raises:
        NotificationURLError: If the scheme is unknown or a part is missing
    """
    parts = urlsplit(raw.strip())
    scheme = parts.scheme.lower()

    if scheme == "discord":
        token = _require(parts.username, "webhook token", raw)
        webhook_id = _require(parts.hostname, "webhook id", raw)
        return NotificationTarget("discord", f"https://discord.com/api/webhooks/{webhook_id}/{token}")

    if scheme == "slack":
        tokens = [parts.netloc] + [segment for segment in parts.path.split("/") if segment]
        if len(tokens) != 3 or not all(tokens):
            raise NotificationURLError(f"Notification URL {_redact(raw)} needs three Slack webhook tokens")
        return NotificationTarget("slack", "https://hooks.slack.com/services/" + "/".join(tokens))

    if scheme == "telegram":
        token = _require(parts.username, "bot token", raw)
        if parts.password:
            token = f"{token}:{parts.password}"
        chats = [
            chat
            for value in parse_qs(parts.query).get("chats", [])
            for chat in value.split(",")
            if chat
        ]
        if not chats:
            raise NotificationURLError(f"Notification URL {_redact(raw)} is missing the chats parameter")
        return NotificationTarget("telegram", f"https://api.telegram.org/bot{token}/sendMessage", tuple(chats))

    if scheme == "gotify":
        host = _require(parts.netloc, "server", raw)
        segments = [segment for segment in parts.path.split("/") if segment]
        app_token = _require(segments[-1] if segments else None, "app token", raw)
        base_path = "".join(f"/{segment}" for segment in segments[:-1])
        insecure = parse_qs(parts.query).get("disabletls", ["no"])[0].lower() in ("yes", "true")
        protocol = "http" if insecure else "https"
        return NotificationTarget("gotify", f"{protocol}://{host}{base_path}/message?token={app_token}")

    if scheme.startswith("generic+"):
        return NotificationTarget("generic", raw.strip()[len("generic+"):])

    if scheme in ("http", "https"):
        return NotificationTarget("generic", raw.strip())

    raise NotificationURLError(f"Unsupported notification service: {scheme or raw!r}")


def _status_line(status: ContainerStatus) -> str:
    line = f"- {status.name} ({status.image_name}): "
    if status.state.value == "updated":
        return line + (
            f"{normalize_image_id(status.current_image_id)} updated to "
            f"{normalize_image_id(status.latest_image_id)}"
        )
    return line + f"{status.state.value}: {status.error_message}"


def format_report(report: Optional[Report], error: Optional[BaseException] = None) -> str:
    """
    Plain text summary of a cycle.

    Example:
        3 Scanned, 1 Updated, 1 Failed
        - web (nginx:1.25): 1a2b3c4d5e6f updated to 6f5e4d3c2b1a
        - db (postgres:16): failed: stop container failed
    """
    lines: List[str] = []
    if report is not None:
        lines.append(f"{len(report.scanned)} Scanned, {len(report.updated)} Updated, {len(report.failed)} Failed")
        for status in report.updated + report.skipped + report.failed:
            lines.append(_status_line(status))
    if error is not None:
        lines.append(f"Update cycle failed: {error}")
    return "\n".join(lines)


def should_notify(result: UpdateSessionResult) -> bool:
    """True when the cycle changed, skipped or failed something."""
    if result.error is not None and not is_context_error(result.error):
        return True
    report = result.report
    return report is not None and bool(report.updated or report.failed or report.skipped)


def notification_title(tag: str = "", hostname: Optional[str] = None) -> str:
    title = f"[{tag}] " if tag else ""
    title += "shipwatch updates"
    host = hostname if hostname is not None else socket.gethostname()
    if host:
        title += f" on {host}"
    return title


class ReportNotifier:
    """Sends cycle reports to every configured target"""

    def __init__(self, urls: List[str], title_tag: str = "", http_client: Optional[httpx.AsyncClient] = None):
        self.targets: List[NotificationTarget] = []
        for url in urls:
            try:
                self.targets.append(parse_notification_url(url))
            except NotificationURLError as e:
                logger.error(f"Ignoring notification URL: {e}")
        self.title = notification_title(title_tag)
        self.http_client = http_client or httpx.AsyncClient(timeout=30.0)

    def _payload(self, target: NotificationTarget, message: str) -> List[Dict[str, Any]]:
        if target.service == "discord":
            return [{"content": f"**{self.title}**\n{message}", "username": "shipwatch"}]
        if target.service == "slack":
            return [{"attachments": [{"title": self.title, "text": message, "fallback": message}]}]
        if target.service == "telegram":
            return [{"chat_id": chat, "text": f"{self.title}\n{message}"} for chat in target.chats]
        if target.service == "gotify":
            return [{"title": self.title, "message": message, "priority": 5}]
        return [{"title": self.title, "message": message}]

    async def _send(self, target: NotificationTarget, message: str) -> bool:
        try:
            for payload in self._payload(target, message):
                response = await self.http_client.post(target.url, json=payload)
                response.raise_for_status()
            logger.info(f"{target.service} notification sent successfully")
            return True
        except httpx.HTTPStatusError as e:
            logger.error(f"{target.service} notification HTTP error {e.response.status_code}")
            return False
        except httpx.RequestError as e:
            logger.error(f"{target.service} notification connection error: {e}")
            return False

    async def send_report(self, result: UpdateSessionResult) -> int:
        """
        Post the cycle summary if the cycle did anything.

        Returns:
            Number of targets that accepted the notification
        """
        if not self.targets or not should_notify(result):
            return 0

        message = format_report(result.report, result.error)
        sent = 0
        for target in self.targets:
            if await self._send(target, message):
                sent += 1
        return sent

    async def close(self):
        """Clean up resources"""
        await self.http_client.aclose()
