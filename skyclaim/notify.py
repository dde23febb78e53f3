"""Alert delivery: Discord/Slack webhook, Telegram, ntfy and Gotify.

``Notifier`` implements the ``AlertSink`` protocol. Each channel is used
only when configured. Every configured channel is attempted even when an
earlier one fails; the failures are raised together as a single
``NotificationError`` for the caller to log.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from typing import Any

from loguru import logger

from skyclaim.config import NotificationConfig
from skyclaim.core.exceptions import NotificationError
from skyclaim.infra.http import HttpClient
from skyclaim.stats import StatsSnapshot
from skyclaim.types import SuccessAlert

COLOR_SUCCESS = 5763719
COLOR_INFO = 3447003

FOOTER = "skyclaim"


def _fmt_uptime(snapshot: StatsSnapshot) -> str:
    total = int(snapshot.uptime.total_seconds())
    hours, rem = divmod(total, 3600)
    minutes, seconds = divmod(rem, 60)
    return f"{hours}h{minutes}m{seconds}s"


def _success_lines(alert: SuccessAlert) -> list[tuple[str, str]]:
    lines = [("Account", alert.alias), ("Region", alert.region), ("Instance ID", alert.instance_id)]
    v = alert.verified
    if v is not None:
        if v.public_ip:
            lines.append(("Public IP", v.public_ip))
        if v.ocpus is not None and v.memory_gb is not None:
            lines.append(("Specs", f"{v.ocpus:g} OCPUs / {v.memory_gb:g}GB"))
        lines.append(("Verified", "yes" if v.verified else "no"))
    return lines


def _digest_lines(snapshot: StatsSnapshot) -> list[tuple[str, str]]:
    return [
        ("Uptime", _fmt_uptime(snapshot)),
        ("Cycles", str(snapshot.cycles)),
        ("Capacity Hits", str(snapshot.capacity_errors)),
        ("Errors", str(snapshot.other_errors)),
        ("Successes", str(snapshot.successes)),
    ]


def _markdown(title: str, lines: list[tuple[str, str]]) -> str:
    return f"**{title}**\n\n" + "\n".join(f"**{name}:** {value}" for name, value in lines)


def _html(title: str, lines: list[tuple[str, str]]) -> str:
    return f"<b>{title}</b>\n\n" + "\n".join(f"<b>{name}:</b> {value}" for name, value in lines)


class Notifier:
    """Sends success and digest alerts to every configured channel."""

    def __init__(self, config: NotificationConfig, *, timeout: float = 10) -> None:
        self.config = config
        self._timeout = timeout
        self._log = logger.bind(account="NOTIFIER")

    # ─── Public API ──────────────────────────────────────────────────

    async def send_success(self, alert: SuccessAlert) -> None:
        if not self.config.enabled:
            return

        ping = self.config.insistent_ping
        lines = _success_lines(alert)
        title = "Instance Launched!"

        embed = {
            "title": "Instance Launched Successfully",
            "color": COLOR_SUCCESS,
            "fields": [
                {"name": name, "value": value, "inline": name != "Instance ID"} for name, value in lines
            ],
            "footer": {"text": f"{FOOTER} - {datetime.now(UTC):%Y-%m-%d %H:%M:%S} UTC"},
        }
        webhook_payload: dict[str, Any] = {"embeds": [embed]}
        if ping:
            webhook_payload["content"] = "@everyone Instance Provisioned!"

        telegram_text = _html(title, lines)
        if ping:
            telegram_text = "<b>ATTENTION!</b>\n\n" + telegram_text

        await self._dispatch(
            webhook=webhook_payload,
            telegram=telegram_text,
            ntfy=(_markdown(title, lines), "Provision Success", 5 if ping else 4, "tada,rocket"),
            gotify=(_markdown(title, lines), "Provision Success", 10 if ping else 8),
        )

    async def send_digest(self, snapshot: StatsSnapshot) -> None:
        if not self.config.enabled:
            return

        lines = _digest_lines(snapshot)
        embed = {
            "title": "Execution Digest",
            "color": COLOR_INFO,
            "fields": [{"name": name, "value": value, "inline": True} for name, value in lines],
            "footer": {"text": FOOTER},
        }
        await self._dispatch(
            webhook={"embeds": [embed]},
            telegram=_html("Digest", lines),
            ntfy=(_markdown("Digest", lines), "Status Report", 3, "chart_with_upwards_trend"),
            gotify=(_markdown("Digest", lines), "Status Report", 4),
        )

    # ─── Channels ────────────────────────────────────────────────────

    async def _dispatch(
        self,
        *,
        webhook: dict[str, Any],
        telegram: str,
        ntfy: tuple[str, str, int, str],
        gotify: tuple[str, str, int],
    ) -> None:
        c = self.config
        sends: list[tuple[str, Callable[[], Awaitable[None]]]] = []
        if c.webhook_url:
            sends.append(("webhook", lambda: self._send_webhook(webhook)))
        if c.telegram_token and c.telegram_chat_id:
            sends.append(("telegram", lambda: self._send_telegram(telegram)))
        if c.ntfy_topic:
            sends.append(("ntfy", lambda: self._send_ntfy(*ntfy)))
        if c.gotify_url and c.gotify_token:
            sends.append(("gotify", lambda: self._send_gotify(*gotify)))

        failures: list[str] = []
        for name, send in sends:
            try:
                await send()
            except Exception as e:
                failures.append(f"{name}: {e}")

        if failures:
            raise NotificationError(failures)
        if sends:
            self._log.debug("Delivered alert to {n} channel(s)", n=len(sends))

    async def _send_webhook(self, payload: dict[str, Any]) -> None:
        async with HttpClient(self.config.webhook_url, timeout=self._timeout) as client:
            await client.post(json=payload)

    async def _send_telegram(self, text: str) -> None:
        c = self.config
        async with HttpClient(c.telegram_api_url, timeout=self._timeout) as client:
            await client.post(
                f"/bot{c.telegram_token}/sendMessage",
                json={"chat_id": c.telegram_chat_id, "text": text, "parse_mode": "HTML"},
            )

    async def _send_ntfy(self, message: str, title: str, priority: int, tags: str) -> None:
        c = self.config
        async with HttpClient(c.ntfy_server, timeout=self._timeout) as client:
            await client.post(
                f"/{c.ntfy_topic}",
                data=message.encode(),
                headers={"Title": title, "Priority": str(priority), "Tags": tags, "Markdown": "yes"},
            )

    async def _send_gotify(self, message: str, title: str, priority: int) -> None:
        c = self.config
        async with HttpClient(c.gotify_url, timeout=self._timeout) as client:
            await client.post(
                "/message",
                params={"token": c.gotify_token},
                json={
                    "title": title,
                    "message": message,
                    "priority": priority,
                    "extras": {"client::display": {"contentType": "text/markdown"}},
                },
            )
