"""Welcome/farewell messages fired on group membership changes.

The dispatcher calls :meth:`AutoMessageEngine.on_join` /
:meth:`AutoMessageEngine.on_leave` and returns immediately; the configured
delay and the send run in a separate task. Sends are at-most-once: a failure
is logged and never retried, and a scheduled send is not cancelled by later
settings changes or reconnects.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence

from ..state.group_settings import (
    PLACEHOLDER,
    AutoMessageTrigger,
    GroupAutoMessageConfig,
    GroupSettingsStore,
)
from ..state.session_state import SessionStateMachine
from ..util.result import Result
from .client import SessionClient

logger = logging.getLogger(__name__)

RULES_HEADER = "\n\n📋 *Group Rules*:\n"


def render_template(template: str, replacement: str) -> str:
    return template.replace("@" + PLACEHOLDER, replacement).replace(PLACEHOLDER, replacement)


def with_rules(text: str, trigger: AutoMessageTrigger, config: GroupAutoMessageConfig) -> str:
    if trigger.include_group_rules and config.group_rules:
        return f"{text}{RULES_HEADER}{config.group_rules}"
    return text


class AutoMessageEngine:
    """Schedules deferred welcome/farewell sends per group."""

    def __init__(
        self,
        settings: GroupSettingsStore,
        session: SessionStateMachine,
        client: SessionClient | None = None,
    ) -> None:
        self._settings = settings
        self._session = session
        self._client = client
        self._tasks: set[asyncio.Task[Result]] = set()

    def attach_client(self, client: SessionClient | None) -> None:
        self._client = client

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def on_join(self, group_id: str, member_ids: Sequence[str]) -> asyncio.Task[Result] | None:
        config = self._settings.get(group_id)
        if config is None or not config.welcome.enabled:
            return None
        return self._schedule(self._welcome(config, list(member_ids)), f"welcome:{group_id}")

    def on_leave(self, group_id: str, member_ids: Sequence[str]) -> asyncio.Task[Result] | None:
        config = self._settings.get(group_id)
        if config is None or not config.farewell.enabled:
            return None
        return self._schedule(self._farewell(config, list(member_ids)), f"farewell:{group_id}")

    async def wait_idle(self) -> list[Result]:
        """Await every scheduled send, including ones scheduled meanwhile."""
        results: list[Result] = []
        while self._tasks:
            done = await asyncio.gather(*list(self._tasks), return_exceptions=True)
            results.extend(r for r in done if isinstance(r, Result))
        return results

    def cancel_all(self) -> None:
        for task in list(self._tasks):
            task.cancel()

    # -- internals -----------------------------------------------------------

    def _schedule(self, coro, name: str) -> asyncio.Task[Result]:
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        logger.debug("[auto-message] scheduled %s", name)
        return task

    async def _welcome(self, config: GroupAutoMessageConfig, member_ids: list[str]) -> Result:
        trigger = config.welcome
        await asyncio.sleep(trigger.delay_seconds)

        text = trigger.message
        mentions: list[str] = []
        if trigger.mention_user:
            handles: list[str] = []
            for member_id in member_ids:
                try:
                    contact = await self._client.get_contact(member_id) if self._client else None
                except Exception as exc:
                    logger.warning("[auto-message] could not resolve %s: %s", member_id, exc)
                    continue
                if contact is None:
                    logger.warning("[auto-message] could not resolve %s", member_id)
                    continue
                mentions.append(contact.id)
                handles.append(f"@{contact.handle}")
            text = render_template(text, " ".join(handles))

        text = with_rules(text, trigger, config)
        return await self._send(config.group_id, text, mentions, "welcome")

    async def _farewell(self, config: GroupAutoMessageConfig, member_ids: list[str]) -> Result:
        trigger = config.farewell
        await asyncio.sleep(trigger.delay_seconds)
        noun = "member" if len(member_ids) == 1 else "members"
        text = with_rules(render_template(trigger.message, noun), trigger, config)
        return await self._send(config.group_id, text, [], "farewell")

    async def _send(self, group_id: str, text: str, mentions: list[str], kind: str) -> Result:
        if not text.strip():
            logger.warning("[auto-message] %s for %s has an empty template, skipping", kind, group_id)
            return Result.fail("empty message", group_id=group_id)
        if self._client is None or not self._session.is_operational():
            logger.error(
                "[auto-message] cannot send %s to %s: session is %s",
                kind, group_id, self._session.status.value,
            )
            return Result.fail("session not operational", group_id=group_id)
        try:
            await self._client.send_message(group_id, text, mentions)
        except Exception as exc:
            logger.error("[auto-message] failed to send %s to %s: %s", kind, group_id, exc)
            return Result.fail(str(exc), group_id=group_id)
        logger.info("[auto-message] sent %s message in group %s", kind, group_id)
        return Result.ok(kind, group_id=group_id, text=text)
