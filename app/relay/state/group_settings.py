"""Per-group auto-message configuration (welcome, farewell, rules)."""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from ..errors import ValidationError
from .documents import JsonCollection

logger = logging.getLogger(__name__)

WELCOME = "welcome"
FAREWELL = "farewell"
RULES = "rules"
TRIGGERS: tuple[str, ...] = (WELCOME, FAREWELL, RULES)

PLACEHOLDER = "{user}"
DEFAULT_DELAY_SECONDS = 3.0


@dataclass
class AutoMessageTrigger:
    enabled: bool = False
    message: str = ""
    mention_user: bool = False
    include_group_rules: bool = False
    delay_seconds: float = DEFAULT_DELAY_SECONDS


def _default_welcome() -> AutoMessageTrigger:
    return AutoMessageTrigger(message="Welcome to the group, @{user}! 👋", mention_user=True)


def _default_farewell() -> AutoMessageTrigger:
    return AutoMessageTrigger(message="Goodbye, {user}! We'll miss you. 👋")


@dataclass
class GroupAutoMessageConfig:
    group_id: str = ""
    group_name: str = ""
    group_rules: str = ""
    is_active: bool = True
    welcome: AutoMessageTrigger = field(default_factory=_default_welcome)
    farewell: AutoMessageTrigger = field(default_factory=_default_farewell)
    rules: AutoMessageTrigger = field(default_factory=AutoMessageTrigger)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> GroupAutoMessageConfig:
        known = set(cls.__dataclass_fields__)
        values = {k: v for k, v in data.items() if k in known and k not in TRIGGERS}
        config = cls(**values)
        for name in TRIGGERS:
            if data.get(name):
                setattr(config, name, AutoMessageTrigger(**data[name]))
        return config

    def trigger(self, name: str) -> AutoMessageTrigger:
        return getattr(self, _check_trigger(name))


class TriggerUpdate(BaseModel):
    """Partial update for one trigger; unknown fields are rejected."""

    model_config = ConfigDict(extra="forbid")

    enabled: bool | None = None
    message: str | None = None
    mention_user: bool | None = None
    include_group_rules: bool | None = None
    delay_seconds: float | None = Field(default=None, ge=0, le=3600)


def _check_trigger(name: str) -> str:
    if name not in TRIGGERS:
        raise ValidationError(f"Invalid auto-message type: {name!r} (expected one of {', '.join(TRIGGERS)})")
    return name


class GroupSettingsStore:
    """JSON-file-backed store, one document per group, created lazily."""

    def __init__(self, path: Path, default_delay: float = DEFAULT_DELAY_SECONDS) -> None:
        self._docs: JsonCollection[GroupAutoMessageConfig] = JsonCollection(
            path, "group_id", GroupAutoMessageConfig.from_dict,
        )
        self._default_delay = default_delay

    def _new(self, group_id: str, group_name: str = "") -> GroupAutoMessageConfig:
        config = GroupAutoMessageConfig(group_id=group_id, group_name=group_name)
        for name in TRIGGERS:
            config.trigger(name).delay_seconds = self._default_delay
        return config

    def get(self, group_id: str) -> GroupAutoMessageConfig | None:
        """Active config for *group_id*, or ``None`` without creating one."""
        config = self._docs.get(group_id)
        return config if config is not None and config.is_active else None

    def get_or_create(self, group_id: str, group_name: str = "") -> GroupAutoMessageConfig:
        stored, created = self._docs.insert_if_absent(self._new(group_id, group_name))
        if created:
            logger.info("[group-settings] created defaults for %s", group_id)
        return stored

    def update_trigger(self, group_id: str, trigger: str, changes: dict[str, Any]) -> GroupAutoMessageConfig:
        _check_trigger(trigger)
        try:
            patch = TriggerUpdate.model_validate(changes).model_dump(exclude_none=True)
        except PydanticValidationError as exc:
            raise ValidationError(str(exc)) from exc
        self.get_or_create(group_id)

        def _apply(config: GroupAutoMessageConfig) -> None:
            target = config.trigger(trigger)
            for name, value in patch.items():
                setattr(target, name, value)

        return self._docs.update(group_id, _apply)  # type: ignore[return-value]

    def toggle_trigger(self, group_id: str, trigger: str) -> GroupAutoMessageConfig:
        _check_trigger(trigger)
        self.get_or_create(group_id)

        def _apply(config: GroupAutoMessageConfig) -> None:
            target = config.trigger(trigger)
            target.enabled = not target.enabled

        return self._docs.update(group_id, _apply)  # type: ignore[return-value]

    def set_rules(self, group_id: str, rules: str) -> GroupAutoMessageConfig:
        self.get_or_create(group_id)
        return self._docs.update(group_id, lambda c: setattr(c, "group_rules", rules))  # type: ignore[return-value]

    def groups_with_trigger(self, trigger: str) -> list[GroupAutoMessageConfig]:
        _check_trigger(trigger)
        return self._docs.find(lambda c: c.is_active and c.trigger(trigger).enabled)

    @staticmethod
    def to_dict(config: GroupAutoMessageConfig) -> dict[str, Any]:
        return asdict(config)
