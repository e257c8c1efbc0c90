"""Outcome of a deferred auto-message send."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True, slots=True)
class Result:
    """What happened to one scheduled send.

    Sends never raise into the engine; the task resolves to a ``Result``
    instead. Falsy on failure, and unpacks to ``(success, message)``::

        outcome = await engine.on_join(group_id, members)
        if not outcome:
            logger.warning("%s: %s", outcome.group_id, outcome.message)
    """

    success: bool
    message: str = ""
    group_id: str = ""
    text: str = field(default="", repr=False)

    @classmethod
    def ok(cls, message: str = "", *, group_id: str = "", text: str = "") -> Result:
        return cls(success=True, message=message, group_id=group_id, text=text)

    @classmethod
    def fail(cls, message: str, *, group_id: str = "") -> Result:
        return cls(success=False, message=message, group_id=group_id)

    def __bool__(self) -> bool:
        return self.success

    def __iter__(self):
        yield self.success
        yield self.message
