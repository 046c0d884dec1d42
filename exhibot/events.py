"""Firmware event sinks (observability hook)."""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Protocol


@dataclass(frozen=True)
class FirmwareEvent:
    """Something the firmware did or decided."""
    tick: int
    kind: str      # transition | classification | action | fault | clamp
    state: str
    value: str = ""    # machine-readable tag: verdict, escape reason, ...
    detail: str = ""


class EventSink(Protocol):
    def emit(self, event: FirmwareEvent) -> None:
        ...


class NullSink:
    """Default sink: drops everything."""

    def emit(self, event: FirmwareEvent) -> None:
        pass


class PrintSink:
    """Console sink, one line per event."""

    def __init__(self, kinds=None):
        self.kinds = set(kinds) if kinds else None

    def emit(self, event: FirmwareEvent) -> None:
        if self.kinds is not None and event.kind not in self.kinds:
            return
        parts = [f"[{event.kind.upper()}]", f"tick={event.tick}", f"state={event.state}", event.value, event.detail]
        print(" ".join(p for p in parts if p))


class RecordingSink:
    """Keeps events in memory (tests, plots)."""

    def __init__(self):
        self.events: List[FirmwareEvent] = []

    def emit(self, event: FirmwareEvent) -> None:
        self.events.append(event)

    def of_kind(self, kind: str) -> List[FirmwareEvent]:
        return [e for e in self.events if e.kind == kind]


class FanoutSink:
    """Forwards every event to several sinks."""

    def __init__(self, sinks):
        self.sinks = list(sinks)

    def emit(self, event: FirmwareEvent) -> None:
        for s in self.sinks:
            s.emit(event)
