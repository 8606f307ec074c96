"""
Relay events: the closed set of things a streaming exchange can report.

``Delta`` carries a non-empty text fragment; ``Completed`` and ``Failed`` are
terminal and nothing follows them in the same stream.
"""
from dataclasses import dataclass
from typing import Union


@dataclass(frozen=True)
class Delta:
    text: str


@dataclass(frozen=True)
class Completed:
    pass


@dataclass(frozen=True)
class Failed:
    message: str


RelayEvent = Union[Delta, Completed, Failed]


def is_terminal(event: RelayEvent) -> bool:
    return isinstance(event, (Completed, Failed))
