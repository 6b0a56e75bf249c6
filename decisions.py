"""
decisions.py - Operator decision providers.

Every confirmation in the upgrade flow goes through ``decide(prompt,
default)``. The interactive provider asks on the terminal; the automatic
provider answers with the default so unattended runs follow the safe path.
"""

from __future__ import annotations

from typing import Protocol

from session_log import SessionLog


class Decider(Protocol):
    automatic: bool

    def decide(self, prompt: str, default: bool) -> bool: ...


class InteractiveDecider:
    """Ask the operator through the printer's confirm prompt."""

    automatic = False

    def __init__(self, log: SessionLog):
        self.log = log

    def decide(self, prompt: str, default: bool) -> bool:
        answer = self.log.printer.confirm(prompt, default=default)
        self.log.decision(prompt, answer, automatic=False)
        return answer


class AutoDecider:
    """Answer every prompt with its default."""

    automatic = True

    def __init__(self, log: SessionLog):
        self.log = log

    def decide(self, prompt: str, default: bool) -> bool:
        self.log.printer.detail(f"{prompt} -> {'yes' if default else 'no'} (automatic)")
        self.log.decision(prompt, default, automatic=True)
        return default


def make_decider(interactive: bool, log: SessionLog) -> Decider:
    return InteractiveDecider(log) if interactive else AutoDecider(log)
