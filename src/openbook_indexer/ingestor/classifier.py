"""Classification of program log lines into domain event tags."""

from __future__ import annotations

import base64
import binascii
import logging
import re
from collections.abc import Iterable
from dataclasses import dataclass
from enum import Enum

logger = logging.getLogger(__name__)

PROGRAM_DATA_PREFIX = "Program data: "
PROGRAM_RETURN_PREFIX = "Program return: "
INSTRUCTION_LOG_PREFIX = "Program log: Instruction: "

_INVOKE_RE = re.compile(r"^Program (\w+) invoke \[\d+\]$")
_EXIT_RE = re.compile(r"^Program (\w+) (success|failed)")


class EventTag(str, Enum):
    PLACE_ORDER = "PlaceOrder"
    FILL = "Fill"
    CANCEL_ORDER = "CancelOrder"
    SETTLE_FUNDS = "SettleFunds"
    CONSUME_EVENTS = "ConsumeEvents"
    CREATE_OPEN_ORDERS_ACCOUNT = "CreateOpenOrdersAccount"
    CREATE_OPEN_ORDERS_INDEXER = "CreateOpenOrdersIndexer"
    CREATE_MARKET = "CreateMarket"


# First match wins, so a line yields at most one tag.
_RULES: tuple[tuple[tuple[str, ...], EventTag], ...] = (
    (("Instruction: PlaceOrder",), EventTag.PLACE_ORDER),
    (("Instruction: FillEvent", "Instruction: Fill"), EventTag.FILL),
    (("Instruction: CancelOrder",), EventTag.CANCEL_ORDER),
    (("Instruction: SettleFunds",), EventTag.SETTLE_FUNDS),
    (("Instruction: ConsumeEvents",), EventTag.CONSUME_EVENTS),
    (("Instruction: CreateOpenOrdersAccount",), EventTag.CREATE_OPEN_ORDERS_ACCOUNT),
    (("Instruction: CreateOpenOrdersIndexer",), EventTag.CREATE_OPEN_ORDERS_INDEXER),
    (("Instruction: CreateMarket",), EventTag.CREATE_MARKET),
)


def classify_log_line(line: str) -> EventTag | None:
    for needles, tag in _RULES:
        if any(needle in line for needle in needles):
            return tag
    return None


def classify_log_lines(lines: Iterable[str]) -> list[EventTag]:
    """Map log lines to event tags, preserving the order they were seen."""
    tags: list[EventTag] = []
    for line in lines:
        tag = classify_log_line(line)
        if tag is not None:
            tags.append(tag)
    return tags


def _b64decode(payload: str) -> bytes | None:
    try:
        return base64.b64decode(payload.strip(), validate=True)
    except (binascii.Error, ValueError):
        logger.debug("Skipping undecodable base64 log payload")
        return None


def extract_program_data(lines: Iterable[str]) -> list[bytes]:
    """Payloads of every ``Program data:`` line, in log order."""
    payloads: list[bytes] = []
    for line in lines:
        if not line.startswith(PROGRAM_DATA_PREFIX):
            continue
        # sol_log_data may emit several space-separated chunks
        for chunk in line[len(PROGRAM_DATA_PREFIX) :].split():
            data = _b64decode(chunk)
            if data is not None:
                payloads.append(data)
    return payloads


@dataclass(frozen=True)
class ProgramReturn:
    """Return data set by one program invocation."""

    instruction: str | None
    data: bytes


@dataclass
class _Frame:
    program_id: str
    instruction: str | None = None


def extract_program_returns(lines: Iterable[str], program_id: str) -> list[ProgramReturn]:
    """Return data set by ``program_id``, tagged with the instruction that set it.

    The invoke/success lines are tracked as a call stack so that a return
    is attributed to the innermost running invocation of the program.
    """
    stack: list[_Frame] = []
    returns: list[ProgramReturn] = []
    for line in lines:
        invoke = _INVOKE_RE.match(line)
        if invoke:
            stack.append(_Frame(program_id=invoke.group(1)))
            continue
        if _EXIT_RE.match(line):
            if stack:
                stack.pop()
            continue
        if line.startswith(INSTRUCTION_LOG_PREFIX):
            if stack and stack[-1].instruction is None:
                stack[-1].instruction = line[len(INSTRUCTION_LOG_PREFIX) :].strip()
            continue
        if not line.startswith(PROGRAM_RETURN_PREFIX):
            continue
        parts = line[len(PROGRAM_RETURN_PREFIX) :].split()
        if len(parts) != 2 or parts[0] != program_id:
            continue
        data = _b64decode(parts[1])
        if data is None:
            continue
        instruction = stack[-1].instruction if stack and stack[-1].program_id == program_id else None
        returns.append(ProgramReturn(instruction=instruction, data=data))
    return returns
