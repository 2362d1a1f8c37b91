# SPDX-License-Identifier: MPL-2.0
"""Injectable clock used wherever the engine reads the current time."""

from datetime import datetime, timezone
from typing import Callable

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)
