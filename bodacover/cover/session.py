"""
Explicit rider context passed into every core call.

Rider identity never comes from ambient/global state: the API layer builds a
RiderSession from request headers and hands it to the engine, activator and
adjudicator.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class RiderSession:
    rider_id: str
    auth_token: Optional[str] = None

    @property
    def phone_number(self) -> str:
        return self.rider_id
