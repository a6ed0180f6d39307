"""
auth/audit.py -- Credential-free audit trail for authentication events.

One log line per event on the "datacatalog.auth.audit" logger. Each record
carries four fields, both in the message and as LogRecord extras
(auth_event, auth_username, auth_outcome, auth_timestamp) so a structured
handler can pick them up without parsing:

  event     -- login, register, logout, password_change, user_create,
               user_update, setup, authorization
  username  -- the name the client supplied (repr'd, so control characters
               cannot forge extra log lines)
  outcome   -- "success" or the AuthError code
  timestamp -- UTC ISO 8601

Never pass a password, credential record, or session token to record().
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

logger = logging.getLogger("datacatalog.auth.audit")

SUCCESS = "success"


def record(event: str, username: str | None, outcome: str = SUCCESS) -> None:
    timestamp = datetime.now(timezone.utc).isoformat()
    level = logging.INFO if outcome == SUCCESS else logging.WARNING
    logger.log(
        level,
        "auth event=%s username=%r outcome=%s at=%s",
        event,
        username,
        outcome,
        timestamp,
        extra={
            "auth_event": event,
            "auth_username": username,
            "auth_outcome": outcome,
            "auth_timestamp": timestamp,
        },
    )
