"""
Insight update broadcaster.

Pushes an ``insights_updated`` event for a user to a webhook (a realtime
gateway, a websocket relay, ...).  Without INSIGHTS_WEBHOOK_URL the event
is only logged.  Failures are logged and reported as False; they never
propagate to the engine.
"""

from __future__ import annotations

import logging
import os
from typing import Any

import requests
from dotenv import load_dotenv

from models import InsightBundle

load_dotenv()

log = logging.getLogger("notifier")

WEBHOOK_URL = os.getenv("INSIGHTS_WEBHOOK_URL", "")
WEBHOOK_TIMEOUT = float(os.getenv("INSIGHTS_WEBHOOK_TIMEOUT", "10"))
EVENT_NAME = "insights_updated"


def build_event(user_id: Any, bundle: InsightBundle) -> dict:
    return {
        "topic": f"user:{user_id}",
        "event": EVENT_NAME,
        "payload": bundle.to_dict(),
    }


def broadcast_insights_update(user_id: Any, bundle: InsightBundle, url: str = None) -> bool:
    """Send the bundle to subscribers of ``user:<user_id>``.

    Returns True when the webhook accepted the event.
    """
    target = url if url is not None else WEBHOOK_URL
    if not target:
        log.info("No INSIGHTS_WEBHOOK_URL configured; %s for user %s not pushed.", EVENT_NAME, user_id)
        return False

    try:
        resp = requests.post(target, json=build_event(user_id, bundle), timeout=WEBHOOK_TIMEOUT)
        resp.raise_for_status()
    except requests.RequestException as e:
        log.warning("Broadcast to %s failed for user %s: %s", target, user_id, e)
        return False

    log.info("Broadcast %s for user %s (%d recommendations)",
             EVENT_NAME, user_id, len(bundle.recommendations))
    return True
