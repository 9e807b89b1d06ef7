"""
Player notifications for court assignments.

Builds one message per selected player (court name + the other three players)
and hands it to a push webhook. Delivery is best-effort: failures are logged
and never interrupt a selection.
"""

import logging
import os
from dataclasses import dataclass
from typing import Dict, List, Optional

import httpx

logger = logging.getLogger(__name__)

PUSH_TIMEOUT_SECONDS = 5.0


@dataclass
class PushContext:
    court_name: str
    others: List[str]  # names of the other three players on the court


def _get_push_webhook_url() -> Optional[str]:
    """Read the push webhook URL from the environment."""
    return os.environ.get("PUSH_WEBHOOK_URL")


def build_message(
    session_id: int,
    club_id: int,
    round_number: int,
    context: Optional[PushContext],
    upcoming: bool,
) -> Dict:
    """Build the push payload for one player."""
    if context:
        body = f"Round {round_number} · {context.court_name}\nWith: {', '.join(context.others)}"
    elif upcoming:
        body = f"Round {round_number} - Get ready!"
    else:
        body = f"Round {round_number} - Head to your court!"

    return {
        "title": "You're up next!" if upcoming else "You're up!",
        "body": body,
        "tag": f"round-{session_id}-{round_number}{'-upcoming' if upcoming else ''}",
        "url": f"/clubs/{club_id}/sessions/{session_id}",
    }


async def notify_players(
    session_id: int,
    club_id: int,
    round_number: int,
    contexts: Dict[int, PushContext],
    upcoming: bool = False,
) -> int:
    """
    Send a push notification to every player in `contexts`.

    Args:
        session_id: Session the round belongs to
        club_id: Club owning the session (used for the deep link)
        round_number: Round being announced
        contexts: player_id -> court/teammate details
        upcoming: True for a pre-selected next round

    Returns:
        Number of notifications delivered (0 when no webhook is configured)
    """
    if not contexts:
        return 0

    url = _get_push_webhook_url()
    if not url:
        logger.info(
            "PUSH_WEBHOOK_URL not set, skipping %d notification(s) for session %s round %s",
            len(contexts),
            session_id,
            round_number,
        )
        return 0

    delivered = 0
    async with httpx.AsyncClient(timeout=PUSH_TIMEOUT_SECONDS) as client:
        for player_id, context in contexts.items():
            payload = build_message(session_id, club_id, round_number, context, upcoming)
            payload["player_ids"] = [player_id]
            try:
                resp = await client.post(url, json=payload)
                resp.raise_for_status()
                delivered += 1
            except httpx.HTTPError:
                logger.warning("Push failed for player %s", player_id, exc_info=True)
    return delivered
