from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any

from sqlalchemy.orm import Session

from suggestion_relay.services.lindy_callback import CallbackOutcome, handle_callback

SIMULATED_ENDPOINT = "simulated://lindy/webhooks"

MOCK_SUGGESTIONS: list[dict[str, Any]] = [
    {
        "suggestion": (
            "We help ambitious professionals transform their expertise into scalable online "
            "businesses through proven frameworks and personalized coaching."
        ),
        "confidence": 0.95,
        "reasoning": "Based on your B2B focus and professional services industry",
    },
    {
        "suggestion": (
            "Empowering service-based businesses to break free from the time-for-money trap by "
            "building systems that scale without sacrificing quality."
        ),
        "confidence": 0.92,
        "reasoning": "Aligned with business type and industry focus",
    },
    {
        "suggestion": "Transform your professional expertise into a thriving digital ecosystem that works while you sleep.",
        "confidence": 0.88,
        "reasoning": "Captures transformation and scalability themes",
    },
]


def build_mock_callback(business_id: str, question_id: str = "Q7") -> dict[str, Any]:
    slot = question_id.lower()
    return {
        "type": f"{slot}_suggestions_ready",
        "project_id": business_id,
        f"{slot}_suggestions": MOCK_SUGGESTIONS,
        "metadata": {
            "model": "test-simulation",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "test": True,
        },
    }


def simulate_callback(db: Session, business_id: str, question_id: str = "Q7") -> CallbackOutcome:
    """Run a canned Lindy callback through the real receiver (no signature)."""
    raw_body = json.dumps(build_mock_callback(business_id, question_id)).encode("utf-8")
    return handle_callback(db, raw_body=raw_body, headers={}, endpoint=SIMULATED_ENDPOINT)
