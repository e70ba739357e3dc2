"""Consensus check: prompt building and score parsing."""

import json
import logging
import re

logger = logging.getLogger(__name__)

CONSENSUS_THRESHOLD = 0.9

_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)
_SCORE_RE = re.compile(r"(?:consensus|confidence)\s*score\"?\s*[:=]\s*(1(?:\.0+)?|0(?:\.\d+)?)", re.IGNORECASE)


def format_entries(worker_ids: list[str], candidates: list[str], label: str) -> str:
    return "\n\n".join(
        f"## {label} {worker_id}\n{text.strip()}" for worker_id, text in zip(worker_ids, candidates)
    )


def build_consensus_prompt(template: str, worker_ids: list[str], candidates: list[str]) -> str:
    return template.format(entries=format_entries(worker_ids, candidates, "ANSWER"))


def parse_consensus_score(text: str) -> float:
    """Read the 0.0-1.0 similarity score from a referee reply.

    Accepts a bare or fenced JSON object with ``consensusScore``, or a
    "Consensus Score: 0.8" line. Anything unparsable scores 0.0.
    """
    stripped = _FENCE_RE.sub("", text.strip())
    try:
        data = json.loads(stripped)
    except json.JSONDecodeError:
        data = None

    score: float | None = None
    if isinstance(data, dict) and "consensusScore" in data:
        try:
            score = float(data["consensusScore"])
        except (TypeError, ValueError):
            score = None
    if score is None:
        match = _SCORE_RE.search(text)
        if match:
            score = float(match.group(1))
    if score is None:
        logger.warning("Could not parse consensus score, treating as no consensus")
        return 0.0
    return min(max(score, 0.0), 1.0)


def consensus_reached(score: float) -> bool:
    return score >= CONSENSUS_THRESHOLD
