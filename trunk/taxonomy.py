"""
The fixed life-area taxonomy.

Eight branches with eight twigs each. Sprouts, leaves and sun reflections
attach to twigs, identified as ``branch-{b}-twig-{t}``.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

BRANCH_COUNT = 8
TWIG_COUNT = 8

_TWIG_ID_RE = re.compile(r"^branch-(\d+)-twig-(\d+)$")


@dataclass(frozen=True)
class Branch:
    """A top-level life area."""

    name: str
    description: str
    twigs: tuple[str, ...]


BRANCHES: tuple[Branch, ...] = (
    Branch("CORE", "fitness & vitality", (
        "movement", "strength", "sport", "technique",
        "maintenance", "nutrition", "sleep", "appearance",
    )),
    Branch("BRAIN", "knowledge & curiosity", (
        "reading", "writing", "reasoning", "focus",
        "memory", "analysis", "dialogue", "exploration",
    )),
    Branch("VOICE", "expression & creativity", (
        "practice", "composition", "interpretation", "performance",
        "consumption", "curation", "completion", "publication",
    )),
    Branch("HANDS", "making & craft", (
        "design", "fabrication", "assembly", "repair",
        "refinement", "tooling", "tending", "preparation",
    )),
    Branch("HEART", "love & family", (
        "homemaking", "care", "presence", "intimacy",
        "communication", "ritual", "adventure", "joy",
    )),
    Branch("BREATH", "regulation & renewal", (
        "observation", "nature", "flow", "repose",
        "idleness", "exposure", "abstinence", "reflection",
    )),
    Branch("BACK", "belonging & community", (
        "connection", "support", "gathering", "membership",
        "stewardship", "advocacy", "service", "culture",
    )),
    Branch("FEET", "stability & direction", (
        "work", "development", "positioning", "ventures",
        "finance", "operations", "planning", "administration",
    )),
)


def twig_id(branch_index: int, twig_index: int) -> str:
    """Build the id of a twig from its indices."""
    return f"branch-{branch_index}-twig-{twig_index}"


def parse_twig_id(value: str) -> tuple[int, int] | None:
    """Split a twig id into (branch_index, twig_index).

    Returns None for anything that is not a well-formed id inside the
    taxonomy.
    """
    match = _TWIG_ID_RE.match(value or "")
    if not match:
        return None
    branch_index, twig_index = int(match.group(1)), int(match.group(2))
    if branch_index >= BRANCH_COUNT or twig_index >= TWIG_COUNT:
        return None
    return branch_index, twig_index


def is_valid_twig_id(value: str) -> bool:
    return parse_twig_id(value) is not None


def twig_label(value: str) -> str:
    """Default display label of a twig, falling back to the raw id."""
    parsed = parse_twig_id(value)
    if parsed is None:
        return value
    branch_index, twig_index = parsed
    return BRANCHES[branch_index].twigs[twig_index]


def all_twig_ids() -> list[str]:
    return [twig_id(b, t) for b in range(BRANCH_COUNT) for t in range(TWIG_COUNT)]
