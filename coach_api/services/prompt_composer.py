# coach_api/services/prompt_composer.py

from enum import Enum
from typing import Any, Dict, List, Optional


class ToolType(str, Enum):
    """
    Coaching tools a member can run their content through.
    Values are the identifiers the frontend sends as `toolType`.
    """

    CONTENT_CRITIQUE = "contentCritique"
    WEEK1_RECOGNITION = "week1Recognition"
    WEEK2_OBSERVATION = "week2Observation"
    WEEK3_NAVIGATION = "week3Navigation"
    WEEK4_NATURAL_VOICE = "week4NaturalVoice"
    WEEK5_MICRO_MOMENTS = "week5MicroMoments"
    WEEK6_CONVERT = "week6Convert"
    WEEK7_TRANSFORM = "week7Transform"
    WEEK8_REFINEMENT = "week8Refinement"
    EMAIL_ANALYZER = "emailAnalyzer"
    SALES_PAGE = "salesPage"
    SOCIAL_POST = "socialPost"

    @classmethod
    def from_identifier(cls, raw: Optional[str]) -> "ToolType":
        """Unknown or missing identifiers get the generic content critique."""
        try:
            return cls(raw)
        except ValueError:
            return cls.CONTENT_CRITIQUE


BASE_TEMPLATES: Dict[ToolType, str] = {
    ToolType.CONTENT_CRITIQUE: (
        "You are an expert messaging strategist trained in the CONNECT Method.\n"
        "\n"
        "Analyze content and provide specific, actionable feedback on Recognition "
        "vs Performance, specificity, voice authenticity, and conversion principles.\n"
        "\n"
        "Provide concrete rewrites showing exactly how to improve."
    ),
    ToolType.WEEK1_RECOGNITION: (
        "Week 1: Recognition Analysis. Check if content creates recognition "
        "(about THEM) vs performance (about YOU). Provide ratio and specific rewrites."
    ),
    ToolType.WEEK2_OBSERVATION: (
        "Week 2: Observation Practice. Check if using their exact words, not "
        "projecting your journey. Flag cleaned-up language."
    ),
    ToolType.WEEK3_NAVIGATION: (
        "Week 3: Navigate Resistance. Check if acknowledging protection with "
        "compassion vs trying to overcome. Identify protection pattern."
    ),
    ToolType.WEEK4_NATURAL_VOICE: (
        "Week 4: Natural Voice. Check for performance vs authentic presence. "
        "Flag forced vulnerability."
    ),
    ToolType.WEEK5_MICRO_MOMENTS: (
        "Week 5: Micro-Moments. Check specificity (time, place, thought). "
        "Is it screenshot-worthy? One paragraph max?"
    ),
    ToolType.WEEK6_CONVERT: (
        "Week 6: Recognition Sales. Analyze using 40-30-20-10 formula. "
        "Calculate actual percentages."
    ),
    ToolType.WEEK7_TRANSFORM: (
        "Week 7: Complete Message. Check if recognition is consistent across "
        "all touchpoints."
    ),
    ToolType.WEEK8_REFINEMENT: (
        "Week 8: Refinement. Comprehensive analysis across all 7 weeks. "
        "Integration score and priority fixes."
    ),
    ToolType.EMAIL_ANALYZER: (
        "Email Analysis: Check subject line recognition, opening specificity, "
        "body recognition maintenance, clear CTA."
    ),
    ToolType.SALES_PAGE: (
        "Sales Page Analysis using 40-30-20-10 formula. Calculate exact "
        "percentages and provide section rewrites."
    ),
    ToolType.SOCIAL_POST: (
        "Social Post Analysis: First 7 words, recognition quality, length for "
        "platform, screenshot potential."
    ),
}

# (label, attribute) in the order they appear in the prompt
FOUNDATION_FIELDS = [
    ("Voice Guide", "voice_guide"),
    ("Target Audience", "target_audience"),
    ("Audience Pain Points", "audience_pain_points"),
    ("Unique Positioning", "unique_positioning"),
    ("Audience Observations", "audience_observations"),
    ("Business/Offer", "offer_description"),
]

NOT_PROVIDED = "Not provided"


def template_for(tool_type: ToolType) -> str:
    return BASE_TEMPLATES[tool_type]


def build_foundation_block(foundation: Any) -> str:
    """
    `foundation` is anything exposing the six foundation attributes
    (ORM row or Pydantic model).
    """
    lines = ["USER'S FOUNDATION (Use this context for all analysis):"]
    for label, attr in FOUNDATION_FIELDS:
        value = getattr(foundation, attr, None) or NOT_PROVIDED
        lines.append(f"{label}: {value}")
    return "\n\n".join(lines)


def compose_system_prompt(
    tool_type: Optional[str],
    foundation: Any = None,
    voice_guide: Optional[str] = None,
    week_guide: Optional[str] = None,
) -> str:
    """
    Build the system prompt for one feedback request.

    Context blocks (foundation, extra voice guide, week guide) come first,
    in that order, followed by the tool's base template; blocks are
    separated by blank lines. With no context the base template is
    returned unchanged. Pure: equal inputs give byte-identical output.
    """
    base = template_for(ToolType.from_identifier(tool_type))

    blocks: List[str] = []
    if foundation is not None:
        blocks.append(build_foundation_block(foundation))
    if voice_guide:
        blocks.append(f"ADDITIONAL VOICE GUIDE:\n{voice_guide}")
    if week_guide:
        blocks.append(f"WEEK IMPLEMENTATION GUIDE:\n{week_guide}")

    if not blocks:
        return base
    return "\n\n".join(blocks + [base])
