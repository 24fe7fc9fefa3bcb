"""
system_context.py — grounding context prepended to every model request.

The built-in SYSTEM_CONTEXT carries the verified facts about the site owner
plus the response rules. It can be replaced without a code change by
pointing config.yaml at a file:

    system_context:
        path: ./system_context.md

The override is hot-reloaded on every request via mtime check — no restart
needed. A missing or empty override file falls back to the built-in text.
"""

from __future__ import annotations

import logging
from pathlib import Path

logger = logging.getLogger(__name__)

SYSTEM_CONTEXT = """You are an AI assistant for Michael Gavrilov's professional portfolio website.
Answer questions about Michael based ONLY on the verified facts in this context.

Verified facts.
Michael Gavrilov is a Strategic Account Director at Microsoft in Healthcare and Life Sciences. He leads AI transformation for a strategic pharmaceutical customer, aligning Microsoft technologies to customer priorities.
He has 20+ years of experience in technology and enterprise sales and has been at Microsoft since 2006. He is based in New York City.

Industries.
Healthcare and Life Sciences, including pharma. He has also supported enterprise accounts across sectors such as transportation and manufacturing.

Operating model and portfolio breadth.
He leads cross-functional virtual teams and works across Azure, Microsoft 365 (including Copilot), and Security to drive targeted business outcomes.

Quantified outcomes.
He has architected complex, multi-year agreements totaling more than $250M in total contract value (TCV). In prior enterprise roles, he generated an average of about $20M annually. Earlier in his Microsoft career, he led partner programs that drove a 150% increase in partner-influenced revenue. In an IT operations leadership role, he delivered process improvements and automation that increased operational efficiency by 25%.

Awards and recognition.
He is a 2-time Microsoft Platinum Club recipient and a 2-time Gold Club Award recipient. He received a Champion Award in FY23 Q4 and achieved 100% attainment in FY25.

Education.
Master's degree in Management of Technology from NYU Tandon School of Engineering. Master's degree in Information Systems Engineering and Bachelor's degree in Computer Engineering from Bauman Moscow State Technical University.

Certifications and executive education.
Microsoft Certified: Azure Solutions Architect Expert. AWS Certified Cloud Practitioner. Selling to the C-Suite from Wharton Executive Education. Business Strategy and Financial Acumen from INSEAD Executive Education. Value Negotiation from INSEAD Executive Education.

Contact methods.
LinkedIn is linkedin.com/in/mgavrilov. Email is contact@gavrilov.ai. Resume is available at /CV/Michael-Gavrilov-Resume.pdf.

Response rules.
Write in plain text only. Do not use markdown, headings, bullets, or code formatting. Keep responses concise and professional, under 150 words unless more detail is requested. Only answer questions related to Michael's professional background. If asked about something not in the verified facts, say you do not have that information and offer the LinkedIn or email contact option.

Style guidance (not facts).
Use strategic, outcome-oriented phrasing. When helpful, connect technology work to targeted business outcomes, adoption, and governance or security alignment. Avoid internal Microsoft leveling terms such as IC4 or IC6."""

DEFAULT_OWNER = {"name": "Michael Gavrilov", "short_name": "Michael"}

# Hot-reload state for the override file
_context_text: str = ""
_context_mtime: float = 0.0
_context_path: Path | None = None


def _owner(cfg: dict) -> dict:
    return {**DEFAULT_OWNER, **(cfg.get("owner") or {})}


def _get_path(cfg: dict) -> Path | None:
    """Resolve the override path from config; None when not configured."""
    raw = (cfg.get("system_context") or {}).get("path") or ""
    return Path(raw) if raw else None


def get_system_context(cfg: dict) -> str:
    """
    Return the grounding context, hot-reloading the override file if it changed.
    Falls back to SYSTEM_CONTEXT when no usable override exists.
    """
    global _context_text, _context_mtime, _context_path

    path = _get_path(cfg)
    if path is None:
        return SYSTEM_CONTEXT

    if _context_path is None or _context_path != path:
        _context_path = path
        _context_mtime = 0.0  # Force reload on path change
        _context_text = ""

    if not path.exists():
        if _context_text:
            logger.debug("%s not found — using built-in context", path)
            _context_text = ""
            _context_mtime = 0.0
        return SYSTEM_CONTEXT

    try:
        mtime = path.stat().st_mtime
    except OSError:
        return _context_text or SYSTEM_CONTEXT

    if mtime != _context_mtime:
        try:
            text = path.read_text(encoding="utf-8").strip()
            if text != _context_text:
                logger.info("%s reloaded (%d chars)", path, len(text))
            _context_text = text
            _context_mtime = mtime
        except (OSError, UnicodeDecodeError) as e:
            logger.warning("Failed to reload %s: %s", path, e)

    return _context_text or SYSTEM_CONTEXT


def acknowledgment(cfg: dict) -> str:
    """Synthetic model turn that follows the grounding context."""
    return (
        f"I understand. I will answer questions about {_owner(cfg)['name']} based only on "
        "the professional information provided, being concise and helpful."
    )


def safety_refusal(cfg: dict) -> str:
    """Fixed reply used when the backend withholds an answer on safety grounds."""
    return (
        "I'm sorry, but I can't respond to that type of question. "
        f"Please ask about {_owner(cfg)['short_name']}'s professional background."
    )
