"""
Diagnosis Heuristics
====================

Keyword tables used during ORIENT: root-cause inference, issue
classification and the skills a fix is likely to need. English and Arabic
vocabulary are both recognized, matching the languages CodeForge users
report issues in.
"""

import re
from typing import Optional

from forgeheal.models import IssueCategory


STANDARDS = [
    "All imports/exports must remain valid",
    "No unrelated code modifications",
    "Match existing code style",
    "Meaningful commit messages",
]

STYLE_TERMS = ("style", "css", "color", "size", "position", "layout", "لون", "حجم", "واجهة")
RENDER_TERMS = ("render", "display", "show", "appear", "يظهر", "عرض")
INTERACTION_TERMS = ("work", "function", "click", "button", "يعمل", "زر")
PERFORMANCE_TERMS = ("slow", "perf", "lag", "بطيء")

_FEATURE_WORD = re.compile(r"\b(feature|add|adding)\b|إضافة")
_UI_WORD = re.compile(r"\bui\b|render|display|واجهة")


def _mentions(text: str, terms) -> bool:
    return any(term in text for term in terms)


def infer_root_cause(description: str, top_files: list[str]) -> str:
    """
    Map an issue description to a root-cause hypothesis.

    Args:
        description: User's issue text
        top_files: Highest-ranked related files

    Returns:
        A one-line explanation naming the most likely file(s)
    """
    text = description.lower()
    first = top_files[0] if top_files else "unknown"

    if _mentions(text, STYLE_TERMS):
        css_files = [f for f in top_files if f.endswith((".css", ".scss"))]
        if css_files:
            return (
                f"CSS/Style issue in {', '.join(css_files)}: layout or visual "
                f"properties may need adjustment"
            )
        return "Style issue: CSS properties may need correction in component or module stylesheet"

    if _mentions(text, RENDER_TERMS):
        return f"Component rendering issue: conditional logic or state management in {first} may need fixing"

    if _mentions(text, INTERACTION_TERMS):
        return f"Logic/functionality issue: event handler or state update in {first} may be broken"

    if _mentions(text, PERFORMANCE_TERMS):
        return f"Performance issue: potential unnecessary re-renders or heavy computation in {first}"

    files = ", ".join(top_files[:3]) or "no matching files"
    return f"Issue detected in {files}: requires manual analysis of: {description[:100]}"


def detect_category(description: str, root_cause: str = "") -> IssueCategory:
    """Classify an issue from its description and inferred root cause."""
    combined = f"{description} {root_cause}".lower()

    if _mentions(combined, ("css", "style", "لون")):
        return IssueCategory.STYLE
    if _mentions(combined, ("slow", "perf", "بطيء")):
        return IssueCategory.PERFORMANCE
    if _mentions(combined, ("access", "aria", "screen reader")):
        return IssueCategory.ACCESSIBILITY
    if _FEATURE_WORD.search(combined):
        return IssueCategory.FEATURE_ENHANCEMENT
    if _UI_WORD.search(combined):
        return IssueCategory.UI_BUG
    return IssueCategory.LOGIC_ERROR


def derive_skills(scope: list[str], file_map: dict[str, str]) -> list[str]:
    """Skills a fix over ``scope`` is likely to need, in first-seen order."""
    skills: list[str] = []

    def add(skill: str) -> None:
        if skill not in skills:
            skills.append(skill)

    for path in scope:
        content: Optional[str] = file_map.get(path)
        if content is None:
            continue
        if path.endswith((".tsx", ".jsx")):
            add("React")
        if path.endswith((".ts", ".tsx")):
            add("TypeScript")
        if path.endswith((".css", ".scss")):
            add("CSS")
        if "zustand" in content:
            add("Zustand")
        if "fetch(" in content or "axios" in content:
            add("API Integration")
        if "useEffect" in content or "useState" in content:
            add("React Hooks")
    return skills
