"""Topic filter: keep software / data / AI events, drop everything else

Opt-in (``tech_filter_enabled``). Events that say "tech" outright only
lose to obviously unrelated topics; others need a tag or a development
signal and must not match the non-tech blocklist.
"""

import re
from typing import List

EXPLICIT_TECH = re.compile(r"\btech\b", re.IGNORECASE)

TECH_INDICATORS = (
    re.compile(r"\b(software|code|coding|programming|development|engineering|developers?|engineers?|dev)\b", re.I),
    re.compile(r"\b(react|vue|angular|javascript|typescript|python|java|node|ai|ml|machine learning|data science)\b", re.I),
    re.compile(r"\b(frontend|backend|fullstack|devops|cloud|aws|azure|gcp|docker|kubernetes)\b", re.I),
)

OBVIOUS_NON_TECH = (
    re.compile(r"(wine|beer|cocktail|drinks|dinner|lunch|brunch)\s+(event|party|reception|tasting)", re.I),
    re.compile(r"\b(yoga|fitness|workout|gym|kettlebell|meditation)\b", re.I),
    re.compile(r"\b(music|concert|theater|gallery|exhibition|poetry)\b", re.I),
)

NON_TECH = OBVIOUS_NON_TECH + (
    re.compile(r"(language exchange|networking mixer|happy hour|trivia|food drive|bar crawl)", re.I),
    re.compile(r"\b(wellness|real estate|accounting)\b", re.I),
    re.compile(r"(marketing|sales|business development|finance)\s+(meetup|workshop|event)", re.I),
    re.compile(r"(podcast|youtube|content creation|social media)\s+(workshop|event)", re.I),
)


def is_tech_event(title: str, description: str, tech_stack: List[str]) -> bool:
    text = f"{title or ''} {description or ''}"

    if EXPLICIT_TECH.search(text):
        return not any(p.search(text) for p in OBVIOUS_NON_TECH)

    if not tech_stack:
        return False
    if not any(p.search(text) for p in TECH_INDICATORS):
        return False
    return not any(p.search(text) for p in NON_TECH)
