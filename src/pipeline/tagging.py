"""Technology tag extraction

Scans title + description against a fixed keyword taxonomy. Multi-word
keywords match as phrases; single words need a word boundary on both
sides (lookarounds, so "c++" and "node.js" still match). "ai" and "go"
are too common in plain English for either rule and get their own
context patterns.
"""

import re
from typing import Dict, List, Pattern

TECH_KEYWORDS = (
    # Frontend frameworks
    "react", "vue", "angular", "next.js", "svelte", "remix",
    # Languages
    "javascript", "typescript", "node.js", "python", "java", "c++", "c#",
    "php", "ruby", "go", "rust", "swift", "kotlin", "scala", "clojure",
    # Infrastructure
    "docker", "kubernetes", "aws", "azure", "gcp", "terraform", "ansible",
    # AI/ML
    "ai", "machine learning", "deep learning", "neural network", "tensorflow",
    "pytorch", "scikit-learn", "nlp", "computer vision",
    # Data
    "data science", "data engineering", "big data", "spark", "hadoop",
    # Web3
    "blockchain", "web3", "solidity", "ethereum", "smart contract",
    # Mobile
    "react native", "flutter", "ios development", "android development",
    # Practices
    "software engineering", "software development", "web development",
    "frontend development", "backend development", "fullstack development",
    "devops", "ci/cd", "agile", "scrum",
)

AI_PATTERNS = (
    re.compile(r"\bai\b"),
    re.compile(r"\bartificial intelligence\b"),
    re.compile(r"\bmachine learning\b"),
    re.compile(r"\bml\b"),
    re.compile(r"\bdeep learning\b"),
    re.compile(r"\bneural networks?\b"),
)

GO_PATTERNS = (
    re.compile(r"\bgolang\b"),
    re.compile(r"\bgo\s+(language|programming|developers?|development|code|coding)\b"),
    re.compile(r"\bgo\s+(workshop|meetup|conference|training)\b"),
    re.compile(r"\bgo\s+(backend|server|api)\b"),
)

SPECIAL_PATTERNS: Dict[str, tuple] = {
    "ai": AI_PATTERNS,
    "go": GO_PATTERNS,
}


def _keyword_pattern(keyword: str) -> Pattern:
    return re.compile(rf"(?<![\w]){re.escape(keyword)}(?![\w])")


_SINGLE_WORD_PATTERNS: Dict[str, Pattern] = {
    keyword: _keyword_pattern(keyword)
    for keyword in TECH_KEYWORDS
    if " " not in keyword and keyword not in SPECIAL_PATTERNS
}


def extract_tech_stack(title: str, description: str) -> List[str]:
    """Deduplicated tags in taxonomy order

    Example:
        >>> extract_tech_stack("Intro to Go programming", "")
        ['go']
        >>> extract_tech_stack("Let's go to the meetup", "")
        []
    """
    text = f"{title or ''} {description or ''}".lower()
    tags: List[str] = []

    for keyword in TECH_KEYWORDS:
        special = SPECIAL_PATTERNS.get(keyword)
        if special is not None:
            matched = any(pattern.search(text) for pattern in special)
        elif " " in keyword:
            matched = keyword in text
        else:
            matched = _SINGLE_WORD_PATTERNS[keyword].search(text) is not None

        if matched and keyword not in tags:
            tags.append(keyword)

    return tags
