# library_sync/services/folder_classifier.py
"""
Folder classifier for the Drive sync.

Maps a raw folder name to the tag group it represents. The rules form an
ordered, first-match-wins table: a name may satisfy several loose patterns
(a subject called "Science" vs the "Science Stream" stream), so the order in
CLASSIFICATION_RULES is part of the behavior and is covered by tests.

Hierarchy rules (LEVEL, GRADE, STREAM, LESSON) produce navigation nodes.
Attribute rules (MEDIUM, RESOURCE_TYPE, EXAM, YEAR) produce parentless facet
tags and the walker flattens those folders.

A name that matches nothing returns None; the walker then applies its
positional fallback (SUBJECT first, LESSON below a subject).

Usage:
    from library_sync.services.folder_classifier import folder_classifier

    result = folder_classifier.classify("Grade 12")
    if result and result.is_hierarchy:
        ...
"""

import re
from dataclasses import dataclass
from typing import Callable, List, Optional, Pattern

from ..database.models import TagGroup

# Characters that survive str.strip() but are invisible in the Drive UI
_INVISIBLE_CHARS = "\u200b\u200c\u200d\ufeff\xa0"


def normalize_folder_name(name: Optional[str]) -> str:
    """Trim whitespace and invisible characters from both ends of a name."""
    if not name:
        return ""
    return name.strip().strip(_INVISIBLE_CHARS).strip()


def _matches(*patterns: str) -> Callable[[str], bool]:
    compiled: List[Pattern[str]] = [re.compile(p, re.IGNORECASE) for p in patterns]

    def predicate(name: str) -> bool:
        return any(p.search(name) for p in compiled)

    return predicate


@dataclass(frozen=True)
class ClassificationRule:
    """One row of the rule table."""
    name: str
    group: TagGroup
    is_hierarchy: bool
    predicate: Callable[[str], bool]


@dataclass(frozen=True)
class FolderClassification:
    group: TagGroup
    is_hierarchy: bool
    rule: str


# =============================================================================
# Rule table (priority order)
# =============================================================================

_STREAM_KEYWORDS = (
    r"Science|Physical\s*Science|Bio(logical)?\s*Science|Commerce|Arts?|"
    r"Technology|Tech|Maths|Mathematics|Bio|Biology|Common"
)

CLASSIFICATION_RULES: List[ClassificationRule] = [
    ClassificationRule(
        name="level",
        group=TagGroup.LEVEL,
        is_hierarchy=True,
        predicate=_matches(
            r"Subjects$",
            r"^(Primary|Secondary|Scholarship)$",
            r"^\d+\s*-\s*\d+\s*Class(es)?$",
        ),
    ),
    ClassificationRule(
        name="grade",
        group=TagGroup.GRADE,
        is_hierarchy=True,
        predicate=_matches(
            r"^(Grade|Gr\.?|Class|Std\.?|Standard)\s*\d{1,2}(\s|$|-)",
            r"^(O/L|A/L|OL|AL)$",
        ),
    ),
    ClassificationRule(
        name="stream",
        group=TagGroup.STREAM,
        is_hierarchy=True,
        predicate=_matches(
            rf"^({_STREAM_KEYWORDS})\s+Stream$",
            r"^(GIT|General\s+English|General\s+Information\s+Technology)$",
        ),
    ),
    ClassificationRule(
        name="medium",
        group=TagGroup.MEDIUM,
        is_hierarchy=False,
        predicate=_matches(r"^(Sinhala|Tamil|English)(\s+Medium)?$"),
    ),
    ClassificationRule(
        name="resource_type",
        group=TagGroup.RESOURCE_TYPE,
        is_hierarchy=False,
        predicate=_matches(
            r"^(Past\s*Pap.*|Mark(ing)?s?\s*Sch.*|Notes?|Short\s*Notes?|Teac?h.*Gui.*|"
            r"Syllabus|Syllabi|Model\s*Pap.*|Text\s*books?)$"
        ),
    ),
    ClassificationRule(
        name="exam",
        group=TagGroup.EXAM,
        is_hierarchy=False,
        predicate=_matches(
            r"^(1st|2nd|3rd|First|Second|Third)?\s*Term(\s*Test)?$",
            r"^Term\s*[123](\s*Test)?$",
            r"^(Final|Mid)(\s*Term)?(\s*(Exam|Examination|Test))?$",
        ),
    ),
    ClassificationRule(
        name="year",
        group=TagGroup.YEAR,
        is_hierarchy=False,
        predicate=_matches(r"^(19[89]\d|20\d\d)$"),
    ),
    ClassificationRule(
        name="lesson",
        group=TagGroup.LESSON,
        is_hierarchy=True,
        predicate=_matches(
            r"^(Unit|Lesson|Chapter|Module|Topic|Week|Part)\s*[-:.]?\s*\d+",
            r"^\d{1,3}\s*[.\-\u2013\u2014)]\s*\S",
        ),
    ),
]


class FolderClassifier:
    """
    Pure classifier over an ordered rule table.

    Never raises; returns None when no rule matches.
    """

    def __init__(self, rules: Optional[List[ClassificationRule]] = None):
        self.rules = list(rules) if rules is not None else list(CLASSIFICATION_RULES)

    def classify(self, name: Optional[str]) -> Optional[FolderClassification]:
        clean = normalize_folder_name(name)
        if not clean:
            return None
        for rule in self.rules:
            if rule.predicate(clean):
                return FolderClassification(rule.group, rule.is_hierarchy, rule.name)
        return None

    def classify_attribute(self, name: Optional[str]) -> Optional[FolderClassification]:
        """Apply only the attribute rules (used for file names)."""
        clean = normalize_folder_name(name)
        if not clean:
            return None
        for rule in self.rules:
            if not rule.is_hierarchy and rule.predicate(clean):
                return FolderClassification(rule.group, rule.is_hierarchy, rule.name)
        return None


folder_classifier = FolderClassifier()
