"""
Typed extraction rules and the engine that evaluates them.

Each rule wraps one compiled pattern and knows how to turn a match into a
value. A RuleEngine holds an ordered list of rules and returns the first
rule that yields a non-empty value, so precedence is the list order and
nothing else.
"""

import re
from dataclasses import dataclass
from typing import ClassVar, Iterable, List, Optional, Tuple

from prescription_scan.config import (
    COUNT_UNITS,
    DOSAGE_FORMS,
    DOSAGE_TRAILERS,
    DOSAGE_UNITS,
    DOSE_UNITS,
    FREQUENCY_WORDS,
    STRENGTH_UNITS,
)


def alternation(words: Iterable[str]) -> str:
    # Longest first so 'tablet' wins over 'tab'
    return '|'.join(sorted((re.escape(w) for w in words), key=len, reverse=True))


# A person's name: capitalized words on a single line
PERSON_NAME = r'([A-Z][a-z]+(?:[ \t]+[A-Z][a-z]+)*)'


@dataclass(frozen=True)
class RuleMatch:
    """Outcome of a rule that fired"""
    kind: str
    label: str
    value: object
    text: str
    captures: Tuple[str, ...] = ()


@dataclass(frozen=True)
class ExtractionRule:
    """Base rule: first match of the pattern, group 1 (or the whole match)"""
    label: str
    pattern: re.Pattern

    kind: ClassVar[str] = 'rule'

    def convert(self, match) -> Optional[object]:
        value = match.group(1) if self.pattern.groups else match.group(0)
        if value is None:
            return None
        value = value.strip()
        return value or None

    def apply(self, text: str) -> Optional[RuleMatch]:
        match = self.pattern.search(text)
        if not match:
            return None
        value = self.convert(match)
        if value is None:
            return None
        captures = tuple((g or '').strip() for g in match.groups())
        return RuleMatch(self.kind, self.label, value, match.group(0), captures)


@dataclass(frozen=True)
class NameRule(ExtractionRule):
    kind: ClassVar[str] = 'name'


@dataclass(frozen=True)
class LineSelectorRule(ExtractionRule):
    """Marks a line as a medicine candidate"""
    kind: ClassVar[str] = 'line'

    def convert(self, match):
        return match.group(0)


@dataclass(frozen=True)
class MedicineRule(ExtractionRule):
    """Combined name + strength; value is a (name, strength) tuple"""
    kind: ClassVar[str] = 'medicine'

    def convert(self, match):
        name = (match.group(1) or '').strip()
        strength = (match.group(2) or '').strip()
        if not name or not strength:
            return None
        return name, strength


@dataclass(frozen=True)
class QuantityRule(ExtractionRule):
    kind: ClassVar[str] = 'quantity'

    def convert(self, match):
        try:
            return max(1, int(match.group(1)))
        except (TypeError, ValueError):
            return None


@dataclass(frozen=True)
class DosageRule(ExtractionRule):
    kind: ClassVar[str] = 'dosage'

    def convert(self, match):
        return match.group(0).strip() or None


@dataclass(frozen=True)
class FrequencyRule(ExtractionRule):
    kind: ClassVar[str] = 'frequency'


@dataclass(frozen=True)
class DurationRule(ExtractionRule):
    kind: ClassVar[str] = 'duration'


class RuleEngine:
    """Evaluates an ordered list of rules; the first non-empty value wins"""

    def __init__(self, rules: Iterable[ExtractionRule]):
        self.rules: Tuple[ExtractionRule, ...] = tuple(rules)

    def evaluate(self, text: str) -> Optional[RuleMatch]:
        if not text:
            return None
        for rule in self.rules:
            result = rule.apply(text)
            if result is not None:
                return result
        return None

    def value(self, text: str, default=None):
        result = self.evaluate(text)
        return result.value if result is not None else default

    def matches(self, text: str) -> bool:
        return self.evaluate(text) is not None

    def __len__(self):
        return len(self.rules)

    def __iter__(self):
        return iter(self.rules)


# ============== Default rule sets ==============

def patient_name_rules() -> List[ExtractionRule]:
    """Explicit labels first, honorific prefixes last"""
    return [
        NameRule('patient_label', re.compile(
            r'\b(?i:patient(?:[ \t]+name)?|name|for)\b[ \t]*:?[ \t]*' + PERSON_NAME)),
        NameRule('prescription_for', re.compile(
            r'\b(?i:prescription[ \t]+for)\b[ \t]*:?[ \t]*' + PERSON_NAME)),
        NameRule('honorific', re.compile(
            r'\b(?i:mrs|mr|ms|dr)\b\.?[ \t]*' + PERSON_NAME)),
    ]


def doctor_name_rules() -> List[ExtractionRule]:
    honorific = r'(?:(?i:dr)\.?[ \t]*)?'
    return [
        NameRule('doctor_label', re.compile(
            r'\b(?i:doctor|dr)\b\.?[ \t]*:?[ \t]*' + honorific + PERSON_NAME)),
        NameRule('physician_label', re.compile(
            r'\b(?i:physician|consultant)\b[ \t]*:?[ \t]*' + honorific + PERSON_NAME)),
    ]


def medicine_line_rules() -> List[ExtractionRule]:
    units = alternation(DOSAGE_UNITS)
    forms = alternation(DOSAGE_FORMS)
    return [
        LineSelectorRule('unit_after_number', re.compile(
            rf'\d[ \t]*(?:{units})\b', re.IGNORECASE)),
        LineSelectorRule('unit_or_form', re.compile(
            rf'\b(?:{units}|(?:{forms})s?)\b', re.IGNORECASE)),
    ]


def medicine_rules() -> List[ExtractionRule]:
    strength_units = alternation(STRENGTH_UNITS)
    return [
        MedicineRule('name_strength', re.compile(
            rf'([A-Za-z][A-Za-z0-9 \t]*?)[ \t]*'
            rf'(\d+(?:\.\d+)?[ \t]*(?:{strength_units})s?)\b',
            re.IGNORECASE)),
    ]


def quantity_rules() -> List[ExtractionRule]:
    return [
        QuantityRule('count_unit', re.compile(
            rf'\b(\d+)[ \t]*(?:{alternation(COUNT_UNITS)})', re.IGNORECASE)),
    ]


def dosage_rules() -> List[ExtractionRule]:
    return [
        DosageRule('count_unit_frequency', re.compile(
            rf'\b\d+[ \t]*(?:{alternation(DOSE_UNITS)})s?[ \t]*'
            rf'(?:{alternation(DOSAGE_TRAILERS)})\b',
            re.IGNORECASE)),
    ]


def frequency_rules() -> List[ExtractionRule]:
    return [
        FrequencyRule('frequency_word', re.compile(
            rf'\b(?:{alternation(FREQUENCY_WORDS)})\b', re.IGNORECASE)),
    ]


def duration_rules() -> List[ExtractionRule]:
    return [
        DurationRule('number_period', re.compile(
            r'(?:\bfor[ \t]+)?\b(\d+[ \t]*(?:day|week|month)s?)\b', re.IGNORECASE)),
    ]
