"""
Loose harvesting of candidate medicine names

Runs independently of the FieldExtractor so the catalog matcher still has
search keys when a noisy line fails the stricter name+strength rule.
"""

import re
import logging
from typing import List

from prescription_scan.config import (
    CANDIDATE_MAX_LENGTH,
    CANDIDATE_MIN_LENGTH,
    DOSAGE_FORMS,
    FREQUENCY_WORDS,
    INSTRUCTION_WORDS,
    STRENGTH_UNITS,
)
from prescription_scan.field_extractor import normalize_text
from prescription_scan.rules import alternation

logger = logging.getLogger(__name__)


_UNITS = alternation(STRENGTH_UNITS)
_DOSAGE_SUFFIX = rf'(?:[ \t]*\d+(?:\.\d+)?[ \t]*(?:{_UNITS})s?\b)?'

# Words that never name a medicine on their own
VOCABULARY = {
    w.lower() for w in INSTRUCTION_WORDS + FREQUENCY_WORDS + DOSAGE_FORMS + STRENGTH_UNITS
} | {
    'for', 'and', 'the', 'with', 'days', 'day', 'weeks', 'week', 'months',
    'month', 'tablets', 'capsules', 'patient', 'name', 'doctor', 'date', 'age',
    'rx', 'sig', 'after', 'meals', 'food', 'water', 'stomach', 'empty',
}


class CandidateNameExtractor:
    """
    Harvest plausible medicine-name strings from recognized text.

    Three pattern strategies (capitalized words, lowercase generic names,
    mixed-case brand names) plus a per-line residual pass feed one ordered,
    deduplicated candidate list.
    """

    def __init__(self, min_length=CANDIDATE_MIN_LENGTH, max_length=CANDIDATE_MAX_LENGTH):
        self.min_length = min_length
        self.max_length = max_length
        self._compile_patterns()

    def _compile_patterns(self):
        """Compile regex patterns for candidate harvesting"""

        start = r'(?:^|(?<=\s))'

        # Capitalized multi-word names, optionally with a strength: "Amoxicillin 250mg"
        self.capitalized_pattern = re.compile(
            start + r'([A-Z][a-z]+(?:[ \t]+[A-Z][a-z]+)*)' + _DOSAGE_SUFFIX,
            re.MULTILINE,
        )

        # Lowercase generic names: "metformin 500 mg"
        self.generic_pattern = re.compile(
            start + r'([a-z]{3,}(?:[ \t]+[a-z]{3,})*)' + _DOSAGE_SUFFIX,
            re.MULTILINE,
        )

        # Mixed-case / all-caps brand names: "CALPOL", "Augmentin625"
        self.brand_pattern = re.compile(
            start + r'([A-Z][A-Za-z0-9]+(?:[ \t]+[A-Z][A-Za-z0-9]+)*)' + _DOSAGE_SUFFIX,
            re.MULTILINE,
        )

        self.instruction_pattern = re.compile(
            rf'\b(?:{alternation(INSTRUCTION_WORDS)})\b', re.IGNORECASE)
        self.dosage_pattern = re.compile(
            rf'\d+(?:\.\d+)?\s*(?:{_UNITS})s?\b', re.IGNORECASE)
        self.duration_pattern = re.compile(
            r'\b(?:for\s+)?\d+\s*(?:days?|weeks?|months?)\b', re.IGNORECASE)
        self.punctuation_pattern = re.compile(r'[^\w\s]')
        self.whitespace_pattern = re.compile(r'\s+')

    def extract(self, text: str) -> List[str]:
        """
        Extract candidate names

        Args:
            text: recognized text

        Returns:
            Deduplicated candidates in first-seen order
        """
        if not isinstance(text, str) or not text.strip():
            return []

        normalized = normalize_text(text)
        candidates = []

        for pattern in (self.capitalized_pattern, self.generic_pattern, self.brand_pattern):
            for match in pattern.finditer(normalized):
                name = match.group(1).strip()
                if self._acceptable(name) and not self._only_vocabulary(name):
                    candidates.append(name)

        candidates.extend(self._line_residuals(normalized))

        result = self._deduplicate(candidates)
        logger.info(f"Harvested {len(result)} candidate medicine names")
        return result

    def _line_residuals(self, normalized_text: str) -> List[str]:
        """Strip instructions and dosages from each line, keep what is left"""
        residuals = []
        for line in normalized_text.split('\n'):
            if not (5 < len(line) < 100):
                continue
            cleaned = self.duration_pattern.sub('', line)
            cleaned = self.instruction_pattern.sub('', cleaned)
            cleaned = self.dosage_pattern.sub('', cleaned)
            cleaned = self.punctuation_pattern.sub(' ', cleaned)
            cleaned = self.whitespace_pattern.sub(' ', cleaned).strip()
            if self._acceptable(cleaned) and not self._only_vocabulary(cleaned):
                residuals.append(cleaned)
        return residuals

    def _acceptable(self, name: str) -> bool:
        return self.min_length <= len(name) <= self.max_length

    @staticmethod
    def _only_vocabulary(name: str) -> bool:
        return all(word.lower() in VOCABULARY or word.isdigit() for word in name.split())

    @staticmethod
    def _deduplicate(candidates: List[str]) -> List[str]:
        seen = set()
        result = []
        for name in candidates:
            key = name.lower()
            if key not in seen:
                seen.add(key)
                result.append(name)
        return result


# Standalone function
def extract_candidate_names(text: str) -> List[str]:
    """Quick function to harvest candidate names with default settings"""
    return CandidateNameExtractor().extract(text)
