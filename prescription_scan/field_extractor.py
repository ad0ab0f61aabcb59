"""
Structured field extraction for prescription text
Recovers patient, doctor and medicine lines with ordered regex rules
"""

import re
import logging
from typing import List, Optional

from prescription_scan.models import MedicineEntry, PrescriptionDocument
from prescription_scan.rules import (
    RuleEngine,
    doctor_name_rules,
    dosage_rules,
    duration_rules,
    frequency_rules,
    medicine_line_rules,
    medicine_rules,
    patient_name_rules,
    quantity_rules,
)

logger = logging.getLogger(__name__)

_INLINE_WHITESPACE = re.compile(r'[^\S\n]+')


def normalize_text(text: str) -> str:
    """Collapse whitespace inside each line and drop blank lines"""
    text = text.replace('\r\n', '\n').replace('\r', '\n')
    lines = (_INLINE_WHITESPACE.sub(' ', line).strip() for line in text.split('\n'))
    return '\n'.join(line for line in lines if line)


def unit_for_strength(strength: str) -> str:
    """Liquid strengths are dispensed in ml, everything else by the tablet"""
    lowered = strength.lower()
    if re.search(r'\d\s*ml\b', lowered) or lowered.endswith('ml'):
        return 'ml'
    return 'tablet'


class FieldExtractor:
    """
    Parse recognized prescription text into a PrescriptionDocument.

    Extraction is lossy and first-match-wins: lines that do not satisfy the
    name+strength rule are dropped and missing fields stay empty.
    """

    def __init__(
        self,
        patient_rules: Optional[RuleEngine] = None,
        doctor_rules: Optional[RuleEngine] = None,
        line_rules: Optional[RuleEngine] = None,
        medicine_rule_engine: Optional[RuleEngine] = None,
    ):
        self.patient_rules = patient_rules or RuleEngine(patient_name_rules())
        self.doctor_rules = doctor_rules or RuleEngine(doctor_name_rules())
        self.line_rules = line_rules or RuleEngine(medicine_line_rules())
        self.medicine_rules = medicine_rule_engine or RuleEngine(medicine_rules())
        self.quantity_rules = RuleEngine(quantity_rules())
        self.dosage_rules = RuleEngine(dosage_rules())
        self.frequency_rules = RuleEngine(frequency_rules())
        self.duration_rules = RuleEngine(duration_rules())

    def extract(self, text: str) -> PrescriptionDocument:
        """
        Extract patient, doctor and medicine entries

        Args:
            text: recognized text

        Returns:
            PrescriptionDocument (empty when nothing could be parsed)
        """
        if not isinstance(text, str) or not text.strip():
            return PrescriptionDocument()

        try:
            normalized = normalize_text(text)
            patient_name = self.patient_rules.value(normalized, '')
            doctor_name = self.doctor_rules.value(normalized, '')

            entries = []
            for line in self.candidate_lines(normalized):
                entry = self.parse_line(line)
                if entry is not None:
                    entries.append(entry)

            logger.info(f"Extracted {len(entries)} medicine entries "
                        f"(patient={'yes' if patient_name else 'no'}, "
                        f"doctor={'yes' if doctor_name else 'no'})")

            return PrescriptionDocument(
                patient_name=patient_name,
                doctor_name=doctor_name,
                medicine_entries=tuple(entries),
            )
        except Exception as e:
            logger.error(f"Field extraction failed: {e}", exc_info=True)
            return PrescriptionDocument()

    def candidate_lines(self, normalized_text: str) -> List[str]:
        """Lines that mention a dosage unit or dosage form"""
        return [line for line in normalized_text.split('\n')
                if self.line_rules.matches(line)]

    def parse_line(self, line: str) -> Optional[MedicineEntry]:
        """Parse one candidate line, or None if it has no name+strength"""
        match = self.medicine_rules.evaluate(line)
        if match is None:
            logger.debug(f"Dropped line without name+strength: {line!r}")
            return None

        name, strength = match.value
        return MedicineEntry(
            name=name,
            strength=strength,
            quantity=self.quantity_rules.value(line, 1),
            dosage=self.dosage_rules.value(line, ''),
            frequency=self.frequency_rules.value(line, ''),
            duration=self.duration_rules.value(line, ''),
            source_line=line,
            unit=unit_for_strength(strength),
        )


# Standalone function
def extract_prescription_fields(text: str) -> PrescriptionDocument:
    """Quick function to parse recognized text with the default rules"""
    return FieldExtractor().extract(text)
