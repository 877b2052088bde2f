# [Core: Consensus]
"""
Diagnosis-name normalization used as the merge key during aggregation.

Two independently prompted models rarely phrase a diagnosis identically
("Hipotiroidismo" vs "Hipotireoidismo", "DM2" vs "Diabetes Mellitus tipo
2"). Names are merged iff their normalized forms are equal, so everything
that decides equality lives here: a prefix list and a finite synonym table.
"""
from __future__ import annotations

import re
from typing import List, Pattern, Tuple

# Descriptive prefixes that do not change the identity of the condition.
DESCRIPTIVE_PREFIXES: Tuple[str, ...] = (
    "síndrome de",
    "sindrome de",
    "doença de",
    "doenca de",
    "transtorno de",
    "syndrome of",
    "disease of",
    "disorder of",
)

# canonical key → variants. Variants are matched as whole words after
# lower-casing and prefix stripping.
SYNONYMS: Tuple[Tuple[str, Tuple[str, ...]], ...] = (
    ("diabetes tipo 2", (
        "diabetes mellitus tipo 2",
        "diabetes mellitus tipo ii",
        "diabetes tipo ii",
        "dm tipo 2",
        "dm2",
        "type 2 diabetes mellitus",
        "diabetes mellitus type 2",
        "type 2 diabetes",
        "t2dm",
    )),
    ("diabetes tipo 1", (
        "diabetes mellitus tipo 1",
        "dm tipo 1",
        "dm1",
        "type 1 diabetes mellitus",
        "diabetes mellitus type 1",
        "type 1 diabetes",
        "t1dm",
    )),
    ("hipotireoidismo", ("hipotiroidismo", "hypothyroidism")),
    ("hipertireoidismo", ("hipertiroidismo", "hyperthyroidism")),
    ("hipotireoidismo subclínico", ("hipotiroidismo subclínico", "subclinical hypothyroidism")),
    ("anemia ferropriva", ("anemia por deficiência de ferro", "iron deficiency anemia", "iron-deficiency anemia")),
    ("doença renal crônica", ("doenca renal cronica", "drc", "chronic kidney disease", "ckd")),
    ("esteatose hepática não alcoólica", ("dhgna", "nafld", "non-alcoholic fatty liver disease")),
    ("síndrome metabólica", ("metabolic syndrome",)),
)

_WHITESPACE = re.compile(r"\s+")
_PREFIX_PATTERN = re.compile(
    r"^(?:" + "|".join(re.escape(p) for p in DESCRIPTIVE_PREFIXES) + r")\s+"
)


def _compile_synonyms() -> List[Tuple[Pattern[str], str]]:
    variants = [(variant, canonical) for canonical, group in SYNONYMS for variant in group]
    # Longest variant first so "diabetes mellitus tipo 2" is replaced whole
    # before "type 2 diabetes"-style fragments get a chance.
    variants.sort(key=lambda pair: len(pair[0]), reverse=True)
    return [
        (re.compile(r"(?<!\w)" + re.escape(variant) + r"(?!\w)"), canonical)
        for variant, canonical in variants
    ]


_SYNONYM_RULES = _compile_synonyms()


def normalize_diagnosis_name(name: str) -> str:
    """
    Normalize a diagnosis name for merge purposes.

    Examples:
        >>> normalize_diagnosis_name("  Hipotiroidismo ")
        'hipotireoidismo'
        >>> normalize_diagnosis_name("Diabetes Mellitus tipo 2")
        'diabetes tipo 2'
        >>> normalize_diagnosis_name("Síndrome de Cushing")
        'cushing'
    """
    key = _WHITESPACE.sub(" ", name.lower().strip())
    key = _PREFIX_PATTERN.sub("", key)
    for pattern, canonical in _SYNONYM_RULES:
        key = pattern.sub(canonical, key)
    return _WHITESPACE.sub(" ", key).strip()
