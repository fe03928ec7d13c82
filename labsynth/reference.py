"""
Reference Data Module

Fixed enumerations consumed by the generators and the validation layer:
- Lab sections and their test categories
- Tests per category
- QC analytes and instruments
- Critical value thresholds
- Incident taxonomy
- Organisms and antibiotics for the antibiogram

Adding a section, category, test or organism is a data change here; the
generators read these tables instead of branching on values.
"""

from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple
import math

import pandas as pd

from .exceptions import UnknownCategory, UnknownSection


# Lab sections: Biochemistry, Microbiology, Pathology
SECTIONS: Tuple[str, ...] = ("KBA", "KMA", "KPA")

CATEGORIES: Dict[str, Tuple[str, ...]] = {
    "KBA": ("Chemistry", "Hematology", "Coagulation", "Urinalysis", "Blood Gas"),
    "KMA": ("Culture", "PCR", "Serology", "POCT", "Gram Stain"),
    "KPA": ("Surgical Path", "Cytology", "Molecular", "IHC", "Frozen Section"),
}

TESTS: Dict[str, Tuple[str, ...]] = {
    "Chemistry": ("BMP", "CMP", "Lipid Panel", "LFTs", "Thyroid Panel", "HbA1c", "Glucose", "Creatinine"),
    "Hematology": ("CBC", "CBC with Diff", "Reticulocyte", "ESR", "Blood Film"),
    "Coagulation": ("PT/INR", "PTT", "D-Dimer", "Fibrinogen", "Anti-Xa"),
    "Urinalysis": ("UA", "UA with Micro", "Urine Culture Screen", "UCG"),
    "Blood Gas": ("ABG", "VBG", "Lactate", "Electrolytes POC"),
    "Culture": ("Blood Culture", "Urine Culture", "Wound Culture", "Stool Culture", "Sputum Culture"),
    "PCR": ("Resp Viral Panel", "COVID-19", "Flu A/B", "GI Panel", "Meningitis Panel"),
    "Serology": ("HIV", "Hepatitis Panel", "Syphilis", "CMV", "EBV"),
    "POCT": ("Strep A Rapid", "Flu Rapid", "COVID Rapid", "RSV Rapid"),
    "Gram Stain": ("CSF Gram", "Blood Gram", "Wound Gram", "Sputum Gram"),
    "Surgical Path": ("Biopsy", "Excision", "Resection", "Consultation"),
    "Cytology": ("Pap Smear", "FNA", "Body Fluid", "Bronchial Wash"),
    "Molecular": ("FISH", "PCR Tissue", "NGS Panel", "MSI Testing"),
    "IHC": ("IHC Panel Small", "IHC Panel Large", "Special Stains"),
    "Frozen Section": ("Frozen Section", "Intraop Consult"),
}

# Activity volume
BASE_DAILY_VOLUME: Dict[str, float] = {"KBA": 800, "KMA": 300, "KPA": 150}
CATEGORY_SHARES: Tuple[float, ...] = (0.35, 0.25, 0.20, 0.12, 0.08)

# QC trending
QC_ANALYTES: Tuple[str, ...] = (
    "Glucose", "Creatinine", "Sodium", "Potassium", "Hemoglobin",
    "WBC", "Platelets", "PT", "Troponin", "TSH",
)
QC_LEVELS: Tuple[str, ...] = ("Level 1", "Level 2", "Level 3")
QC_TARGETS: Dict[str, float] = {"Level 1": 50.0, "Level 2": 100.0, "Level 3": 200.0}

INSTRUMENTS: Dict[str, Tuple[str, ...]] = {
    "KBA": ("Cobas 8000", "Cobas 6000", "Sysmex XN", "ACL TOP", "ABL90"),
    "KMA": ("VITEK 2", "BacT/ALERT", "FilmArray", "GeneXpert", "MALDI-TOF"),
    "KPA": ("Leica ST5010", "Ventana BenchMark", "Illumina MiSeq", "Sakura VIP"),
}

# Instruments an analyte may run on; more than one means a random draw per run
QC_ANALYTE_INSTRUMENTS: Dict[str, Tuple[str, ...]] = {
    "Glucose": ("Cobas 8000", "Cobas 6000"),
    "Creatinine": ("Cobas 8000", "Cobas 6000"),
    "Sodium": ("Cobas 8000", "Cobas 6000"),
    "Potassium": ("Cobas 8000", "Cobas 6000"),
    "Troponin": ("Cobas 8000", "Cobas 6000"),
    "TSH": ("Cobas 8000", "Cobas 6000"),
    "Hemoglobin": ("Sysmex XN",),
    "WBC": ("Sysmex XN",),
    "Platelets": ("Sysmex XN",),
    "PT": ("ACL TOP",),
}


@dataclass(frozen=True)
class CriticalTest:
    """Critical value definition for one test"""
    test: str
    low_critical: Optional[float]
    high_critical: Optional[float]
    frequency_weight: float
    is_micro: bool = False

    @property
    def has_low(self) -> bool:
        return self.low_critical is not None


CRITICAL_TESTS: Tuple[CriticalTest, ...] = (
    CriticalTest("Potassium", 2.5, 6.5, 0.15),
    CriticalTest("Glucose", 40, 500, 0.10),
    CriticalTest("Hemoglobin", 6, 20, 0.10),
    CriticalTest("Platelets", 20, 1000, 0.08),
    CriticalTest("PT/INR", None, 5, 0.08),
    CriticalTest("Troponin", None, 0.5, 0.15),
    CriticalTest("Lactate", None, 4, 0.10),
    CriticalTest("WBC", 1, 50, 0.08),
    CriticalTest("Creatinine", None, 10, 0.08),
    CriticalTest("Blood Culture", None, None, 0.08, is_micro=True),
)

ORDERING_UNITS: Tuple[str, ...] = ("ICU", "ED", "Med/Surg", "Oncology", "Cardiology", "OR")
ORDERING_UNIT_WEIGHTS: Tuple[float, ...] = (0.25, 0.25, 0.20, 0.10, 0.10, 0.10)

NOTIFICATION_ATTEMPTS: Tuple[int, ...] = (1, 2, 3, 4)
NOTIFICATION_ATTEMPT_WEIGHTS: Tuple[float, ...] = (0.70, 0.20, 0.08, 0.02)


@dataclass(frozen=True)
class IncidentType:
    """One row of the incident taxonomy"""
    category: str
    type: str
    severity: str
    frequency_weight: float


INCIDENT_TYPES: Tuple[IncidentType, ...] = (
    IncidentType("Pre-analytical", "Specimen mislabeled", "High", 0.15),
    IncidentType("Pre-analytical", "Specimen hemolyzed", "Medium", 0.20),
    IncidentType("Pre-analytical", "Specimen clotted", "Medium", 0.10),
    IncidentType("Pre-analytical", "Wrong tube type", "Medium", 0.08),
    IncidentType("Pre-analytical", "Insufficient volume", "Low", 0.12),
    IncidentType("Analytical", "QC failure", "Medium", 0.08),
    IncidentType("Analytical", "Instrument malfunction", "Medium", 0.06),
    IncidentType("Analytical", "Reagent issue", "Low", 0.04),
    IncidentType("Analytical", "Result error", "High", 0.03),
    IncidentType("Post-analytical", "Report delay", "Low", 0.06),
    IncidentType("Post-analytical", "Wrong result reported", "High", 0.02),
    IncidentType("Post-analytical", "Critical value not called", "High", 0.02),
    IncidentType("Post-analytical", "Report sent to wrong provider", "Medium", 0.04),
)

INCIDENT_CATEGORIES: Tuple[str, ...] = ("Pre-analytical", "Analytical", "Post-analytical")
SEVERITIES: Tuple[str, ...] = ("High", "Medium", "Low")

# Resolution time = offset + Exponential(mean)
RESOLUTION_HOURS: Dict[str, Tuple[float, float]] = {
    "High": (1.0, 4.0),
    "Medium": (2.0, 12.0),
    "Low": (4.0, 24.0),
}

INCIDENT_SECTION_WEIGHTS: Tuple[float, ...] = (0.5, 0.3, 0.2)

ROOT_CAUSES: Tuple[str, ...] = (
    "Human error", "Process gap", "Equipment failure", "Training needed",
    "Communication failure", "System issue",
)
ROOT_CAUSE_WEIGHTS: Tuple[float, ...] = (0.35, 0.25, 0.15, 0.10, 0.10, 0.05)

CORRECTIVE_ACTIONS: Tuple[str, ...] = (
    "Staff counseling", "Process revision", "Equipment repair", "Training provided",
    "Policy update", "System fix", "Under review",
)

# Utilization
ORDERING_DEPARTMENTS: Tuple[str, ...] = (
    "Internal Medicine", "Emergency", "Surgery", "Oncology",
    "Cardiology", "Pediatrics", "OB/GYN", "Neurology",
)
SENDOUT_TESTS: Tuple[str, ...] = (
    "Specialized Genetics", "Rare Disease Panel", "Reference Cytology",
    "Esoteric Chemistry", "Specialized Micro",
)
REFERENCE_LABS: Tuple[str, ...] = ("Mayo", "Quest", "ARUP", "LabCorp")
UTILIZATION_TIERS: Tuple[str, ...] = ("High", "Medium", "Low")

# Antibiogram
ORGANISMS: Tuple[str, ...] = (
    "E. coli", "K. pneumoniae", "P. aeruginosa", "S. aureus", "MRSA",
    "E. faecalis", "E. faecium", "Enterobacter spp.", "Proteus spp.",
    "Acinetobacter spp.",
)
ANTIBIOTICS: Tuple[str, ...] = (
    "Ampicillin", "Amoxicillin/Clav", "Ceftriaxone", "Ceftazidime", "Cefepime",
    "Meropenem", "Ciprofloxacin", "Levofloxacin", "Gentamicin", "Amikacin",
    "TMP/SMX", "Nitrofurantoin", "Vancomycin", "Linezolid", "Daptomycin",
)

GRAM_NEGATIVE: Tuple[str, ...] = (
    "E. coli", "K. pneumoniae", "P. aeruginosa", "Enterobacter spp.",
    "Proteus spp.", "Acinetobacter spp.",
)
GRAM_POSITIVE: Tuple[str, ...] = ("S. aureus", "MRSA", "E. faecalis", "E. faecium")
GRAM_POSITIVE_AGENTS: Tuple[str, ...] = ("Vancomycin", "Linezolid", "Daptomycin")

# Known susceptibility patterns; everything else is drawn ~U(0.6, 0.95)
SUSCEPTIBILITY_OVERRIDES: Dict[Tuple[str, str], float] = {
    ("E. coli", "Ampicillin"): 0.55,
    ("E. coli", "Ceftriaxone"): 0.92,
    ("E. coli", "Ciprofloxacin"): 0.78,
    ("E. coli", "Meropenem"): 0.99,
    ("E. coli", "Nitrofurantoin"): 0.95,
    ("MRSA", "Vancomycin"): 0.99,
    ("MRSA", "Linezolid"): 0.99,
    ("MRSA", "Daptomycin"): 0.99,
    ("MRSA", "Ampicillin"): 0.0,
    ("MRSA", "Ceftriaxone"): 0.0,
    ("MRSA", "Cefepime"): 0.0,
    ("MRSA", "TMP/SMX"): 0.95,
    ("P. aeruginosa", "Ampicillin"): 0.0,
    ("P. aeruginosa", "Ceftriaxone"): 0.0,
    ("P. aeruginosa", "Ceftazidime"): 0.85,
    ("P. aeruginosa", "Meropenem"): 0.88,
    ("P. aeruginosa", "Ciprofloxacin"): 0.75,
}

# Gram-positive organisms are not reported against these agents
GRAM_POSITIVE_UNTESTED: Tuple[str, ...] = ("Nitrofurantoin", "Ceftazidime")

# Agents with a falling susceptibility trend (per year)
RESISTANCE_TREND_AGENTS: Tuple[str, ...] = ("Ciprofloxacin", "Ceftriaxone", "Ampicillin")
RESISTANCE_TREND_PER_YEAR: float = -0.02

# Executive scorecard
SCORECARD_STATUSES: Tuple[str, ...] = ("Green", "Yellow", "Red")

# Turnaround time samples: weekly sample counts and phase duration parameters (minutes)
TAT_CATEGORIES: Dict[str, str] = {"101": "Culture", "221": "PCR", "218": "POCT PCR"}
TAT_SAMPLES_PER_WEEK: Dict[str, int] = {"101": 100, "221": 20, "218": 5}
TAT_PHASES: Dict[str, Dict[str, Tuple[float, float, float]]] = {
    # phase: (mean, sd, floor)
    "101": {"prelab": (45, 20, 5), "inlab": (48 * 60, 12 * 60, 10), "postlab": (120, 60, 5)},
    "221": {"prelab": (45, 20, 5), "inlab": (8 * 60, 2 * 60, 10), "postlab": (120, 60, 5)},
    "218": {"prelab": (10, 5, 5), "inlab": (45, 15, 10), "postlab": (30, 15, 5)},
}


# =========================
# LOOKUPS
# =========================

def categories_for_section(section: str) -> Tuple[str, ...]:
    """Return the categories belonging to a section"""
    try:
        return CATEGORIES[section]
    except KeyError:
        raise UnknownSection(section) from None


def tests_for_category(category: str) -> Tuple[str, ...]:
    """Return the tests belonging to a category"""
    try:
        return TESTS[category]
    except KeyError:
        raise UnknownCategory(category) from None


def section_for_category(category: str) -> str:
    """Return the section a category belongs to"""
    for section, categories in CATEGORIES.items():
        if category in categories:
            return section
    raise UnknownCategory(category)


def all_tests() -> List[str]:
    """All tests in section/category order"""
    return [test for section in SECTIONS for category in CATEGORIES[section] for test in TESTS[category]]


def test_catalog() -> pd.DataFrame:
    """One row per test with its category and section"""
    rows = [
        {"test": test, "category": category, "section": section}
        for section in SECTIONS
        for category in CATEGORIES[section]
        for test in TESTS[category]
    ]
    return pd.DataFrame(rows, columns=["test", "category", "section"])


def category_for_test(test: str) -> str:
    for category, tests in TESTS.items():
        if test in tests:
            return category
    raise UnknownCategory(test)


def critical_tests_frame() -> pd.DataFrame:
    """Critical value definitions as a table (missing thresholds are NaN)"""
    return pd.DataFrame(
        [
            {
                "test": t.test,
                "low_critical": math.nan if t.low_critical is None else float(t.low_critical),
                "high_critical": math.nan if t.high_critical is None else float(t.high_critical),
                "frequency_weight": t.frequency_weight,
                "is_micro": t.is_micro,
            }
            for t in CRITICAL_TESTS
        ]
    )


def incident_types_frame() -> pd.DataFrame:
    """Incident taxonomy as a table"""
    return pd.DataFrame(
        [
            {
                "category": t.category,
                "type": t.type,
                "severity": t.severity,
                "frequency_weight": t.frequency_weight,
            }
            for t in INCIDENT_TYPES
        ]
    )


def is_intrinsically_untested(organism: str, antibiotic: str, base_rate: float) -> bool:
    """Combinations that are never reported on the antibiogram"""
    if base_rate == 0:
        return True
    return organism in GRAM_POSITIVE and antibiotic in GRAM_POSITIVE_UNTESTED


def intrinsic_base_rate(organism: str, antibiotic: str) -> Optional[float]:
    """Fixed base susceptibility for a known pattern, None when it should be drawn"""
    if (organism, antibiotic) in SUSCEPTIBILITY_OVERRIDES:
        return SUSCEPTIBILITY_OVERRIDES[(organism, antibiotic)]
    if antibiotic in GRAM_POSITIVE_AGENTS and organism in GRAM_NEGATIVE:
        return 0.0
    return None


# Named value domains referenced by categorical fields in the schema registry
DOMAINS: Dict[str, Tuple[str, ...]] = {
    "section": SECTIONS,
    "test_category": tuple(c for s in SECTIONS for c in CATEGORIES[s]),
    "test": tuple(all_tests()),
    "qc_analyte": QC_ANALYTES,
    "qc_level": QC_LEVELS,
    "instrument": tuple(i for s in SECTIONS for i in INSTRUMENTS[s]),
    "critical_test": tuple(t.test for t in CRITICAL_TESTS),
    "ordering_unit": ORDERING_UNITS,
    "incident_category": INCIDENT_CATEGORIES,
    "incident_type": tuple(t.type for t in INCIDENT_TYPES),
    "severity": SEVERITIES,
    "incident_status": ("Resolved", "Open"),
    "root_cause": ROOT_CAUSES,
    "corrective_action": CORRECTIVE_ACTIONS,
    "ordering_dept": ORDERING_DEPARTMENTS,
    "sendout_test": SENDOUT_TESTS,
    "reference_lab": REFERENCE_LABS,
    "utilization_tier": UTILIZATION_TIERS,
    "organism": ORGANISMS,
    "antibiotic": ANTIBIOTICS,
    "scorecard_status": SCORECARD_STATUSES,
    "tat_category": tuple(TAT_CATEGORIES),
    "tat_category_name": tuple(TAT_CATEGORIES.values()),
}


def domain_values(domain: str) -> Tuple[str, ...]:
    """Allowed values of a named domain"""
    try:
        return DOMAINS[domain]
    except KeyError:
        raise KeyError(f"Unknown value domain: {domain}") from None
