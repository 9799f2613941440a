"""
Bias assessors. Each one takes the occurrence table, the period list and
the grouping identifier column and returns an AssessmentResult.
"""

from .base import AssessmentResult
from .environment import (EnvironmentalBiasResult, assess_environmental_bias, extract_environment,
                          sample_background)
from .rarity import assess_rarity_bias
from .records import assess_record_number
from .spatial import SpatialCoverageResult, assess_spatial_bias, assess_spatial_coverage
from .species import assess_species_id, assess_species_number

__all__ = [
    "AssessmentResult",
    "EnvironmentalBiasResult",
    "SpatialCoverageResult",
    "assess_environmental_bias",
    "assess_rarity_bias",
    "assess_record_number",
    "assess_spatial_bias",
    "assess_spatial_coverage",
    "assess_species_id",
    "assess_species_number",
    "extract_environment",
    "sample_background",
]
