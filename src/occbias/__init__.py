"""
occbias: exploratory bias assessment of GBIF occurrence data.

Developed in Biodiversity Meets Data (BMD), WP3 task T3.3 (data gap and
bias surfaces), with Swedish longhorn beetles (Cerambycidae) as the case
study. The package loads an occurrence download, bins the records into
periods and runs a set of assessors (record and species numbers,
taxonomic resolution, rarity bias, spatial coverage, spatial bias and
environmental bias) whose results are rendered into a markdown report.
"""

__version__ = "0.1.0"
