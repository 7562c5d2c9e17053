"""
scentlink - Single-cell peak-gene links from multiome counts

Tests, within one cell type, whether chromatin accessibility at a peak is
associated with expression of a nearby gene, using Poisson or negative
binomial regression with adaptive bootstrap p-values.
"""

__version__ = "0.1.0"

from scentlink.core.countmatrix import CountMatrix
from scentlink.core.dataset import MultiomeDataset
from scentlink.stats.association import AssociationConfig, run_association

__all__ = [
    "CountMatrix",
    "MultiomeDataset",
    "AssociationConfig",
    "run_association",
]
