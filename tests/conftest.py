"""
Pytest configuration and shared fixtures.

This module provides synthetic multiome data generators and shared fixtures
for all test suites.
"""

import numpy as np
import pandas as pd
import pytest

from scentlink.core.countmatrix import CountMatrix
from scentlink.core.dataset import MultiomeDataset


LINKED_GENE = "GENE_LINKED"
NULL_GENE = "GENE_NULL"
ZERO_GENE = "GENE_ZERO"
RARE_GENE = "GENE_RARE"

LINKED_PEAK = "chr1-1000-1500"
NULL_PEAK = "chr1-5000-5500"
ZERO_PEAK = "chr2-100-600"
OPEN_PEAK = "chr2-900-1400"
WIDE_PEAK = "chr3-10-510"


def generate_multiome(
    n_cells: int = 200,
    n_other: int = 40,
    effect: float = 1.0,
    seed: int = 42,
):
    """
    Generate a small synthetic RNA + ATAC + metadata triple.

    Args:
        n_cells: Cells labelled "Tcell"
        n_other: Cells labelled "Bcell"
        effect: Log-scale effect of LINKED_PEAK accessibility on LINKED_GENE
        seed: Random seed for reproducibility

    Returns:
        (rna, atac, metadata) with metadata carrying a ``cell`` column

    Design:
        - LINKED_GENE ~ Poisson(exp(0.3 + effect * open(LINKED_PEAK)))
        - NULL_GENE ~ Poisson(1.2), independent of every peak
        - ZERO_GENE is never detected; RARE_GENE is detected in ~2% of cells
        - ZERO_PEAK is never open
        - ATAC columns are stored in reverse cell order, so any positional
          alignment of the two matrices would be wrong
        - Metadata covariates: log_umi (numeric), batch (categorical)
    """
    rng = np.random.default_rng(seed)
    n = n_cells + n_other
    cells = [f"cell_{i:04d}" for i in range(n)]

    def open_counts(p):
        return rng.binomial(1, p, size=n) * rng.integers(1, 4, size=n)

    peaks = {
        LINKED_PEAK: open_counts(0.4),
        NULL_PEAK: open_counts(0.3),
        ZERO_PEAK: np.zeros(n, dtype=int),
        OPEN_PEAK: open_counts(0.5),
        WIDE_PEAK: open_counts(0.2),
    }

    linked_open = (peaks[LINKED_PEAK] > 0).astype(float)
    rare = np.zeros(n, dtype=int)
    rare[rng.choice(n, size=max(1, n // 50), replace=False)] = 1
    genes = {
        LINKED_GENE: rng.poisson(np.exp(0.3 + effect * linked_open)),
        NULL_GENE: rng.poisson(1.2, size=n),
        ZERO_GENE: np.zeros(n, dtype=int),
        RARE_GENE: rare,
    }

    rna = CountMatrix.from_dense(
        np.vstack(list(genes.values())), feature_ids=list(genes), cell_ids=cells
    )
    atac_data = np.vstack(list(peaks.values()))[:, ::-1]
    atac = CountMatrix.from_dense(atac_data, feature_ids=list(peaks), cell_ids=cells[::-1])

    metadata = pd.DataFrame({
        "cell": cells,
        "celltype": ["Tcell"] * n_cells + ["Bcell"] * n_other,
        "log_umi": rng.normal(8.0, 0.5, size=n),
        "batch": rng.choice(["b1", "b2"], size=n),
    })
    return rna, atac, metadata


@pytest.fixture
def multiome():
    """(rna, atac, metadata) with a linked gene-peak pair."""
    return generate_multiome()


@pytest.fixture
def dataset(multiome):
    """MultiomeDataset without covariates."""
    rna, atac, metadata = multiome
    return MultiomeDataset(rna, atac, metadata, celltype_column="celltype")


@pytest.fixture
def dataset_with_covariates(multiome):
    """MultiomeDataset with a numeric and a categorical covariate."""
    rna, atac, metadata = multiome
    return MultiomeDataset(
        rna, atac, metadata, celltype_column="celltype", covariates=["log_umi", "batch"]
    )


def poisson_design(n=300, beta=(0.4, 0.7), seed=0, intercept=True):
    """
    Simulated Poisson regression data.

    Returns:
        (y, X) with X = [atac, covariate, (intercept)]
    """
    rng = np.random.default_rng(seed)
    atac = rng.binomial(1, 0.4, size=n).astype(float)
    cov = rng.normal(0.0, 1.0, size=n)
    eta = 0.2 + beta[0] * atac + 0.3 * cov * beta[1]
    y = rng.poisson(np.exp(eta)).astype(float)
    columns = [atac, cov]
    if intercept:
        columns.append(np.ones(n))
    return y, np.column_stack(columns)


def negbin_design(n=400, beta=0.6, alpha=0.5, seed=1, intercept=True):
    """Simulated NB2 regression data with dispersion ``alpha``."""
    rng = np.random.default_rng(seed)
    atac = rng.binomial(1, 0.5, size=n).astype(float)
    mu = np.exp(0.5 + beta * atac)
    size = 1.0 / alpha
    y = rng.negative_binomial(size, size / (size + mu)).astype(float)
    columns = [atac]
    if intercept:
        columns.append(np.ones(n))
    return y, np.column_stack(columns)
