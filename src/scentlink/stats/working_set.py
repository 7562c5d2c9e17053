"""
Per-pair working set assembly and sparsity screening.

For one (gene, peak) pair the working set is a cells × columns table holding
the gene's expression counts (response), the peak's accessibility (predictor
of interest) and the model covariates, restricted to one cell type.

Biological Context:
    Cells where a gene is never detected, or a peak is never open, carry
    no information about their association. When fewer than 5% of cells
    are nonzero for either signal the Poisson/NB fit is driven by a handful
    of cells and the bootstrap distribution degenerates, so such pairs are
    screened out before any regression is attempted.

Alignment:
    The three sources are joined on cell identifier (inner join), never by
    position, and the result is sorted by cell identifier so that the
    working set does not depend on the column order of the input matrices.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Sequence

import numpy as np
import pandas as pd
from numpy.typing import NDArray

from scentlink.core.dataset import MultiomeDataset
from scentlink.core.errors import SparsityRejection

__all__ = [
    'WorkingSet',
    'assemble_working_set',
    'covariate_design',
    'nonzero_fractions',
    'passes_sparsity_screen',
    'require_sparsity_screen',
    'MIN_NONZERO_FRACTION',
]

logger = logging.getLogger(__name__)

MIN_NONZERO_FRACTION = 0.05

RESPONSE = "exprs"
TERM = "atac"
INTERCEPT = "intercept"


@dataclass(frozen=True, eq=False)
class WorkingSet:
    """
    Aligned per-cell model table for one pair and one cell type.

    Attributes:
        gene: Gene identifier (response)
        peak: Peak identifier (predictor of interest)
        frame: One row per cell; columns ``exprs``, ``atac``, covariate
            design columns and optionally ``intercept``
        predictors: Design column names, ``atac`` first
        response: Response column name
    """

    gene: str
    peak: str
    frame: pd.DataFrame
    predictors: tuple[str, ...]
    response: str = RESPONSE

    @property
    def n_cells(self) -> int:
        return len(self.frame)

    @property
    def y(self) -> NDArray[np.float64]:
        return self.frame[self.response].to_numpy(dtype=np.float64)

    @property
    def X(self) -> NDArray[np.float64]:
        """Design matrix in predictor order (n_cells × n_predictors)."""
        return self.frame[list(self.predictors)].to_numpy(dtype=np.float64)

    @property
    def term_index(self) -> int:
        return self.predictors.index(TERM)


def covariate_design(metadata: pd.DataFrame, covariates: Sequence[str]) -> pd.DataFrame:
    """
    Numeric design columns for the requested covariates.

    Numeric covariates pass through as float. Anything else is treated as
    categorical and dummy coded against its first level, which is what an
    R-style ``y ~ x + batch`` formula would produce.
    """
    columns = []
    for cov in covariates:
        values = metadata[cov]
        if pd.api.types.is_bool_dtype(values) or pd.api.types.is_numeric_dtype(values):
            columns.append(values.astype(float).rename(cov))
        else:
            dummies = pd.get_dummies(
                values.astype("category"), prefix=cov, drop_first=True, dtype=float
            )
            columns.append(dummies)
    if not columns:
        return pd.DataFrame(index=metadata.index)
    return pd.concat(columns, axis=1)


def assemble_working_set(
    dataset: MultiomeDataset,
    gene: str,
    peak: str,
    celltype: str,
    binarize: bool = True,
    add_intercept: bool = False,
) -> WorkingSet:
    """
    Build the working set for one (gene, peak) pair.

    Args:
        dataset: Validated multiome inputs
        gene: Row of the RNA matrix used as response
        peak: Row of the ATAC matrix used as predictor of interest
        celltype: Cell-type label to restrict to
        binarize: Map every positive accessibility count to 1
        add_intercept: Append a constant ``intercept`` column (backends that
            do not add their own constant need it)

    Returns:
        WorkingSet restricted to ``celltype``; may have zero rows.

    Raises:
        FeatureNotFoundError: If ``gene`` or ``peak`` is not in its matrix
    """
    atac = dataset.atac.row_series(peak).rename(TERM)
    if binarize:
        atac = atac.where(atac <= 0, 1.0)
    exprs = dataset.rna.row_series(gene).rename(RESPONSE)

    meta = dataset.metadata
    frame = pd.concat([exprs, atac], axis=1, join="inner")
    frame = frame.join(meta[[dataset.celltype_column]], how="inner")
    frame = frame[frame[dataset.celltype_column].astype(str) == str(celltype)]

    design = covariate_design(meta.loc[frame.index], dataset.covariates)
    frame = pd.concat([frame[[RESPONSE, TERM]], design], axis=1)

    n_before = len(frame)
    frame = frame.dropna()
    if len(frame) < n_before:
        logger.debug(
            f"{gene} - {peak}: dropped {n_before - len(frame)} cells with missing covariates"
        )

    predictors = [TERM, *design.columns]
    if add_intercept:
        frame[INTERCEPT] = 1.0
        predictors.append(INTERCEPT)

    frame = frame.sort_index()
    return WorkingSet(gene=gene, peak=peak, frame=frame, predictors=tuple(predictors))


def nonzero_fractions(working_set: WorkingSet) -> tuple[float, float]:
    """Fraction of cells with nonzero expression and nonzero accessibility."""
    n = working_set.n_cells
    if n == 0:
        return 0.0, 0.0
    frame = working_set.frame
    frac_exprs = float((frame[working_set.response] > 0).sum()) / n
    frac_atac = float((frame[TERM] > 0).sum()) / n
    return frac_exprs, frac_atac


def passes_sparsity_screen(
    working_set: WorkingSet,
    threshold: float = MIN_NONZERO_FRACTION,
) -> bool:
    """True only if both nonzero fractions are strictly above ``threshold``."""
    frac_exprs, frac_atac = nonzero_fractions(working_set)
    return frac_exprs > threshold and frac_atac > threshold


def require_sparsity_screen(
    working_set: WorkingSet,
    threshold: float = MIN_NONZERO_FRACTION,
) -> None:
    """
    Raise SparsityRejection if the pair fails the screen.

    Raises:
        SparsityRejection: Carrying both fractions and the threshold
    """
    frac_exprs, frac_atac = nonzero_fractions(working_set)
    if not (frac_exprs > threshold and frac_atac > threshold):
        raise SparsityRejection(frac_exprs, frac_atac, threshold)
