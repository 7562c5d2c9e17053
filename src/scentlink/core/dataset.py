"""
Paired RNA/ATAC inputs plus cell metadata, with an eager validation pass.

MultiomeDataset bundles everything the association engine reads but never
writes: the expression matrix, the accessibility matrix, and the cell
metadata table with its cell-type and covariate columns.

Validation runs once, before any pair is processed, and reports every
structural problem together instead of failing piecemeal mid-run:

    >>> dataset = MultiomeDataset(rna, atac, metadata, covariates=["log_umi"])
    >>> problems = dataset.validate()
    >>> if problems:
    ...     print("\\n".join(problems))
    >>> dataset.require_valid()   # raises ValidationError with all problems
"""

from __future__ import annotations

import logging
import warnings
from typing import Iterable, Sequence

import pandas as pd

from scentlink.core.countmatrix import CountMatrix
from scentlink.core.errors import ValidationError

__all__ = ['MultiomeDataset', 'validate_inputs', 'coerce_pairs']

logger = logging.getLogger(__name__)


def coerce_pairs(pairs: pd.DataFrame | Iterable[Sequence[str]]) -> pd.DataFrame:
    """
    Normalize a candidate pair list to a two-column DataFrame (gene, peak).

    Accepts a DataFrame whose first two columns are gene then peak (any
    names), or any iterable of (gene, peak) tuples. Order is preserved.
    """
    if isinstance(pairs, pd.DataFrame):
        if pairs.shape[1] < 2:
            raise ValueError(f"pair table needs gene and peak columns, got {list(pairs.columns)}")
        if {'gene', 'peak'}.issubset(pairs.columns):
            frame = pairs[['gene', 'peak']]
        else:
            frame = pairs.iloc[:, :2].copy()
            frame.columns = ['gene', 'peak']
    else:
        frame = pd.DataFrame([tuple(p)[:2] for p in pairs], columns=['gene', 'peak'])
    return frame.astype(str).reset_index(drop=True)


def _index_metadata(metadata: pd.DataFrame, cell_column: str) -> pd.DataFrame:
    """Return metadata indexed by cell id (taken from ``cell_column`` if present)."""
    if cell_column in metadata.columns:
        metadata = metadata.set_index(cell_column)
    metadata = metadata.copy()
    metadata.index = metadata.index.astype(str)
    metadata.index.name = cell_column
    return metadata


def validate_inputs(
    rna: CountMatrix,
    atac: CountMatrix,
    metadata: pd.DataFrame,
    celltype_column: str,
    covariates: Sequence[str] = (),
    pairs: pd.DataFrame | None = None,
    strict_pairs: bool = False,
) -> list[str]:
    """
    Check the structural agreement of all inputs.

    Args:
        rna: Expression matrix (genes × cells)
        atac: Accessibility matrix (peaks × cells)
        metadata: Cell metadata indexed by cell id
        celltype_column: Column holding cell-type labels
        covariates: Covariate columns the model will use
        pairs: Optional candidate pairs (gene, peak)
        strict_pairs: If True, pairs naming unknown genes/peaks are violations.
            Otherwise they are only logged and handled per pair.

    Returns:
        List of violation messages; empty if the inputs are usable.
    """
    errors: list[str] = []

    if rna.n_cells != atac.n_cells:
        errors.append(
            f"The number of cells in the RNA matrix is {rna.n_cells} and in the "
            f"ATAC matrix is {atac.n_cells}. These must be equal; check that the "
            f"matrices are oriented (genes x cells) and (peaks x cells)."
        )

    rna_cells = set(rna.cell_ids)
    atac_cells = set(atac.cell_ids)
    if rna_cells != atac_cells:
        only_rna = len(rna_cells - atac_cells)
        only_atac = len(atac_cells - rna_cells)
        errors.append(
            f"Cell identifiers differ between matrices: {only_rna} only in RNA, "
            f"{only_atac} only in ATAC."
        )

    if not metadata.index.is_unique:
        n_dup = int(metadata.index.duplicated().sum())
        errors.append(f"Metadata has {n_dup} duplicated cell identifiers.")

    if not rna_cells & set(metadata.index):
        errors.append("No metadata rows match the cell identifiers of the matrices.")

    if celltype_column not in metadata.columns:
        errors.append(
            f"Cell-type column '{celltype_column}' not found in metadata "
            f"(columns: {list(metadata.columns)})."
        )

    missing_cov = [c for c in covariates if c not in metadata.columns]
    if missing_cov:
        errors.append(f"Covariates not found in metadata columns: {missing_cov}.")

    reserved = {'exprs', 'atac', 'intercept'} & set(covariates)
    if reserved:
        errors.append(f"Covariate names collide with reserved columns: {sorted(reserved)}.")

    for label, matrix in (("RNA", rna), ("ATAC", atac)):
        if not matrix.is_integer_valued():
            errors.append(f"The {label} matrix contains non-integer values; counts are required.")

    if atac.n_features < rna.n_features:
        warnings.warn(
            f"In general there are more peaks than genes. Currently there are "
            f"{atac.n_features} peaks and {rna.n_features} genes.",
            UserWarning,
            stacklevel=2,
        )

    if pairs is not None:
        unknown_genes = sorted(set(pairs['gene']) - set(rna.feature_ids))
        unknown_peaks = sorted(set(pairs['peak']) - set(atac.feature_ids))
        messages = []
        if unknown_genes:
            messages.append(
                f"{len(unknown_genes)} pair gene(s) are not rows of the RNA matrix "
                f"(e.g. {unknown_genes[:3]})."
            )
        if unknown_peaks:
            messages.append(
                f"{len(unknown_peaks)} pair peak(s) are not rows of the ATAC matrix "
                f"(e.g. {unknown_peaks[:3]})."
            )
        if strict_pairs:
            errors.extend(messages)
        else:
            for msg in messages:
                logger.warning(f"{msg} Those pairs will be reported as not computed.")

    return errors


class MultiomeDataset:
    """
    Read-only bundle of RNA counts, ATAC counts and cell metadata.

    Attributes:
        rna: Expression CountMatrix (genes × cells)
        atac: Accessibility CountMatrix (peaks × cells)
        metadata: Cell metadata indexed by cell id
        celltype_column: Metadata column with cell-type labels
        covariates: Covariate column names used in every model
    """

    def __init__(
        self,
        rna: CountMatrix,
        atac: CountMatrix,
        metadata: pd.DataFrame,
        celltype_column: str = "celltype",
        covariates: Sequence[str] = (),
        cell_column: str = "cell",
    ):
        if not isinstance(rna, CountMatrix):
            raise TypeError(f"rna must be CountMatrix, got {type(rna)}")
        if not isinstance(atac, CountMatrix):
            raise TypeError(f"atac must be CountMatrix, got {type(atac)}")
        if not isinstance(metadata, pd.DataFrame):
            raise TypeError(f"metadata must be pd.DataFrame, got {type(metadata)}")

        self._rna = rna
        self._atac = atac
        self._metadata = _index_metadata(metadata, cell_column)
        self._celltype_column = celltype_column
        self._covariates = tuple(covariates)
        self._cell_column = cell_column

    @property
    def rna(self) -> CountMatrix:
        return self._rna

    @property
    def atac(self) -> CountMatrix:
        return self._atac

    @property
    def metadata(self) -> pd.DataFrame:
        return self._metadata

    @property
    def celltype_column(self) -> str:
        return self._celltype_column

    @property
    def covariates(self) -> tuple[str, ...]:
        return self._covariates

    @property
    def cell_column(self) -> str:
        return self._cell_column

    def celltypes(self) -> list[str]:
        """Distinct cell-type labels present in the metadata."""
        if self._celltype_column not in self._metadata.columns:
            return []
        return sorted(self._metadata[self._celltype_column].dropna().astype(str).unique())

    def validate(self, pairs=None, strict_pairs: bool = False) -> list[str]:
        """Run :func:`validate_inputs` on this dataset."""
        if pairs is not None:
            pairs = coerce_pairs(pairs)
        return validate_inputs(
            self._rna,
            self._atac,
            self._metadata,
            self._celltype_column,
            self._covariates,
            pairs=pairs,
            strict_pairs=strict_pairs,
        )

    def require_valid(self, pairs=None, strict_pairs: bool = False) -> None:
        """
        Validate and raise on any violation.

        Raises:
            ValidationError: With every violation message aggregated
        """
        errors = self.validate(pairs=pairs, strict_pairs=strict_pairs)
        if errors:
            raise ValidationError(errors)

    def __repr__(self) -> str:
        return (
            f"MultiomeDataset(rna={self._rna.n_features} genes, "
            f"atac={self._atac.n_features} peaks, cells={self._rna.n_cells}, "
            f"covariates={list(self._covariates)})"
        )
