from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any

import numpy as np
import polars as pl

from noiseqpy.core.exceptions import (
    AssayNotFoundError,
    DimensionError,
    LayerNotFoundError,
    ValidationError,
)


@dataclass
class ProvenanceLog:
    """
    Record of an operation performed on a container.
    """
    timestamp: str
    action: str
    params: dict[str, Any]
    software_version: str | None = None
    description: str | None = None


@dataclass
class ExprMatrix:
    """
    Minimal data unit: a dense expression matrix.

    Attributes:
        X (np.ndarray): Expression values, shape (n_samples, n_features).
                        Raw counts or normalized values; never negative,
                        never missing.
    """
    X: np.ndarray

    def __post_init__(self):
        X = np.asarray(self.X)
        if X.ndim != 2:
            raise DimensionError(f"Expression matrix must be 2D, got {X.ndim}D.")
        if not np.issubdtype(X.dtype, np.floating):
            X = X.astype(np.float64)
        if not np.all(np.isfinite(X)):
            raise ValidationError("Expression matrix contains missing or infinite values.", field="X")
        if np.any(X < 0):
            raise ValidationError("Expression matrix contains negative values.", field="X")
        self.X = X

    @property
    def shape(self) -> tuple[int, int]:
        return self.X.shape


class Assay:
    """
    Feature space holding one or more layers of the same shape.
    """
    def __init__(
        self,
        var: pl.DataFrame,
        layers: dict[str, ExprMatrix] | None = None,
        feature_id_col: str = "_index"
    ):
        """
        Args:
            var (pl.DataFrame): Feature metadata (annotation). MUST contain a
                                unique ID column specified by feature_id_col.
            layers (dict[str, ExprMatrix], optional): Data layers. Defaults to None.
            feature_id_col (str): Column in 'var' holding feature identifiers.
        """
        self.feature_id_col = feature_id_col

        if feature_id_col not in var.columns:
            raise ValidationError(
                f"Feature ID column '{feature_id_col}' not found in var.", field="feature_id_col"
            )
        if var[feature_id_col].n_unique() != var.height:
            raise ValidationError(
                f"Feature ID column '{feature_id_col}' is not unique.", field="feature_id_col"
            )

        self.var: pl.DataFrame = var
        self.layers: dict[str, ExprMatrix] = layers if layers is not None else {}

        self._validate()

    def _validate(self):
        for name, matrix in self.layers.items():
            if matrix.X.shape[1] != self.n_features:
                raise DimensionError(
                    f"Feature dimension mismatch in Layer '{name}': "
                    f"Matrix has {matrix.X.shape[1]}, Assay var has {self.n_features}"
                )

    @property
    def n_features(self) -> int:
        return self.var.height

    @property
    def feature_ids(self) -> pl.Series:
        return self.var[self.feature_id_col]

    def add_layer(self, name: str, matrix: ExprMatrix) -> None:
        if matrix.X.shape[1] != self.n_features:
            raise DimensionError(
                f"Feature dimension mismatch: Layer has {matrix.X.shape[1]}, "
                f"Assay var has {self.n_features}"
            )
        self.layers[name] = matrix

    def get_layer(self, name: str, assay_name: str = "?") -> ExprMatrix:
        if name not in self.layers:
            raise LayerNotFoundError(name, assay_name)
        return self.layers[name]

    def __repr__(self) -> str:
        return f"<Assay n_features={self.n_features}, layers={list(self.layers.keys())}>"

    def subset(self, feature_indices: list[int] | np.ndarray, copy_data: bool = True) -> Assay:
        """
        Return a new Assay with a subset of features.

        Args:
            feature_indices: Indices of features to keep.
            copy_data: Whether to copy the underlying data. Defaults to True.
        """
        feature_indices = np.asarray(feature_indices, dtype=np.int64)
        new_var = self.var[feature_indices, :]
        new_layers = {}
        for name, matrix in self.layers.items():
            new_X = matrix.X[:, feature_indices]
            if copy_data:
                new_X = new_X.copy()
            new_layers[name] = ExprMatrix(X=new_X)

        return Assay(var=new_var, layers=new_layers, feature_id_col=self.feature_id_col)


class ExprContainer:
    """
    Top-level container: global sample index (obs), factors and assays.

    Operations never mutate a container in place; they return a new one
    with a copied history that has the operation appended.
    """
    def __init__(
        self,
        obs: pl.DataFrame,
        assays: dict[str, Assay] | None = None,
        history: list[ProvenanceLog] | None = None,
        sample_id_col: str = "_index"
    ):
        """
        Args:
            obs (pl.DataFrame): Sample metadata; factor columns live here.
                                MUST contain a unique ID column specified by sample_id_col.
            assays (dict[str, Assay], optional): Assays registry. Defaults to None.
            history (list[ProvenanceLog], optional): Provenance log. Defaults to None.
            sample_id_col (str): Column in 'obs' holding sample identifiers.
        """
        self.sample_id_col = sample_id_col

        if sample_id_col not in obs.columns:
            raise ValidationError(
                f"Sample ID column '{sample_id_col}' not found in obs.", field="sample_id_col"
            )
        if obs[sample_id_col].n_unique() != obs.height:
            raise ValidationError(
                f"Sample ID column '{sample_id_col}' is not unique.", field="sample_id_col"
            )

        self.obs: pl.DataFrame = obs
        self.assays: dict[str, Assay] = assays if assays is not None else {}
        self.history: list[ProvenanceLog] = history if history is not None else []

        self._validate()

    @property
    def n_samples(self) -> int:
        return self.obs.height

    @property
    def sample_ids(self) -> pl.Series:
        return self.obs[self.sample_id_col]

    def _validate(self):
        for assay_name, assay in self.assays.items():
            for layer_name, matrix in assay.layers.items():
                if matrix.X.shape[0] != self.n_samples:
                    raise DimensionError(
                        f"Sample dimension mismatch in Assay '{assay_name}', Layer '{layer_name}': "
                        f"Matrix has {matrix.X.shape[0]}, Container obs has {self.n_samples}"
                    )

    def get_assay(self, name: str) -> Assay:
        if name not in self.assays:
            raise AssayNotFoundError(name)
        return self.assays[name]

    def get_layer(self, assay_name: str, layer_name: str) -> ExprMatrix:
        return self.get_assay(assay_name).get_layer(layer_name, assay_name)

    def with_layer(self, assay_name: str, layer_name: str, matrix: ExprMatrix) -> ExprContainer:
        """
        Return a new container whose assay has an extra layer.

        The original container, its assays and their layer dicts are untouched.
        """
        assay = self.get_assay(assay_name)
        layers = dict(assay.layers)
        new_assay = Assay(var=assay.var, layers=layers, feature_id_col=assay.feature_id_col)
        new_assay.add_layer(layer_name, matrix)
        assays = dict(self.assays)
        assays[assay_name] = new_assay
        return ExprContainer(
            obs=self.obs,
            assays=assays,
            history=list(self.history),
            sample_id_col=self.sample_id_col,
        )

    def with_assay(self, assay_name: str, assay: Assay) -> ExprContainer:
        """
        Return a new container with `assay_name` replaced by `assay`.
        """
        assays = dict(self.assays)
        assays[assay_name] = assay
        return ExprContainer(
            obs=self.obs,
            assays=assays,
            history=list(self.history),
            sample_id_col=self.sample_id_col,
        )

    def log_operation(self, action: str, params: dict[str, Any], description: str | None = None, software_version: str | None = None):
        """
        Log an operation to the history.
        """
        log = ProvenanceLog(
            timestamp=datetime.now().isoformat(),
            action=action,
            params=params,
            software_version=software_version,
            description=description
        )
        self.history.append(log)

    def __repr__(self) -> str:
        assays_desc = ", ".join([f"{k}({v.n_features})" for k, v in self.assays.items()])
        return f"<ExprContainer n_samples={self.n_samples}, assays=[{assays_desc}]>"
