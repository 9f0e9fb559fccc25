from __future__ import annotations

from typing import Any, Mapping, Protocol, Sequence

import numpy as np

from wnd_worker.data.record_codec import SparseInput


class ModelGraph(Protocol):
    """What the round executor needs from a predictive model; nothing about its architecture."""

    @property
    def embed_column_ids(self) -> Sequence[int]: ...

    @property
    def wide_column_ids(self) -> Sequence[int]: ...

    def forward(
        self,
        dense: np.ndarray,
        embed_inputs: Sequence[SparseInput],
        wide_inputs: Sequence[SparseInput],
    ) -> float:
        """Return the raw logit for one record."""
        ...

    def backward(self, error: float, weight: float) -> None:
        """Accumulate gradients for the record passed to the last ``forward`` call."""
        ...

    def update_weights(self, snapshot: Mapping[str, Any]) -> None: ...

    def gradients(self) -> dict[str, np.ndarray]: ...

    def zero_gradients(self) -> None: ...

    def weights(self) -> dict[str, np.ndarray]: ...
