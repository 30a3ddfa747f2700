from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Optional

import numpy as np


@dataclass(frozen=True)
class ModelInfo:
    name: str
    name_short: str
    formula: str


class MortalityModel(ABC):
    """
    Capability shared by fitted mortality models. Downstream code (pipelines,
    CLI, backtests) depends on this interface only.
    """

    info: ModelInfo

    @abstractmethod
    def fit(
        self,
        data: np.ndarray,
        x: Optional[np.ndarray] = None,
        y: Optional[np.ndarray] = None,
    ) -> "MortalityModel":
        ...

    @abstractmethod
    def forecast(self, h: int, **kwargs: Any) -> Any:
        ...

    @abstractmethod
    def residuals(self) -> Any:
        ...

    @abstractmethod
    def coefficients(self) -> Dict[str, np.ndarray]:
        ...

    @abstractmethod
    def summary(self) -> Any:
        ...


__all__ = ["ModelInfo", "MortalityModel"]
