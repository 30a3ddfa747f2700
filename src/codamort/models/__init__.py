from .base import ModelInfo, MortalityModel
from .coda import close, clr, clr_inv, geometric_mean
from .decomposition import Rank1Decomposition, explained_variance, rank1_svd
from .oeppen import (
    OEPPEN_INFO,
    Oeppen,
    OeppenFit,
    OeppenInput,
    OeppenParams,
    fit_oeppen,
    reconstruct_dx,
    validate_oeppen_input,
)

__all__ = [
    "ModelInfo",
    "MortalityModel",
    "close",
    "clr",
    "clr_inv",
    "geometric_mean",
    "Rank1Decomposition",
    "explained_variance",
    "rank1_svd",
    "OEPPEN_INFO",
    "Oeppen",
    "OeppenFit",
    "OeppenInput",
    "OeppenParams",
    "fit_oeppen",
    "reconstruct_dx",
    "validate_oeppen_input",
]
