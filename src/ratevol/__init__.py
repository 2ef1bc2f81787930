# ratevol: swaption volatility cubes and market-model calibration
# Public API

import logging

# Configuration & errors
from .config import CubeConfig
from .errors import SmileCalibrationError, CalibrationInvariantError

# Dates, tenors & quotes
from .core import Period, SimpleQuote, advance, year_fraction

# Black-76
from .black import black_price_vec, black_vega_vec

# Grid cube
from .grid import BilinearInterpolator, GridCube

# SABR & smile sections
from .sabr import SabrParams, SabrFit, sabr_volatility, fit_sabr, calibrate_alpha_to_atm
from .smile import (
    SmileKind, SmileSection, smile_volatility,
    sparse_quote_smile, additive_spread_smile, sabr_smile,
)

# Market inputs
from .termstructures import AtmVolMatrix, SwapIndex

# Volatility cubes
from .cube import SwaptionVolCube, SabrVolCube, SpreadVolCube

# Market model & coterminal calibration
from .marketmodel import (
    EvolutionDescription, PiecewiseConstantVariance,
    ExponentialForwardCorrelation, CoterminalCurveState,
)
from .coterminal import CoterminalCalibrationResult, caplet_coterminal_calibration

__all__ = [
    # Configuration & errors
    "CubeConfig", "SmileCalibrationError", "CalibrationInvariantError",
    # Dates, tenors & quotes
    "Period", "SimpleQuote", "advance", "year_fraction",
    # Black-76
    "black_price_vec", "black_vega_vec",
    # Grid cube
    "BilinearInterpolator", "GridCube",
    # SABR & smiles
    "SabrParams", "SabrFit", "sabr_volatility", "fit_sabr", "calibrate_alpha_to_atm",
    "SmileKind", "SmileSection", "smile_volatility",
    "sparse_quote_smile", "additive_spread_smile", "sabr_smile",
    # Market inputs
    "AtmVolMatrix", "SwapIndex",
    # Cubes
    "SwaptionVolCube", "SabrVolCube", "SpreadVolCube",
    # Market model
    "EvolutionDescription", "PiecewiseConstantVariance",
    "ExponentialForwardCorrelation", "CoterminalCurveState",
    "CoterminalCalibrationResult", "caplet_coterminal_calibration",
]

__version__ = "0.1.0"

logging.getLogger(__name__).addHandler(logging.NullHandler())
