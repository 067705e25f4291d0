"""Installable `scripts` package for test utilities."""
from .gen_data import make_calibration, make_sum_calibration

__all__ = ["make_calibration", "make_sum_calibration"]
