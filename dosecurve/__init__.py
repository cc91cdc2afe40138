"""
dosecurve: dose-response curve fitting for concentration/response assays.

Takes concentration/response tables with optional replicate-group labels,
fits four-parameter logistic curves per replicate group and per sample,
and reports potency metrics (EC50, EC10, EC90, Hill slope, AUC, R²).

Usage:
    from dosecurve import doseresponse
"""

import logging

__version__ = "0.1.0"

from dosecurve import doseresponse

logging.getLogger(__name__).addHandler(logging.NullHandler())

__all__ = [
    "__version__",
    "doseresponse",
]
