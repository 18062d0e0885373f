"""
JAX-PK: JAX-accelerated matter power spectrum tables with nonlinear corrections
"""

from .JAXPK import JAXPK
from .config import (FourierConfig, FourierSettings, PrecisionConfig, NonlinearMethod, ExtrapolationMethod,
                     FeedbackModel, PkOutput, SigmaOutput)
from .errors import (FourierError, ConfigurationError, RangeError, NumericalError, LifecycleError,
                     NonlinearNotAvailableError)

__version__ = "1.0.0"
__author__ = "Vincent Schacknies"
__email__ = "vincent.schacknies@icloud.com"

__all__ = ["JAXPK", "FourierConfig", "FourierSettings", "PrecisionConfig", "NonlinearMethod",
           "ExtrapolationMethod", "FeedbackModel", "PkOutput", "SigmaOutput", "FourierError",
           "ConfigurationError", "RangeError", "NumericalError", "LifecycleError", "NonlinearNotAvailableError"]
