"""Exceptions raised by the JAX-PK Fourier engine."""


class FourierError(Exception):
    pass


class ConfigurationError(FourierError, ValueError):
    """Invalid or inconsistent settings, collaborators or arguments."""
    pass


class RangeError(FourierError, ValueError):
    """Query outside the tabulated k or z range."""
    pass


class NumericalError(FourierError, RuntimeError):
    """Non-positive spectra, unconverged root finding or integrals."""
    pass


class LifecycleError(FourierError, RuntimeError):
    """Query on an engine whose tables have been freed."""
    pass


class NonlinearNotAvailableError(FourierError, LookupError):
    """A nonlinear quantity was requested but no nonlinear method is active."""
    pass
