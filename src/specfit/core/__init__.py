"""Core numerics of specfit: domain objects, fitters, calibration and sweeps."""
