"""Image analysis for Fresnel biprism experiments: alignment, fringe spacing and image spacing."""

__version__ = "1.0.0"