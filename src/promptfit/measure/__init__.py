"""Content measurement and the shared size cache."""

from promptfit.measure.cache import SizeCache, fingerprint
from promptfit.measure.measurer import CachedMeasurer, CharRatioMeasurer, Measurer

__all__ = ["CachedMeasurer", "CharRatioMeasurer", "Measurer", "SizeCache", "fingerprint"]
