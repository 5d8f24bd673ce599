from editguard.verification.pixel_diff import PixelDiff, compare_images
from editguard.verification.result_validator import ResultValidator, Verification

__all__ = ["PixelDiff", "ResultValidator", "Verification", "compare_images"]
