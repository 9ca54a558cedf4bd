"""
Error types for the Lunar Enhancement Pipeline

Detection failures are not exceptions (see ``DetectionOutcome``); only
failures that make an enhancement run impossible are raised.
"""


class EnhancementError(Exception):
    """Base class for fatal enhancement-run errors"""


class ConversionFailure(EnhancementError):
    """Raised when the crop cannot be converted into luma/chroma planes"""


class InvalidCropError(ConversionFailure):
    """Raised when the crop rectangle is empty or outside the image"""

    def __init__(self, rect, image_shape):
        self.rect = rect
        self.image_shape = image_shape
        super().__init__(f"Invalid crop rectangle {rect} for image of shape {image_shape}")
