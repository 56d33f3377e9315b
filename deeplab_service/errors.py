"""Exceptions raised by the segmentation pipeline stages."""


class DeepLabServiceError(Exception):
    """Base class for every failure the pipeline reports as "no result"."""


class ModelLoadError(DeepLabServiceError):
    """The model artifact is missing, corrupt or incompatible."""


class InferenceError(DeepLabServiceError):
    """A prediction call failed for one input."""


class PostProcessError(DeepLabServiceError):
    """Mask building, blurring or compositing produced nothing usable."""
