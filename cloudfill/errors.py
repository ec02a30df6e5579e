"""
Cloud Filling Errors

Every failure of the fill pipeline is fatal and propagates to the caller
as one of these exceptions.

Author: CloudFill Team
"""


class CloudFillError(Exception):
    """Base class for cloud filling failures."""

    kind = "error"


class InputUnreadableError(CloudFillError):
    """Primary or alpha raster cannot be opened or used."""

    kind = "input_unreadable"


class AcquisitionError(CloudFillError):
    """A required MODIS granule could not be obtained."""

    kind = "acquisition"


class AlignmentError(CloudFillError):
    """MODIS data could not be warped onto the target grid."""

    kind = "alignment"


class WriteError(CloudFillError):
    """Output raster could not be written."""

    kind = "write"
