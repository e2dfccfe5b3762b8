"""mp-nexus platform module.

Hosting-platform clients used for preview and upload.

Key classes:
    WeappPlatformClient  - miniprogram-ci driver for WeChat mini programs
    CIOptions            - Inputs shared by preview and upload
"""

from .weapp import (
    PREVIEW_CLASSIFIER,
    UPLOAD_CLASSIFIER,
    CIOptions,
    PlatformClient,
    PreviewResult,
    UploadResult,
    WeappPlatformClient,
    create_platform_client,
)

__all__ = [
    "CIOptions",
    "PlatformClient",
    "PreviewResult",
    "UploadResult",
    "WeappPlatformClient",
    "create_platform_client",
    "PREVIEW_CLASSIFIER",
    "UPLOAD_CLASSIFIER",
]
