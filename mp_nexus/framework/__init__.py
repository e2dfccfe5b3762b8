"""mp-nexus framework module.

Detects which mini-program framework owns a project, picks and runs its
build, and locates the build output.

Key classes:
    FrameworkDetector      - Taro / uni-app detection from project metadata
    BuildStrategyResolver  - Ordered build candidate table with CLI probes
    OutputPathResolver     - Build output directory from competing sources
    FrameworkAdapter       - detect / build / get_output_path per framework
"""

from .adapters import BuildOptions, FrameworkAdapter, create_adapters
from .detector import FrameworkDetector, FrameworkKind
from .output import OutputLocation, OutputPathResolver, OutputSource
from .strategy import BuildStrategy, BuildStrategyResolver, StrategyKind, platform_target

__all__ = [
    # Detection
    "FrameworkDetector",
    "FrameworkKind",
    # Strategy
    "BuildStrategy",
    "BuildStrategyResolver",
    "StrategyKind",
    "platform_target",
    # Output
    "OutputLocation",
    "OutputPathResolver",
    "OutputSource",
    # Adapters
    "BuildOptions",
    "FrameworkAdapter",
    "create_adapters",
]
