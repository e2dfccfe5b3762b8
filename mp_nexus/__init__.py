"""mp-nexus: one-command preview and deploy for mini-program projects.

Detects the project's framework (Taro or uni-app), runs its build with a
fallback chain of build invocations, locates the build output and hands it
to the platform CI tool for preview or upload.
"""

__version__ = "0.1.0"
