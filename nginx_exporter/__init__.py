__version__ = "1.0.0"
# overwritten by release builds
__git_commit__ = "unknown"
