"""
Error taxonomy for the ranking kernel

Only configuration-level problems surface to callers. Empty candidate
sets and exhausted token budgets are reported through results and
diagnostics, and per-candidate scoring failures are logged and skipped.
"""


class InvalidConfigurationError(ValueError):
    """Raised when fusion, reranker or selector configuration is invalid"""

    pass


class PipelineCancelledError(RuntimeError):
    """Raised when a caller abandons a pipeline run between stages"""

    def __init__(self, stage: str):
        super().__init__(f"Pipeline cancelled before stage '{stage}'")
        self.stage = stage
