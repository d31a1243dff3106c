from .debug_bundle import create_debug_bundle, save_failure_artifacts

__all__ = ["create_debug_bundle", "save_failure_artifacts"]
