from .debug_bundle import create_debug_bundle

__all__ = ["create_debug_bundle"]
