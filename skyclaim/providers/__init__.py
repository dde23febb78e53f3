from .oci import OCIComputeApi, load_sdk_config

__all__ = ["OCIComputeApi", "load_sdk_config"]
