"""
Inference engine module.

Components:
    - base: Abstract Engine primitive interface and EngineFactory
    - llamacpp_engine: llama.cpp (GGUF) through llama-cpp-python's low-level API
    - transformers_engine: HuggingFace transformers + torch
    - device_utils: Device and runtime detection

The engine libraries are imported when an engine is constructed, so this
package imports without llama-cpp-python or torch installed.

Example:
    ```python
    from stepgen.engine import EngineFactory

    engine = EngineFactory.create("models/mistral-7b.gguf", n_gpu_layers=-1)
    ```
"""

from stepgen.engine.base import Engine, EngineFactory
from stepgen.engine.device_utils import get_optimal_device, get_runtime_info
from stepgen.engine.llamacpp_engine import LlamaCppEngine
from stepgen.engine.transformers_engine import TransformersEngine

__all__ = [
    "Engine",
    "EngineFactory",
    "LlamaCppEngine",
    "TransformersEngine",
    "get_optimal_device",
    "get_runtime_info",
]
