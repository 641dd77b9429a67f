"""
Runtime and device detection.

Used by the transformers engine to pick a torch device and by the ``info``
CLI command to report what this machine can run.

Device Priority (transformers engine):
    1. CUDA (NVIDIA GPUs)
    2. MPS (Apple Silicon Metal Performance Shaders)
    3. CPU (fallback)

Usage:
    ```python
    from stepgen.engine.device_utils import get_optimal_device, get_runtime_info

    device = get_optimal_device()      # "cuda", "mps" or "cpu"
    info = get_runtime_info()
    print(info["engines"])             # e.g. ["llamacpp"]
    ```
"""

import logging
import platform
from typing import Any, Dict, Optional

import psutil

logger = logging.getLogger(__name__)


def get_optimal_device(prefer_gpu: bool = True) -> str:
    """
    Pick the torch device for the transformers engine.

    Args:
        prefer_gpu: If False, always use CPU

    Returns:
        str: "cuda", "mps" or "cpu"
    """
    if not prefer_gpu:
        return "cpu"

    if is_cuda_available():
        logger.info("Using CUDA (NVIDIA GPU)")
        return "cuda"

    if is_mps_available():
        logger.info("Using Apple Silicon MPS")
        return "mps"

    logger.info("Using CPU (no GPU detected)")
    return "cpu"


def is_mps_available() -> bool:
    try:
        import torch
        return torch.backends.mps.is_available()
    except (ImportError, AttributeError):
        return False


def is_cuda_available() -> bool:
    try:
        import torch
        return torch.cuda.is_available()
    except ImportError:
        return False


def is_apple_silicon() -> bool:
    return platform.system() == "Darwin" and platform.machine() == "arm64"


def validate_device(device: str) -> bool:
    """
    Check that a requested device can be used.

    Raises:
        ValueError: If the device name is unknown
    """
    if device == "cpu":
        return True

    if device == "cuda":
        available = is_cuda_available()
    elif device == "mps":
        available = is_mps_available()
    else:
        raise ValueError(f"Unknown device: {device}. Use 'cuda', 'mps', or 'cpu'")

    if not available:
        logger.warning(f"{device.upper()} requested but not available")
    return available


def get_memory_info(device: str = "cpu") -> Dict[str, Any]:
    """
    Memory figures in MB for a device.

    System RAM comes from psutil; CUDA figures from torch when available.
    """
    info: Dict[str, Any] = {'device': device}

    if device == "cuda" and is_cuda_available():
        import torch
        total = torch.cuda.get_device_properties(0).total_memory / (1024 ** 2)
        allocated = torch.cuda.memory_allocated(0) / (1024 ** 2)
        info.update(total_mb=total, allocated_mb=allocated, free_mb=total - allocated)
    else:
        mem = psutil.virtual_memory()
        info.update(
            total_mb=mem.total / (1024 ** 2),
            available_mb=mem.available / (1024 ** 2),
            percent=mem.percent,
        )

    return info


def _library_version(module_name: str) -> Optional[str]:
    try:
        module = __import__(module_name)
    except ImportError:
        return None
    return getattr(module, "__version__", "unknown")


def get_runtime_info() -> Dict[str, Any]:
    """
    Describe the machine and the engine libraries installed on it.

    Returns:
        Dict with platform, CPU/memory figures, library versions, the
        engines that can be created and the optimal torch device
    """
    from stepgen.engine.base import EngineFactory

    info: Dict[str, Any] = {
        'platform': platform.system(),
        'processor': platform.machine(),
        'python': platform.python_version(),
        'is_apple_silicon': is_apple_silicon(),
        'cpu_count': psutil.cpu_count(logical=False),
        'cpu_threads': psutil.cpu_count(logical=True),
        'memory': get_memory_info("cpu"),
        'llama_cpp_version': _library_version("llama_cpp"),
        'torch_version': _library_version("torch"),
        'transformers_version': _library_version("transformers"),
        'engines': EngineFactory.list_available_engines(),
        'cuda_available': is_cuda_available(),
        'mps_available': is_mps_available(),
    }

    if info['torch_version'] is not None:
        info['optimal_device'] = get_optimal_device()

    return info
