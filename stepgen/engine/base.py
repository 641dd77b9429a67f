"""
Engine abstraction - the narrow primitive interface the session layer drives.

An engine wraps one loaded model and one running context. The session layer
never sees logits or KV caches; it only calls the primitives below.

Engine Protocol:
    - tokenize(text): Prompt -> token ids (None on failure)
    - detokenize_one(token): Token -> raw bytes
    - decode_batch(tokens, positions, seq_id, logits): Feed tokens to the
      running context (False on failure)
    - sample_next(handle): Sample one token with a chain handle
    - accept_token(handle, token): Advance a chain's constraint state
    - is_end_of_generation(token): End-of-generation check
    - compile_constraint(pattern, root_rule): Grammar -> constraint (None on failure)
    - clear_context(): Empty the running context
    - create_chain(constraint, config) / free_chain(handle): Chain lifetime

Primitives report failure through return values and never raise across the
boundary; the session layer turns those into typed exceptions.

Usage:
    ```python
    from stepgen.engine import EngineFactory

    # Auto-detect from the model id
    engine = EngineFactory.create("models/qwen2-0_5b-instruct-q4_k_m.gguf")

    # Explicit engine type
    engine = EngineFactory.create("gpt2", engine_type="transformers", device="cpu")
    ```
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence

from stepgen.config import DEFAULT_ROOT_RULE, SamplerConfig
from stepgen.errors import EngineError
from stepgen.sampling.chain import SamplerChain

logger = logging.getLogger(__name__)


class Engine(ABC):
    """
    Abstract base class for inference engines.

    Attributes:
        sampler_config: Selection settings for the shared default chain and
            for private chains built without explicit settings
    """

    def __init__(self, sampler_config: Optional[SamplerConfig] = None):
        self.sampler_config = sampler_config or SamplerConfig()
        self._default_chain: Optional[SamplerChain] = None

    @abstractmethod
    def tokenize(self, text: str) -> Optional[List[int]]:
        """
        Tokenize a prompt, adding the model's start token.

        Returns:
            List of token ids, or None if tokenization failed
        """

    @abstractmethod
    def detokenize_one(self, token: int) -> bytes:
        """Raw bytes of one token; may be part of a multi-byte character."""

    @abstractmethod
    def decode_batch(
        self,
        tokens: Sequence[int],
        positions: Sequence[int],
        seq_id: int = 0,
        logits: Optional[Sequence[bool]] = None,
    ) -> bool:
        """
        Feed tokens into the running context.

        Args:
            tokens: Token ids
            positions: Context position of each token
            seq_id: Sequence the tokens belong to
            logits: Per-token flag asking for logits (default: last only)

        Returns:
            bool: False if the engine refused the batch
        """

    @abstractmethod
    def sample_next(self, handle: Any) -> int:
        """Sample one token from the current logits with a chain handle."""

    @abstractmethod
    def accept_token(self, handle: Any, token: int) -> None:
        """Advance a chain handle's constraint state past ``token``."""

    @abstractmethod
    def is_end_of_generation(self, token: int) -> bool:
        pass

    @abstractmethod
    def compile_constraint(self, pattern: str, root_rule: str = DEFAULT_ROOT_RULE) -> Optional[Any]:
        """
        Compile a preprocessed grammar pattern.

        Returns:
            Engine-specific constraint, or None if the pattern is rejected
        """

    @abstractmethod
    def clear_context(self) -> None:
        """Remove every token from the running context."""

    @abstractmethod
    def create_chain(self, constraint: Optional[Any], config: SamplerConfig) -> Any:
        """
        Build an engine-side chain ``[constraint?, selection stages]``.

        Returns:
            Opaque chain handle
        """

    @abstractmethod
    def free_chain(self, handle: Any) -> None:
        pass

    @abstractmethod
    def get_model_info(self) -> Dict[str, Any]:
        """
        Get model metadata.

        Returns:
            Dict with at least 'engine', 'model' and 'vocab_size'
        """

    @property
    def default_chain(self) -> SamplerChain:
        """Shared unconstrained chain, created on first use."""
        if self._default_chain is None:
            handle = self.create_chain(None, self.sampler_config)
            self._default_chain = SamplerChain(self, handle, constrained=False, owned=False)
            logger.debug(f"Created default sampler chain ({self.sampler_config.selection.value})")
        return self._default_chain

    def close(self) -> None:
        """Free the shared chain. Subclasses release model resources after calling this."""
        if self._default_chain is not None:
            self.free_chain(self._default_chain.handle)
            self._default_chain = None

    def __repr__(self) -> str:
        info = self.get_model_info()
        return f"{self.__class__.__name__}(model={info.get('model', 'unknown')})"


class EngineFactory:
    """
    Factory for creating engine instances.

    Usage:
        ```python
        from stepgen.engine import EngineFactory

        engine = EngineFactory.create("models/mistral-7b.gguf", n_gpu_layers=-1)
        engine = EngineFactory.create("gpt2", engine_type="transformers")
        ```
    """

    @staticmethod
    def create(model: str, engine_type: Optional[str] = None, **kwargs) -> Engine:
        """
        Create the engine for a model.

        Args:
            model: Model file path or HuggingFace id
            engine_type: "llamacpp" or "transformers"; auto-detected if None
            **kwargs: Engine-specific options

        Returns:
            Engine: Loaded engine

        Raises:
            EngineError: If the engine type is unknown or loading fails
        """
        if engine_type is None:
            engine_type = EngineFactory.detect_engine_type(model)

        logger.info(f"Creating {engine_type} engine for {model}")

        if engine_type == "llamacpp":
            from stepgen.engine.llamacpp_engine import LlamaCppEngine
            return LlamaCppEngine(model, **kwargs)

        if engine_type == "transformers":
            from stepgen.engine.transformers_engine import TransformersEngine
            return TransformersEngine(model, **kwargs)

        raise EngineError(f"Unsupported engine type: {engine_type}")

    @staticmethod
    def detect_engine_type(model: str) -> str:
        """
        Guess the engine from a model id.

        Strategy:
            - Ends with .gguf / .ggml -> llamacpp
            - Otherwise -> transformers
        """
        if model.lower().endswith((".gguf", ".ggml")):
            return "llamacpp"
        return "transformers"

    @staticmethod
    def list_available_engines() -> List[str]:
        """Engines whose libraries are importable here."""
        available = []

        try:
            import llama_cpp  # noqa: F401
            available.append("llamacpp")
        except ImportError:
            pass

        try:
            import torch  # noqa: F401
            import transformers  # noqa: F401
            available.append("transformers")
        except ImportError:
            pass

        return available
