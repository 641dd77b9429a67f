"""
llama.cpp engine built on llama-cpp-python's low-level bindings.

The high-level ``Llama`` object loads the GGUF model and owns the context;
everything the session layer needs per token goes through the C API
directly:

    - llama_batch_init / llama_decode / llama_batch_free for decode batches
    - llama_sampler_chain_* for sampler chains
    - llama_sampler_init_grammar for GBNF constraints
    - llama_vocab_is_eog for end-of-generation
    - llama_memory_seq_rm to clear the running context

Grammar patterns are GBNF. Use ``stepgen.grammar.json_schema_to_grammar`` to
get one from a JSON Schema.

Usage:
    ```python
    from stepgen.engine import LlamaCppEngine

    # Load GGUF model with all layers offloaded (Metal / CUDA)
    engine = LlamaCppEngine(
        "models/qwen2-0_5b-instruct-q4_k_m.gguf",
        n_gpu_layers=-1,
        n_ctx=4096
    )
    ```
"""

import ctypes
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from stepgen.config import DEFAULT_ROOT_RULE, SamplerConfig
from stepgen.engine.base import Engine
from stepgen.errors import EngineError

logger = logging.getLogger(__name__)


class LlamaCppEngine(Engine):
    """
    Engine for llama.cpp (GGUF) models.

    Attributes:
        model_path: Path to GGUF model file
        llm: llama_cpp.Llama instance
        n_gpu_layers: Number of layers on GPU (-1 = all)
        n_ctx: Context length
        n_batch: Maximum tokens per decode call
    """

    def __init__(
        self,
        model_path: str,
        n_ctx: int = 2048,
        n_batch: int = 512,
        n_threads: Optional[int] = None,
        n_gpu_layers: int = -1,
        use_mlock: bool = False,
        sampler_config: Optional[SamplerConfig] = None,
        **kwargs
    ):
        """
        Initialize llama.cpp engine.

        Args:
            model_path: Path to GGUF model file
            n_ctx: Context window size
            n_batch: Batch size for prompt processing
            n_threads: CPU threads (None = llama.cpp default)
            n_gpu_layers: Number of layers to offload to GPU (-1 = all)
            use_mlock: Lock model in memory
            sampler_config: Selection settings for sampler chains
            **kwargs: Additional ``llama_cpp.Llama`` options

        Raises:
            EngineError: If the file is missing or the model fails to load
        """
        super().__init__(sampler_config)

        self.model_path = Path(model_path)
        self.n_ctx = n_ctx
        self.n_batch = n_batch
        self.n_threads = n_threads
        self.n_gpu_layers = n_gpu_layers
        self.use_mlock = use_mlock
        self.llm = None

        logger.info(
            f"Initializing LlamaCppEngine: model={model_path}, "
            f"n_ctx={n_ctx}, n_gpu_layers={n_gpu_layers}"
        )

        if not self.model_path.exists():
            raise EngineError(f"Model file not found: {model_path}")

        self._load_model(**kwargs)

    def _load_model(self, **kwargs):
        """Load the GGUF model and resolve the native handles."""
        try:
            import llama_cpp
            from llama_cpp import Llama
        except ImportError:
            raise ImportError(
                "llama-cpp-python is required. "
                "Install with: pip install 'stepgen[llamacpp]'"
            )

        self._lib = llama_cpp

        load_kwargs = {
            'model_path': str(self.model_path),
            'n_ctx': self.n_ctx,
            'n_batch': self.n_batch,
            'n_gpu_layers': self.n_gpu_layers,
            'use_mlock': self.use_mlock,
            'verbose': False,
        }
        if self.n_threads is not None:
            load_kwargs['n_threads'] = self.n_threads
        load_kwargs.update(kwargs)

        try:
            self.llm = Llama(**load_kwargs)
        except (ValueError, RuntimeError) as e:
            logger.error(f"Failed to load model: {e}")
            raise EngineError(f"Failed to load model {self.model_path}: {e}") from e

        self._vocab = llama_cpp.llama_model_get_vocab(self.llm.model)
        logger.info(f"Model loaded: vocab={self.llm.n_vocab()}, n_ctx={self.llm.n_ctx()}")

    def tokenize(self, text: str) -> Optional[List[int]]:
        try:
            return self.llm.tokenize(text.encode("utf-8"), add_bos=True, special=False)
        except RuntimeError as e:
            logger.warning(f"Tokenization failed: {e}")
            return None

    def detokenize_one(self, token: int) -> bytes:
        size = 32
        buf = (ctypes.c_char * size)()
        n = self._lib.llama_token_to_piece(self._vocab, token, buf, size, 0, False)

        if n < 0:
            size = -n
            buf = (ctypes.c_char * size)()
            n = self._lib.llama_token_to_piece(self._vocab, token, buf, size, 0, False)
            if n < 0:
                logger.warning(f"No piece for token {token}")
                return b""

        return bytes(buf[:n])

    def decode_batch(
        self,
        tokens: Sequence[int],
        positions: Sequence[int],
        seq_id: int = 0,
        logits: Optional[Sequence[bool]] = None,
    ) -> bool:
        if not tokens:
            return False
        if logits is None:
            logits = [i == len(tokens) - 1 for i in range(len(tokens))]

        # Prompts longer than n_batch go in n_batch-sized chunks.
        for start in range(0, len(tokens), self.n_batch):
            end = min(start + self.n_batch, len(tokens))
            if not self._decode_chunk(tokens[start:end], positions[start:end], seq_id, logits[start:end]):
                return False

        return True

    def _decode_chunk(self, tokens, positions, seq_id, logits) -> bool:
        lib = self._lib
        n = len(tokens)
        batch = lib.llama_batch_init(n, 0, 1)
        try:
            for i in range(n):
                batch.token[i] = tokens[i]
                batch.pos[i] = positions[i]
                batch.n_seq_id[i] = 1
                batch.seq_id[i][0] = seq_id
                batch.logits[i] = bool(logits[i])
            batch.n_tokens = n

            ret = lib.llama_decode(self.llm.ctx, batch)
            if ret != 0:
                logger.warning(f"llama_decode returned {ret} for {n} tokens at position {positions[0]}")
                return False
            return True
        finally:
            lib.llama_batch_free(batch)

    def sample_next(self, handle: Any) -> int:
        return self._lib.llama_sampler_sample(handle, self.llm.ctx, -1)

    def accept_token(self, handle: Any, token: int) -> None:
        self._lib.llama_sampler_accept(handle, token)

    def is_end_of_generation(self, token: int) -> bool:
        return bool(self._lib.llama_vocab_is_eog(self._vocab, token))

    def compile_constraint(self, pattern: str, root_rule: str = DEFAULT_ROOT_RULE) -> Optional[Any]:
        """
        Compile a GBNF grammar into a grammar sampler.

        The returned sampler is handed to ``create_chain``, which takes
        ownership of it.
        """
        sampler = self._lib.llama_sampler_init_grammar(
            self._vocab, pattern.encode("utf-8"), root_rule.encode("utf-8")
        )
        if not sampler:
            logger.warning(f"llama.cpp rejected grammar ({len(pattern)} chars)")
            return None
        return sampler

    def clear_context(self) -> None:
        lib = self._lib
        lib.llama_memory_seq_rm(lib.llama_get_memory(self.llm.ctx), 0, -1, -1)

    def create_chain(self, constraint: Optional[Any], config: SamplerConfig) -> Any:
        """
        Build ``[grammar?, top-k?, top-p?, min-p?, temp?, greedy|dist]``.

        The chain owns every stage added to it, including ``constraint``.
        """
        lib = self._lib
        chain = lib.llama_sampler_chain_init(lib.llama_sampler_chain_default_params())

        if constraint is not None:
            lib.llama_sampler_chain_add(chain, constraint)

        if config.is_greedy:
            lib.llama_sampler_chain_add(chain, lib.llama_sampler_init_greedy())
            return chain

        if config.top_k is not None:
            lib.llama_sampler_chain_add(chain, lib.llama_sampler_init_top_k(config.top_k))
        if config.top_p is not None:
            lib.llama_sampler_chain_add(chain, lib.llama_sampler_init_top_p(config.top_p, config.min_keep))
        if config.min_p is not None:
            lib.llama_sampler_chain_add(chain, lib.llama_sampler_init_min_p(config.min_p, config.min_keep))
        if config.temperature is not None:
            lib.llama_sampler_chain_add(chain, lib.llama_sampler_init_temp(config.temperature))
        lib.llama_sampler_chain_add(chain, lib.llama_sampler_init_dist(config.seed))

        return chain

    def free_chain(self, handle: Any) -> None:
        self._lib.llama_sampler_free(handle)

    def get_model_info(self) -> Dict[str, Any]:
        info = {
            'engine': 'llamacpp',
            'model': str(self.model_path),
            'n_gpu_layers': self.n_gpu_layers,
            'context_length': self.n_ctx,
            'n_batch': self.n_batch,
        }

        if self.llm is not None:
            info['vocab_size'] = self.llm.n_vocab()

        return info

    def close(self) -> None:
        super().close()
        if self.llm is not None:
            self.llm.close()
            self.llm = None
            logger.info("LlamaCppEngine closed")

    def __repr__(self) -> str:
        return (
            f"LlamaCppEngine(model={self.model_path.name}, "
            f"n_gpu_layers={self.n_gpu_layers})"
        )
