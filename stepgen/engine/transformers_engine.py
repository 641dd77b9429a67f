"""
HuggingFace transformers engine.

The running context is the model's ``past_key_values`` plus the logits of
the last decoded token. Decode batches must continue the context in order
(positions start at the current context length); anything else is refused.

Grammar patterns for this engine are regular expressions. They are compiled
with interegular into a character FSM (see ``stepgen.sampling.fsm_constraint``)
and applied by masking logits before the selection stages run on torch.

Usage:
    ```python
    from stepgen.engine import TransformersEngine

    engine = TransformersEngine("gpt2", device="cpu")
    ```
"""

import logging
import re
from typing import Any, Dict, List, Optional, Sequence

from stepgen.config import DEFAULT_ROOT_RULE, SamplerConfig
from stepgen.engine.base import Engine
from stepgen.errors import EngineError

logger = logging.getLogger(__name__)

_BYTE_FALLBACK = re.compile(r"<0x([0-9A-Fa-f]{2})>")


class TransformersEngine(Engine):
    """
    Engine for HuggingFace causal language models.

    Attributes:
        model_id: HuggingFace model identifier or local path
        device: Device the model runs on (cuda, mps, cpu)
        model: Loaded AutoModelForCausalLM instance
        tokenizer: Loaded AutoTokenizer instance
        torch_dtype: Model data type
    """

    def __init__(
        self,
        model_id: str,
        device: Optional[str] = None,
        torch_dtype: Optional[Any] = None,
        sampler_config: Optional[SamplerConfig] = None,
        **kwargs
    ):
        """
        Initialize transformers engine.

        Args:
            model_id: HuggingFace model identifier (e.g., "gpt2")
            device: "cuda", "mps", "cpu", or None for auto-detect
            torch_dtype: torch dtype (None: float16 on GPU, float32 on CPU)
            sampler_config: Selection settings for sampler chains
            **kwargs: Additional ``from_pretrained`` options
        """
        super().__init__(sampler_config)

        try:
            import torch
        except ImportError:
            raise ImportError(
                "transformers and torch are required. "
                "Install with: pip install 'stepgen[transformers]'"
            )
        self._torch = torch

        self.model_id = model_id
        self.model = None
        self.tokenizer = None

        if device is None:
            from stepgen.engine.device_utils import get_optimal_device
            device = get_optimal_device()
        self.device = device

        if torch_dtype is None:
            torch_dtype = torch.float16 if device in ("mps", "cuda") else torch.float32
        self.torch_dtype = torch_dtype

        logger.info(
            f"Initializing TransformersEngine: model={model_id}, "
            f"device={device}, dtype={self.torch_dtype}"
        )

        self._load_model(**kwargs)
        self._load_tokenizer()

        self._past = None
        self._n_past = 0
        self._last_logits = None
        self._vocabulary: Optional[List[str]] = None
        self._eog_tokens = self._find_eog_tokens()
        self._special_ids = set(self.tokenizer.all_special_ids)
        self._byte_decoder = self._find_byte_decoder()

    def _load_model(self, **kwargs):
        from transformers import AutoModelForCausalLM

        load_kwargs = {
            'torch_dtype': self.torch_dtype,
            'low_cpu_mem_usage': True,
        }
        load_kwargs.update(kwargs)

        try:
            self.model = AutoModelForCausalLM.from_pretrained(self.model_id, **load_kwargs)
        except (OSError, ValueError) as e:
            logger.error(f"Failed to load model: {e}")
            raise EngineError(f"Failed to load model {self.model_id}: {e}") from e

        self.model = self.model.to(self._torch.device(self.device))
        self.model.eval()
        logger.info(f"Model loaded successfully on {self.device}")

    def _load_tokenizer(self):
        from transformers import AutoTokenizer

        try:
            self.tokenizer = AutoTokenizer.from_pretrained(self.model_id)
        except (OSError, ValueError) as e:
            logger.error(f"Failed to load tokenizer: {e}")
            raise EngineError(f"Failed to load tokenizer {self.model_id}: {e}") from e

    def _find_eog_tokens(self) -> List[int]:
        eog = set()

        if self.tokenizer.eos_token_id is not None:
            eog.add(self.tokenizer.eos_token_id)

        generation_config = getattr(self.model, "generation_config", None)
        eos = getattr(generation_config, "eos_token_id", None)
        if isinstance(eos, int):
            eog.add(eos)
        elif eos:
            eog.update(eos)

        return sorted(eog)

    def _find_byte_decoder(self) -> Optional[Dict[str, int]]:
        """
        Inverse of the byte-level BPE alphabet, if the tokenizer uses one.

        Byte-level tokenizers spell a leading space as "Ġ"; that is the tell.
        """
        probe = self.tokenizer.convert_ids_to_tokens(
            self.tokenizer.encode(" a", add_special_tokens=False)
        )
        if not any(piece.startswith("Ġ") for piece in probe):
            return None

        from transformers.models.gpt2.tokenization_gpt2 import bytes_to_unicode
        return {char: byte for byte, char in bytes_to_unicode().items()}

    def tokenize(self, text: str) -> Optional[List[int]]:
        try:
            return self.tokenizer.encode(text, add_special_tokens=True)
        except (TypeError, ValueError) as e:
            logger.warning(f"Tokenization failed: {e}")
            return None

    def detokenize_one(self, token: int) -> bytes:
        if token in self._special_ids:
            return b""

        piece = self.tokenizer.convert_ids_to_tokens(token)

        match = _BYTE_FALLBACK.fullmatch(piece)
        if match:
            return bytes([int(match.group(1), 16)])

        if self._byte_decoder is not None and all(c in self._byte_decoder for c in piece):
            return bytes(self._byte_decoder[c] for c in piece)

        return piece.replace("▁", " ").encode("utf-8")

    def decode_batch(
        self,
        tokens: Sequence[int],
        positions: Sequence[int],
        seq_id: int = 0,
        logits: Optional[Sequence[bool]] = None,
    ) -> bool:
        torch = self._torch

        if not tokens or seq_id != 0:
            return False
        if list(positions) != list(range(self._n_past, self._n_past + len(tokens))):
            logger.warning(
                f"Decode batch does not continue the context "
                f"(context={self._n_past}, first position={positions[0]})"
            )
            return False

        input_ids = torch.tensor([list(tokens)], dtype=torch.long, device=self.model.device)
        try:
            with torch.no_grad():
                out = self.model(input_ids=input_ids, past_key_values=self._past, use_cache=True)
        except RuntimeError as e:
            logger.warning(f"Forward pass failed for {len(tokens)} tokens: {e}")
            return False

        self._past = out.past_key_values
        self._n_past += len(tokens)
        if logits is None or logits[-1]:
            self._last_logits = out.logits[0, -1, :]

        return True

    def sample_next(self, handle: Any) -> int:
        if self._last_logits is None:
            logger.warning("Sampling with an empty context")
            return self._eog_tokens[0] if self._eog_tokens else 0
        return handle.sample(self._last_logits, self._eog_tokens)

    def accept_token(self, handle: Any, token: int) -> None:
        if token in self._eog_tokens:
            return
        handle.accept(self.detokenize_one(token).decode("utf-8", errors="ignore"))

    def is_end_of_generation(self, token: int) -> bool:
        return token in self._eog_tokens

    @property
    def vocabulary(self) -> List[str]:
        """Token texts by id; "" for special tokens and partial characters."""
        if self._vocabulary is None:
            logger.info(f"Building vocabulary text table ({len(self.tokenizer)} tokens)")
            texts = []
            for token_id in range(len(self.tokenizer)):
                try:
                    texts.append(self.detokenize_one(token_id).decode("utf-8"))
                except UnicodeDecodeError:
                    texts.append("")
            self._vocabulary = texts
        return self._vocabulary

    def compile_constraint(self, pattern: str, root_rule: str = DEFAULT_ROOT_RULE) -> Optional[Any]:
        """Compile a regex; ``root_rule`` does not apply to regex patterns."""
        from stepgen.sampling.fsm_constraint import FSMConstraint

        return FSMConstraint.compile(pattern, self.vocabulary)

    def clear_context(self) -> None:
        self._past = None
        self._n_past = 0
        self._last_logits = None

    def create_chain(self, constraint: Optional[Any], config: SamplerConfig) -> Any:
        from stepgen.sampling.torch_sampler import TorchSamplerChain

        return TorchSamplerChain(config, constraint)

    def free_chain(self, handle: Any) -> None:
        handle.constraint = None

    def get_model_info(self) -> Dict[str, Any]:
        info = {
            'engine': 'transformers',
            'model': self.model_id,
            'device': self.device,
            'dtype': str(self.torch_dtype),
        }

        if self.tokenizer is not None:
            info['vocab_size'] = len(self.tokenizer)

        config = getattr(self.model, 'config', None)
        if config is not None and hasattr(config, 'max_position_embeddings'):
            info['context_length'] = config.max_position_embeddings

        return info

    def close(self) -> None:
        super().close()
        self.clear_context()
        self.model = None
        logger.info("TransformersEngine closed")

    def __repr__(self) -> str:
        return (
            f"TransformersEngine(model={self.model_id}, "
            f"device={self.device}, dtype={self.torch_dtype})"
        )
