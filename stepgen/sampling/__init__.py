"""
Sampling module.

Components:
    - chain: SamplerChain handle and build_chain (shared default vs private
      grammar-constrained chains)
    - fsm_constraint: interegular-based regex constraint for engines without
      a native grammar sampler
    - torch_sampler: Selection stages on torch logits

The torch-dependent modules are imported lazily by the transformers engine,
so importing this package only needs the core dependencies.
"""

from stepgen.sampling.chain import SamplerChain, build_chain

__all__ = [
    "SamplerChain",
    "build_chain",
]
