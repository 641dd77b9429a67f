"""
Unit tests for sampler chain composition.
"""

import pytest

from stepgen.config import SamplerConfig
from stepgen.errors import GrammarCompilationError
from stepgen.sampling import SamplerChain, build_chain


class TestBuildChain:
    """Test choosing between the shared and a private chain."""

    def test_no_grammar_uses_default_chain(self, engine):
        chain = build_chain(engine)

        assert chain is engine.default_chain
        assert not chain.is_private
        assert not chain.constrained

    def test_default_chain_created_once(self, engine):
        build_chain(engine)
        build_chain(engine, grammar="")

        assert len(engine.chains) == 1
        assert engine.chains[0].constraint is None

    def test_grammar_builds_private_chain(self, engine):
        chain = build_chain(engine, grammar='root ::= "yes" | "no"')

        assert chain.is_private
        assert chain.constrained
        assert chain.handle.constraint == {"pattern": 'root ::= "yes" | "no"', "root": "root"}

    def test_root_rule_passed_to_compiler(self, engine):
        chain = build_chain(engine, grammar='answer ::= "yes"', root_rule="answer")

        assert chain.handle.constraint["root"] == "answer"

    def test_engine_config_used_by_default(self, make_engine):
        config = SamplerConfig(selection="dist", seed=3)
        engine = make_engine(sampler_config=config)

        chain = build_chain(engine, grammar='root ::= "yes"')

        assert chain.handle.config == config

    def test_rejected_grammar(self, engine):
        engine.reject_grammar = True

        with pytest.raises(GrammarCompilationError) as exc_info:
            build_chain(engine, grammar="[^a]")

        assert exc_info.value.grammar == "[^a]"
        assert exc_info.value.processed.startswith("[ !")
        assert engine.chains == []


class TestSamplerChain:
    """Test chain ownership."""

    def test_accept_forwarded_for_private_chain(self, engine):
        chain = build_chain(engine, grammar='root ::= "yes"')

        chain.accept(5)

        assert chain.handle.accepted == [5]

    def test_accept_ignored_on_shared_chain(self, engine):
        chain = engine.default_chain

        chain.accept(5)

        assert chain.handle.accepted == []

    def test_free_is_idempotent(self, engine):
        chain = build_chain(engine, grammar='root ::= "yes"')

        chain.free()
        chain.free()

        assert chain.freed
        assert chain.handle.free_count == 1

    def test_accept_after_free_ignored(self, engine):
        chain = build_chain(engine, grammar='root ::= "yes"')
        chain.free()

        chain.accept(5)

        assert chain.handle.accepted == []

    def test_sample_after_free_rejected(self, engine):
        chain = build_chain(engine, grammar='root ::= "yes"')
        chain.free()

        with pytest.raises(RuntimeError):
            chain.sample()

        assert chain.handle.samples == 0

    def test_shared_chain_never_freed(self, engine):
        chain = engine.default_chain

        chain.free()

        assert not chain.freed
        assert chain.handle.free_count == 0

    def test_sample_uses_handle(self, engine):
        chain = SamplerChain(engine, engine.create_chain(None, SamplerConfig()))

        assert chain.sample() == 1
        assert chain.handle.samples == 1

    def test_engine_close_frees_default_chain(self, engine):
        handle = engine.default_chain.handle

        engine.close()

        assert handle.free_count == 1
