import pytest

from docingest.knowledge.vector.embeddings import EmbeddingGenerator


@pytest.mark.asyncio
async def test_offline_embeddings_are_deterministic_and_normalized():
    generator = EmbeddingGenerator(api_key="", fallback_dimensions=16)

    first, second = await generator.generate(["alpha beta gamma", "alpha beta gamma"])

    assert generator.model_name == "offline-hash"
    assert first == second
    assert len(first) == 16
    assert abs(sum(value * value for value in first) - 1.0) < 1e-9


@pytest.mark.asyncio
async def test_empty_inputs():
    generator = EmbeddingGenerator(api_key="", fallback_dimensions=8)

    assert await generator.generate([]) == []
    assert await generator.generate([""]) == [[0.0] * 8]
