"""Tests for retrieval, context assembly and grounded answering."""
from datetime import datetime, timezone

import pytest

from docqa import config
from docqa.errors import ProviderError
from docqa.llm_client import GenerationOptions
from docqa.rag.answer import (
    NO_DOCUMENTS_MESSAGE,
    NO_RELEVANT_CONTENT_MESSAGE,
    AnswerPipeline,
    AnswerResult,
    AnswerStatus,
    unique_sources,
)
from docqa.rag.chunker import TextChunker
from docqa.rag.ingest import IngestPipeline
from docqa.rag.retriever import CONTEXT_SEPARATOR, Retriever
from docqa.rag.vector_store import ChunkMetadata, SearchResult

from tests.conftest import BAKING, ORBITS, VOLCANO, FakeEmbedder, FakeGenerator, make_paragraph

SATELLITE_QUESTION = "Satellites in geostationary orbit circle Earth once every sidereal day."


def make_result(source, content, distance=0.1, index=0):
    return SearchResult(
        chunk_id=f"{source}_chunk_{index}",
        content=content,
        metadata=ChunkMetadata(source, index, "txt", datetime(2024, 1, 1, tzinfo=timezone.utc)),
        created_at=datetime(2024, 1, 2, tzinfo=timezone.utc),
        distance=distance,
    )


@pytest.fixture
async def topic_files(store, embedder, tmp_path):
    """Three small documents: two about orbits, one about volcanoes."""
    docs = tmp_path / "docs"
    docs.mkdir()
    files = {
        "satellites.txt": SATELLITE_QUESTION,
        "orbits.txt": make_paragraph(ORBITS, 300),
        "volcano.txt": make_paragraph(VOLCANO, 300),
    }
    for name, text in files.items():
        (docs / name).write_text(text, encoding="utf-8")

    await IngestPipeline(store, embedder, chunker=TextChunker(600, 100)).ingest(docs)
    return {name: str((docs / name).resolve()) for name in files}


async def test_empty_store_short_circuits(store, embedder, generator):
    pipeline = AnswerPipeline(store, embedder, generator)

    result = await pipeline.answer("What is in the documents?")

    assert result.status is AnswerStatus.NO_DOCUMENTS
    assert result.text == NO_DOCUMENTS_MESSAGE
    assert not result.answered
    assert embedder.calls == []
    assert generator.prompts == []


async def test_irrelevant_question_never_reaches_the_generator(store, embedder, generator, tmp_path):
    (tmp_path / "volcano.txt").write_text(make_paragraph(VOLCANO, 300), encoding="utf-8")
    await IngestPipeline(store, embedder).ingest(tmp_path / "volcano.txt")

    result = await AnswerPipeline(store, embedder, generator).answer(
        " ".join(BAKING)
    )

    assert result.status is AnswerStatus.NO_RELEVANT_CONTENT
    assert result.text == NO_RELEVANT_CONTENT_MESSAGE
    assert result.sources == []
    assert generator.prompts == []


async def test_answer_cites_exactly_the_included_sources(store, embedder, generator, topic_files):
    pipeline = AnswerPipeline(store, embedder, generator)

    result = await pipeline.answer(SATELLITE_QUESTION, k=3)

    assert result.status is AnswerStatus.ANSWERED
    assert result.sources == [topic_files["satellites.txt"], topic_files["orbits.txt"]]
    assert result.sources == unique_sources(result.results)
    assert topic_files["volcano.txt"] not in result.text
    assert result.text == (
        f"{generator.response}\n\nSources: "
        f"{topic_files['satellites.txt']}, {topic_files['orbits.txt']}"
    )

    assert len(generator.prompts) == 1
    prompt = generator.prompts[0]
    assert "[Source: satellites.txt]" in prompt
    assert "[Source: orbits.txt]" in prompt
    assert "Volcanic" not in prompt
    assert SATELLITE_QUESTION in prompt


async def test_default_generation_options(store, embedder, generator, topic_files):
    await AnswerPipeline(store, embedder, generator).answer(SATELLITE_QUESTION)

    assert generator.options == [
        GenerationOptions(
            temperature=config.GENERATION_TEMPERATURE,
            max_tokens=config.GENERATION_MAX_TOKENS,
        )
    ]


async def test_explicit_generation_options(store, embedder, generator, topic_files):
    options = GenerationOptions(temperature=0.0, max_tokens=64)
    await AnswerPipeline(store, embedder, generator).answer(SATELLITE_QUESTION, options=options)

    assert generator.options == [options]


async def test_k_limits_the_context(store, embedder, generator, topic_files):
    result = await AnswerPipeline(store, embedder, generator).answer(SATELLITE_QUESTION, k=1)

    assert result.sources == [topic_files["satellites.txt"]]
    assert "[Source: orbits.txt]" not in generator.prompts[0]


async def test_generation_failure_propagates(store, embedder, topic_files):
    generator = FakeGenerator(error=ProviderError("model unavailable", status_code=503))

    with pytest.raises(ProviderError):
        await AnswerPipeline(store, embedder, generator).answer(SATELLITE_QUESTION)


async def test_embedding_failure_propagates(store, embedder, generator, topic_files):
    failing = FakeEmbedder(fail_on="Satellites")

    with pytest.raises(ProviderError):
        await AnswerPipeline(store, failing, generator).answer(SATELLITE_QUESTION)
    assert generator.prompts == []


class ZeroQueryEmbedder(FakeEmbedder):
    """Returns an all-zero vector for questions, real vectors otherwise."""

    async def embed(self, text):
        if text.endswith("?"):
            return [0.0] * self.dimension
        return await super().embed(text)


async def test_zero_query_vector_is_a_provider_error(store, generator, tmp_path):
    embedder = ZeroQueryEmbedder()
    (tmp_path / "orbits.txt").write_text(make_paragraph(ORBITS, 300), encoding="utf-8")
    await IngestPipeline(store, embedder).ingest(tmp_path / "orbits.txt")

    with pytest.raises(ProviderError):
        await AnswerPipeline(store, embedder, generator).answer("Which orbit is geostationary?")
    assert generator.prompts == []


@pytest.mark.parametrize("question", ["", "   ", None])
async def test_blank_question_is_rejected(store, embedder, generator, question):
    with pytest.raises(ValueError):
        await AnswerPipeline(store, embedder, generator).answer(question)


async def test_non_positive_k_is_rejected(store, embedder, generator):
    with pytest.raises(ValueError):
        await AnswerPipeline(store, embedder, generator).answer("question", k=0)


async def test_threshold_filters_results(store, embedder, topic_files):
    strict = Retriever(store, embedder, top_k=3, relevance_threshold=0.99)
    loose = Retriever(store, embedder, top_k=3, relevance_threshold=0.0)

    strict_results = await strict.retrieve(SATELLITE_QUESTION)
    loose_results = await loose.retrieve(SATELLITE_QUESTION)

    assert [r.source for r in strict_results] == [topic_files["satellites.txt"]]
    assert len(loose_results) == 3
    assert all(r.similarity >= 0.99 for r in strict_results)


def test_context_stops_when_budget_is_spent():
    retriever = Retriever(None, None, max_context_chars=600)
    results = [make_result(f"doc{i}.txt", "x" * 250, index=i) for i in range(3)]

    context, included = retriever.build_context(results)

    assert included == results[:2]
    assert len(context) <= 600
    assert context.count(CONTEXT_SEPARATOR) == 1
    assert context.startswith("[Source: doc0.txt]\n")


def test_best_result_is_truncated_into_a_small_budget():
    retriever = Retriever(None, None, max_context_chars=100)
    results = [make_result("big.txt", "y" * 250)]

    context, included = retriever.build_context(results)

    assert included == results
    assert len(context) == 100
    assert context.endswith("...")


def test_later_result_truncated_when_room_remains():
    retriever = Retriever(None, None, max_context_chars=700)
    results = [make_result("a.txt", "a" * 250), make_result("b.txt", "b" * 600, index=1)]

    context, included = retriever.build_context(results)

    assert included == results
    assert len(context) == 700
    assert context.endswith("...")


def test_answer_result_to_dict():
    result = AnswerResult(
        text="Yes.\n\nSources: /docs/a.txt",
        status=AnswerStatus.ANSWERED,
        sources=["/docs/a.txt"],
        results=[make_result("/docs/a.txt", "z" * 300, distance=0.25)],
    )

    data = result.to_dict()
    assert data["status"] == "answered"
    assert data["sources"] == ["/docs/a.txt"]
    assert data["chunks"][0]["similarity"] == 0.75
    assert data["chunks"][0]["content_preview"] == "z" * 200 + "..."
