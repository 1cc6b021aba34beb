"""Shared fixtures: deterministic fake model clients and temporary stores."""
import asyncio
import hashlib
import re
from typing import List, Optional

import pytest

from docqa.errors import ProviderError
from docqa.llm_client import GenerationOptions
from docqa.rag.vector_store import VectorStore

STOPWORDS = {
    "the", "and", "for", "with", "that", "this", "from", "are", "was", "its",
    "into", "their", "they", "has", "have", "not", "but", "you", "your",
}


class FakeEmbedder:
    """Bag-of-words embedder: each distinct content word sets one hashed slot.

    Texts sharing many words get a high cosine similarity, texts on
    unrelated topics get a similarity close to zero.
    """

    def __init__(self, dimension: int = 512, fail_on: Optional[str] = None, delay: float = 0.0):
        self.dimension = dimension
        self.fail_on = fail_on
        self.delay = delay
        self.calls: List[str] = []
        self.in_flight = 0
        self.max_in_flight = 0

    def vector(self, text: str) -> List[float]:
        vector = [0.0] * self.dimension
        words = {
            w for w in re.findall(r"[a-z0-9]+", text.lower())
            if len(w) > 2 and w not in STOPWORDS
        }
        for word in words:
            slot = int(hashlib.md5(word.encode()).hexdigest(), 16) % self.dimension
            vector[slot] = 1.0
        if not words:
            vector[0] = 1.0
        return vector

    async def embed(self, text: str) -> List[float]:
        self.calls.append(text)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if self.fail_on and self.fail_on in text:
                raise ProviderError("quota exceeded", status_code=429)
            return self.vector(text)
        finally:
            self.in_flight -= 1


class FakeGenerator:
    """Records prompts and returns a canned answer."""

    def __init__(self, response: str = "The answer, from the context.", error: Exception = None):
        self.response = response
        self.error = error
        self.prompts: List[str] = []
        self.options: List[Optional[GenerationOptions]] = []

    async def generate(self, prompt: str, options: Optional[GenerationOptions] = None) -> str:
        self.prompts.append(prompt)
        self.options.append(options)
        if self.error is not None:
            raise self.error
        return self.response


def make_paragraph(sentences: List[str], length: int) -> str:
    """Repeat sentences until the paragraph is exactly ``length`` characters."""
    text = " ".join(sentences)
    while len(text) < length:
        text = text + " " + " ".join(sentences)
    return text[:length]


VOLCANO = [
    "Volcanic eruptions eject magma, pumice and basalt ash across nearby valleys.",
    "Geologists monitor seismic tremors beneath the caldera before lava flows begin.",
]
BAKING = [
    "Sourdough bread relies on a fermented starter of wild yeast and lactobacilli.",
    "Bakers knead dough, proof loaves overnight, then score crusts before baking.",
]
ORBITS = [
    "Satellites in geostationary orbit circle Earth once every sidereal day.",
    "Orbital mechanics uses Kepler equations to compute perigee, apogee and inclination.",
]


@pytest.fixture
def embedder() -> FakeEmbedder:
    return FakeEmbedder()


@pytest.fixture
def generator() -> FakeGenerator:
    return FakeGenerator()


@pytest.fixture
def three_topic_text() -> str:
    """1198 characters: three 398-character paragraphs on unrelated topics."""
    return "\n\n".join(
        make_paragraph(topic, 398) for topic in (VOLCANO, BAKING, ORBITS)
    )


@pytest.fixture
async def store(tmp_path):
    vector_store = VectorStore(tmp_path / "test.sqlite")
    async with vector_store:
        yield vector_store
