import pytest

from trias import training
from trias.index import ModelIndex
from trias.lexical import LexicalPipeline, get_stemmer


WEATHER_FINANCE = [
    {"input": "Sunny skies and warm temperatures today", "output": "Weather"},
    {"input": "Heavy rain and cold wind expected tomorrow", "output": "Weather"},
    {"input": "Stock market rally lifts shares", "output": "Finance"},
    {"input": "Investors sell shares as bond yields climb", "output": "Finance"},
]

SPORTS_NEWS = [
    {"input": "Late goal decides the derby match", "output": ["Soccer", "Sports"]},
    {"input": "League announces new transfer rules", "output": ["Soccer", "News"]},
    {"input": "Parliament votes on the budget", "output": "Politics"},
]


@pytest.fixture
def pipeline():
    return LexicalPipeline(get_stemmer("en"), n=3)


@pytest.fixture
def unigram_pipeline():
    return LexicalPipeline(get_stemmer("en"), n=1)


def build_index(pipeline, examples):
    index = ModelIndex(n=pipeline.n)
    training.train(index, pipeline, training.normalize_examples(examples))
    return index


@pytest.fixture
def weather_index(pipeline):
    return build_index(pipeline, WEATHER_FINANCE)


@pytest.fixture
def sports_index(pipeline):
    return build_index(pipeline, SPORTS_NEWS + WEATHER_FINANCE)


@pytest.fixture
def model_file(tmp_path):
    return tmp_path / "model.trias"
