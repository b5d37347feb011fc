import pytest

from trias import training
from trias.exceptions import InvalidInputError
from trias.index import ModelIndex
from trias.lexical import LexicalPipeline, get_stemmer


class TestNormalizeExamples:
    def test_list_of_examples(self):
        examples = [{"input": "a", "output": "x"}, {"input": "b", "output": ["x", "y"]}]
        assert training.normalize_examples(examples) == examples

    def test_single_example(self):
        assert training.normalize_examples({"input": "a", "output": "x"}) == [{"input": "a", "output": "x"}]

    def test_text_label_shortcut(self):
        assert training.normalize_examples("some text", "Label") == [{"input": "some text", "output": "Label"}]

    @pytest.mark.parametrize(
        "examples",
        [
            "just text",
            42,
            [{"input": "missing output"}],
            [("text", "label")],
        ],
    )
    def test_malformed(self, examples):
        with pytest.raises(InvalidInputError):
            training.normalize_examples(examples)


class TestTrainExample:
    def test_counts(self, unigram_pipeline):
        index = ModelIndex(n=1)
        assert training.train_example(index, unigram_pipeline, "rain rain wind", "Weather")

        weather = index.category(unigram_pipeline.stem_label("Weather"))
        rain = index.term_ids["rain"]
        wind = index.term_ids["wind"]
        assert weather.doc_count == 1
        assert weather.terms[rain] == 2
        assert weather.terms[wind] == 1
        assert weather.term_total == 3
        # document frequency counts each example once per distinct term
        assert index.doc_frequency[rain] == 1
        assert index.total_documents == 1

    def test_multi_label_counts_one_document(self, pipeline):
        index = ModelIndex()
        training.train_example(index, pipeline, "goal in the derby match", ["Soccer", "Sports"])

        assert index.total_documents == 1
        for label in ("Soccer", "Sports"):
            category = index.category(pipeline.stem_label(label))
            assert category.doc_count == 1
            assert category.term_total == sum(category.terms.values())

    def test_relations_are_symmetric(self, pipeline):
        index = ModelIndex()
        training.train_example(index, pipeline, "goal in the derby match", ["Soccer", "Sports"])
        soccer, sports = pipeline.stem_label("Soccer"), pipeline.stem_label("Sports")
        assert index.relations[soccer][sports] == 1
        assert index.relations[sports][soccer] == 1
        assert soccer not in index.relations[soccer]

    def test_duplicate_labels_count_once(self, pipeline):
        index = ModelIndex()
        training.train_example(index, pipeline, "rain", ["Weather", "weather", " Weather "])
        assert len(index.categories) == 1
        assert index.categories[0].doc_count == 1
        assert not index.relations

    def test_variants(self, pipeline):
        index = ModelIndex()
        training.train_example(index, pipeline, "rain", "weather")
        training.train_example(index, pipeline, "snow", "Weather")
        training.train_example(index, pipeline, "hail", "Weather")
        assert index.best_variant(pipeline.stem_label("weather")) == "Weather"

    def test_excluded_labels_are_skipped(self):
        pipeline = LexicalPipeline(get_stemmer("en"), excludes=["Spam"], n=2)
        index = ModelIndex(n=2)
        assert not training.train_example(index, pipeline, "buy now", "Spam")
        assert training.train_example(index, pipeline, "buy now", ["Spam", "Shopping"])
        assert [c.stem for c in index.categories] == [pipeline.stem_label("Shopping")]
        assert index.total_documents == 1

    def test_exclusion_is_decided_by_the_pipeline(self, pipeline, monkeypatch):
        monkeypatch.setattr(pipeline, "is_excluded", lambda label: label == "Shopping")
        index = ModelIndex()
        assert training.train_example(index, pipeline, "buy now", ["Shopping", "Retail"])
        assert [c.stem for c in index.categories] == [pipeline.stem_label("Retail")]

    @pytest.mark.parametrize("text", ["", "a", "the and of", None, 12])
    def test_examples_without_terms_are_skipped(self, pipeline, text):
        index = ModelIndex()
        assert not training.train_example(index, pipeline, text, "Label")
        assert index.total_documents == 0
        assert not index.categories


def test_train_batch_touches_index(pipeline):
    index = ModelIndex()
    generation = index.generation
    accepted = training.train(index, pipeline, [
        {"input": "sunny and warm", "output": "Weather"},
        {"input": "", "output": "Weather"},
        {"input": "stocks fall", "output": "Finance"},
    ])
    assert accepted == 2
    assert index.total_documents == 2
    assert index.generation > generation
    assert index.check_integrity() == []


def test_train_empty_batch_keeps_generation(pipeline):
    index = ModelIndex()
    generation = index.generation
    assert training.train(index, pipeline, []) == 0
    assert index.generation == generation
