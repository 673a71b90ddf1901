import pytest

from services.features.text_features import (
    EMBEDDING_DIMENSIONS,
    calculate_creativity,
    calculate_parameter_complexity,
    calculate_prompt_complexity,
    calculate_sentiment,
    calculate_specificity,
    calculate_trend,
    extract_keywords,
    extract_semantic_categories,
    generate_prompt_embedding,
    is_default_parameters,
)


def test_keywords_drop_stop_words_and_punctuation():
    assert extract_keywords("A cat, in the SPACE!") == ["cat", "space"]
    assert len(extract_keywords(" ".join(f"word{i}" for i in range(40)))) == 20


def test_prompt_complexity_factors():
    assert calculate_prompt_complexity("cat") < 0.05
    rich = (
        "A beautiful, detailed and intricate portrait; the lighting, texture and composition "
        "must be rendered at high resolution (studio quality)."
    )
    assert calculate_prompt_complexity(rich) > 0.6
    assert 0.0 <= calculate_prompt_complexity("x" * 5000 + "!" * 50) <= 1.0


def test_embedding_has_fixed_length_and_is_seeded():
    first = generate_prompt_embedding(["cat", "space"], 1)
    assert len(first) == EMBEDDING_DIMENSIONS
    assert first == generate_prompt_embedding(["cat", "space"], 1)
    assert first != generate_prompt_embedding(["cat", "space"], 2)
    assert first[2:] == [0.0] * (EMBEDDING_DIMENSIONS - 2)
    assert len(generate_prompt_embedding([f"k{i}" for i in range(300)], 1)) == EMBEDDING_DIMENSIONS


def test_lexicon_scores():
    assert calculate_sentiment("a beautiful warm morning") == 1.0
    assert calculate_sentiment("a dark and scary night") == -1.0
    assert calculate_sentiment("a beautiful dark night") == 0.0
    assert calculate_sentiment("a chair") == 0.0

    assert calculate_creativity("a unique, dreamy and surreal city") == 1.0
    assert calculate_creativity("a chair") == 0.0

    assert calculate_specificity("a chair") == 0.0
    assert 0.0 < calculate_specificity("3 red and blue chairs") <= 1.0


def test_semantic_categories():
    categories = extract_semantic_categories("a dragon flying over a mountain lake")
    assert "fantasy" in categories and "landscape" in categories
    assert extract_semantic_categories("a chair") == []


def test_parameters():
    assert calculate_parameter_complexity({}) == 0.0
    assert calculate_parameter_complexity({"quality": "high"}) == pytest.approx(0.4)
    assert is_default_parameters({})
    assert is_default_parameters({"quality": "medium", "number_of_images": 1})
    assert not is_default_parameters({"quality": "high"})


def test_trend():
    assert calculate_trend([1.0, 2.0]) == "stable"
    assert calculate_trend([50, 50, 50, 50, 50, 80, 80, 80, 80, 80]) == "increasing"
    assert calculate_trend([80, 80, 80, 80, 80, 50, 50, 50, 50, 50]) == "decreasing"
    assert calculate_trend([70, 71, 70, 72, 70, 71]) == "stable"
    assert calculate_trend([0, 0, 0, 0, 0, 5]) == "stable"
