from decimal import Decimal

import pytest

from packages.common.errors import ClassificationError
from packages.common.schemas.document import ItemKind
from packages.domain.classification.catalog import KIND_CLASSES, CatalogSnapshot
from packages.domain.classification.classifier import Classifier, overlap_confidence, rank
from packages.domain.classification.normalizer import normalize
from packages.domain.classification.schemas import Candidate, ClassificationMethod


@pytest.fixture
def classifier():
    return Classifier(max_candidates=5, min_confidence=30, capitalization_threshold=500000)


def test_fuel_purchase_maps_to_fuel_account(classifier, catalog):
    result = classifier.classify(normalize("Compra de combustível 5000 AOA"), ItemKind.COST, catalog)

    assert result.top.account_code == "613"
    assert result.top.account_name == "Combustíveis e Lubrificantes"
    assert result.top.account_class == 6
    assert result.top.confidence == 41
    assert result.requires_manual_review is False
    assert result.method == ClassificationMethod.LEXICON


@pytest.mark.parametrize("description,kind", [
    ("Compra de combustível", ItemKind.COST),
    ("Consultoria e auditoria anual", ItemKind.COST),
    ("Venda de milho e feijão", ItemKind.REVENUE),
    ("Serviço de consultoria técnica", ItemKind.REVENUE),
    ("Trator e gerador para a fazenda", ItemKind.ASSET),
    ("juros do empréstimo bancário", ItemKind.COST),
    ("juros de depósito a prazo", ItemKind.REVENUE),
])
def test_candidates_stay_within_kind_classes(classifier, catalog, description, kind):
    result = classifier.classify(normalize(description), kind, catalog)

    assert result.candidates
    assert all(c.account_class in KIND_CLASSES[kind] for c in result.candidates)


def test_candidates_ranked_by_confidence_then_code(classifier, catalog):
    result = classifier.classify(normalize("consultoria auditoria técnico serviço"), ItemKind.REVENUE, catalog)

    keys = [(-c.confidence, int(c.account_code)) for c in result.candidates]
    assert keys == sorted(keys)
    assert len(result.candidates) <= 5


def test_rank_breaks_ties_by_numeric_code():
    candidates = [
        Candidate(account_code="622", account_name="b", account_class=6, confidence=50),
        Candidate(account_code="62", account_name="a", account_class=6, confidence=50),
        Candidate(account_code="613", account_name="c", account_class=6, confidence=70),
    ]
    assert [c.account_code for c in rank(candidates)] == ["613", "62", "622"]


def test_max_candidates_respected(catalog):
    result = Classifier(max_candidates=1).classify(
        normalize("juros financiamento banco"), ItemKind.COST, catalog
    )
    assert len(result.candidates) == 1


@pytest.mark.parametrize("kind,fallback", [
    (ItemKind.COST, "69"),
    (ItemKind.REVENUE, "79"),
    (ItemKind.ASSET, "11"),
])
def test_no_overlap_falls_back_to_catch_all(classifier, catalog, kind, fallback):
    result = classifier.classify(normalize("xyzzy plugh"), kind, catalog)

    assert [c.account_code for c in result.candidates] == [fallback]
    assert result.top.confidence == 0
    assert result.requires_manual_review is True
    assert result.review_reason == "low_confidence"
    assert result.method == ClassificationMethod.FALLBACK


def test_empty_description_falls_back(classifier, catalog):
    result = classifier.classify([], ItemKind.COST, catalog)
    assert result.top.account_code == "69"
    assert result.requires_manual_review is True


def test_low_confidence_keeps_best_candidate(classifier, catalog):
    result = classifier.classify(normalize("gasóleo caixa palete embalagem"), ItemKind.COST, catalog)

    assert result.top.account_code == "613"
    assert result.top.confidence == 22
    assert result.requires_manual_review is True
    assert result.review_reason == "low_confidence"


def test_large_cost_flagged_for_capitalization_review(classifier, catalog):
    tokens = normalize("Compra de combustível")

    small = classifier.classify(tokens, ItemKind.COST, catalog, amount=Decimal("5000"))
    large = classifier.classify(tokens, ItemKind.COST, catalog, amount=Decimal("750000"))

    assert small.requires_manual_review is False
    assert large.requires_manual_review is True
    assert large.review_reason == "amount_above_capitalization_threshold"
    assert [c.account_code for c in large.candidates] == [c.account_code for c in small.candidates]


def test_learned_lexicon_boosts_account(classifier, catalog):
    lexicon = {"625": frozenset({"compra", "combustivel"})}
    result = classifier.classify(normalize("Compra de combustível"), ItemKind.COST, catalog, lexicon=lexicon)

    assert result.top.account_code == "625"
    assert result.top.confidence == 80
    assert result.candidates[1].account_code == "613"
    assert result.candidates[1].confidence == 41


def test_overlap_confidence_bounds():
    assert overlap_confidence(frozenset(), frozenset({"a"})) == 0
    assert overlap_confidence(frozenset({"a"}), frozenset({"b"})) == 0
    assert overlap_confidence(frozenset({"a"}), frozenset({"a"})) == 100
    # Tiny overlap against a huge vocabulary still registers
    item = frozenset(f"t{i}" for i in range(200))
    vocabulary = frozenset(f"v{i}" for i in range(999)) | {"t0"}
    assert overlap_confidence(item, vocabulary) == 1


def test_empty_catalog_raises(classifier):
    with pytest.raises(ClassificationError):
        classifier.classify(["combustivel"], ItemKind.COST, CatalogSnapshot())
