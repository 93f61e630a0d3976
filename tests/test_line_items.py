from decimal import Decimal

import pytest

from packages.parsers.line_items import (
    LineItemExtractor,
    extract_party,
    format_kwanza,
    parse_amount,
)

RECEIPT = """SONANGOL DISTRIBUIDORA
NIF: 5417000000
Compra de combustível 5000 AOA
Lubrificante motor 1.250,00 Kz
IVA 14% 875,00
TOTAL 7.125,00
"""


@pytest.mark.parametrize("raw,expected", [
    ("5.000,00", Decimal("5000.00")),
    ("1.234.567,89", Decimal("1234567.89")),
    ("1,234.56", Decimal("1234.56")),
    ("5.000", Decimal("5000.00")),
    ("12,5", Decimal("12.50")),
    ("5000", Decimal("5000.00")),
    ("99.90", Decimal("99.90")),
])
def test_parse_amount(raw, expected):
    assert parse_amount(raw) == expected


def test_parse_amount_rejects_garbage():
    assert parse_amount("") is None
    assert parse_amount("abc") is None


def test_format_kwanza():
    assert format_kwanza(Decimal("1234.5")) == "Kz 1.234,50"
    assert format_kwanza(Decimal("1234567.891")) == "Kz 1.234.567,89"
    assert format_kwanza(Decimal("0")) == "Kz 0,00"
    assert format_kwanza(None) is None


def test_extract_priced_lines_skips_totals_and_taxes():
    items = LineItemExtractor(max_items=50).extract(RECEIPT)

    assert [(i.line_number, i.description, i.amount) for i in items] == [
        (1, "Compra de combustível", Decimal("5000.00")),
        (2, "Lubrificante motor", Decimal("1250.00")),
    ]


def test_extract_unpriced_fallback():
    text = "Recibo\nServiço de limpeza do armazém\nTotal"
    items = LineItemExtractor(max_items=50).extract(text)

    assert [i.description for i in items] == ["Recibo", "Serviço de limpeza do armazém"]
    assert all(i.amount is None for i in items)


def test_extract_respects_max_items():
    text = "\n".join(f"Artigo {n} 100,00" for n in range(10))
    items = LineItemExtractor(max_items=3).extract(text)

    assert [i.line_number for i in items] == [1, 2, 3]


def test_extract_empty_text():
    assert LineItemExtractor(max_items=50).extract("") == []
    assert LineItemExtractor(max_items=50).extract("TOTAL 100,00\nIVA 14,00") == []


def test_party_from_labelled_line():
    party = extract_party("Fatura n.º 12\nFornecedor: Agro Huambo Lda   NIF 500000\n")
    assert party.fornecedor == "Agro Huambo Lda"
    assert party.beneficiario is None


def test_party_beneficiary_label():
    party = extract_party("Beneficiário: João Manuel\nValor 10.000,00")
    assert party.beneficiario == "João Manuel"


def test_party_falls_back_to_uppercase_header():
    assert extract_party(RECEIPT).fornecedor == "SONANGOL DISTRIBUIDORA"


def test_party_absent():
    assert extract_party("compra de combustível 5000") is None
    assert extract_party("") is None
