"""
Tests for text normalization
"""
import pytest

from facility_ledger.services.text_normalizer import normalize_text, tokenize, strip_article


class TestNormalizeText:
    def test_folds_alef_variants(self):
        assert normalize_text("أحمد") == "احمد"
        assert normalize_text("إيمان") == normalize_text("ايمان")
        assert normalize_text("آمنة") == normalize_text("امنه")

    def test_folds_taa_marbuta_and_alef_maqsura(self):
        assert normalize_text("فاطمة") == "فاطمه"
        assert normalize_text("مصطفى") == "مصطفي"

    def test_strips_diacritics_and_tatweel(self):
        assert normalize_text("مُحـــمّد") == "محمد"
        assert normalize_text("José") == "jose"

    def test_maps_eastern_digits(self):
        assert normalize_text("شقة ٢٠٤") == "شقه 204"
        assert normalize_text("۱۲") == "12"

    def test_punctuation_becomes_single_spaces(self):
        assert normalize_text("  Ahmed-Ali,   Jr. ") == "ahmed ali jr"
        assert normalize_text("unit_a/101") == "unit a 101"

    def test_case_insensitive(self):
        assert normalize_text("AHMED") == normalize_text("ahmed")

    @pytest.mark.parametrize("value", [None, "", 42, ["a"]])
    def test_non_text_gives_empty_string(self, value):
        assert normalize_text(value) == ""

    @pytest.mark.parametrize("value", [
        "أحمد علي", "Straße", "مُحـــمّد", "ﻻ", "Ahmed-Ali", "زينة رمضان ٢٠٢٤",
    ])
    def test_idempotent(self, value):
        once = normalize_text(value)
        assert normalize_text(once) == once


def test_tokenize():
    assert tokenize("Ahmed  Ali") == ["ahmed", "ali"]
    assert tokenize("") == []
    assert tokenize(None) == []


def test_strip_article():
    assert strip_article("الكهرباء") == "كهرباء"
    assert strip_article("ال") == "ال"
    assert strip_article("زينه") == "زينه"
