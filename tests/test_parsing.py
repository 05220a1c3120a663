"""Tests for card text parsing helpers."""

import pytest

from supplier_crawler.parsing import (
    clean_text,
    extract_email,
    extract_phone,
    normalize_url,
    parse_location,
    parse_year,
)


class TestNormalizeUrl:
    """Test cases for href normalization."""

    @pytest.mark.parametrize("raw, expected", [
        ("//acme.en.alibaba.com/company", "https://acme.en.alibaba.com/company"),
        ("/company/123.html", "https://www.alibaba.com/company/123.html"),
        ("acme.en.alibaba.com", "https://acme.en.alibaba.com"),
        ("https://acme.example.com/x", "https://acme.example.com/x"),
        ("http://acme.example.com", "http://acme.example.com"),
        ("  //acme.example.com  ", "https://acme.example.com"),
    ])
    def test_forms(self, raw, expected):
        assert normalize_url(raw) == expected

    @pytest.mark.parametrize("raw", [None, "", "   "])
    def test_empty(self, raw):
        assert normalize_url(raw) == ""

    @pytest.mark.parametrize("raw", [
        "//acme.example.com/a",
        "/company/1",
        "acme.example.com",
        "https://acme.example.com",
    ])
    def test_idempotent(self, raw):
        once = normalize_url(raw)
        assert normalize_url(once) == once

    def test_custom_origin(self):
        assert normalize_url("/x", origin="https://m.example.com/") == "https://m.example.com/x"


class TestParseLocation:
    """Test cases for the location heuristic."""

    def test_china_province_city(self):
        location = parse_location("CN, Guangdong, Shenzhen")
        assert location.country == "China"
        assert location.province == "Guangdong"
        assert location.city == "Shenzhen"
        assert location.district == ""

    def test_parenthetical_dropped(self):
        location = parse_location("China (Mainland) Zhejiang Ningbo Yinzhou")
        assert location.country == "China"
        assert location.province == "Zhejiang"
        assert location.city == "Ningbo"
        assert location.district == "Yinzhou"

    def test_full_width_separators(self):
        location = parse_location("中国，广东，深圳")
        assert location.country == "China"
        assert location.province == "广东"
        assert location.city == "深圳"

    def test_other_country_kept(self):
        location = parse_location("Vietnam, Hanoi")
        assert location.country == "Vietnam"
        assert location.province == "Hanoi"

    def test_empty(self):
        location = parse_location("")
        assert location.country == ""
        assert parse_location(None).city == ""


class TestTextHelpers:

    def test_parse_year(self):
        assert parse_year("Established in 2012") == "2012"
        assert parse_year("8 yrs") == ""
        assert parse_year(None) == ""

    def test_extract_phone(self):
        assert extract_phone("Tel: +86 755 1234 5678") == "+86 755 1234 5678"
        assert extract_phone("no digits here") == ""

    def test_extract_email(self):
        assert extract_email("Contact sales@acme-tools.com today") == "sales@acme-tools.com"
        assert extract_email("") == ""

    def test_clean_text(self):
        assert clean_text("  Office \n Chairs,\tDesks ") == "Office Chairs, Desks"
        assert clean_text(None) == ""
