"""
Tests for watchtower.cache_keys module.
"""
import itertools

from watchtower.cache_keys import encode, namespace_pattern
from watchtower.filters import FilterSet


class TestEncode:
    """Tests for encode()."""

    def test_key_format(self):
        """Prefix, namespace and sorted k=v pairs."""
        key = encode("sales_overview", {
            "platform": "Zepto",
            "brand": "Aer",
            "startDate": "2025-10-01",
            "endDate": "2025-10-06",
        })
        assert key == (
            "watchtower:sales_overview:brand=aer:end_date=2025-10-06:"
            "platform=zepto:start_date=2025-10-01"
        )

    def test_no_filters(self):
        assert encode("platforms") == "watchtower:platforms"
        assert encode("platforms", {}) == "watchtower:platforms"

    def test_insertion_order_irrelevant(self):
        """Every permutation of the same pairs yields one key."""
        pairs = [("platform", "Zepto"), ("brand", "Aer"), ("location", "Mumbai"), ("endDate", "2025-10-06")]
        keys = {encode("ns", dict(p)) for p in itertools.permutations(pairs)}
        assert len(keys) == 1

    def test_casing_and_list_order_irrelevant(self):
        a = encode("ns", {"brand": "AER,Godrej", "platform": "zepto"})
        b = encode("ns", {"platform": "Zepto", "brand": "godrej, aer"})
        assert a == b

    def test_all_and_empty_values_absent(self):
        """Unconstrained values never appear in the key."""
        assert encode("ns", {"brand": "All", "platform": "", "region": None}) == "watchtower:ns"

    def test_filterset_and_mapping_agree(self):
        query = {"brand": "Aer", "months": "3"}
        assert encode("ns", query) == encode("ns", FilterSet.from_query(query))

    def test_different_filters_different_keys(self):
        assert encode("ns", {"brand": "Aer"}) != encode("ns", {"brand": "Godrej"})
        assert encode("a", {"brand": "Aer"}) != encode("b", {"brand": "Aer"})

    def test_extras(self):
        """Non-filter discriminators are part of the key."""
        key = encode("sales_drilldown", {"brand": "Aer"}, level="City")
        assert key == "watchtower:sales_drilldown:brand=aer:level=city"

    def test_none_extras_skipped(self):
        assert encode("ns", None, level=None) == "watchtower:ns"

    def test_competitor_flag(self):
        assert encode("ns", {"competitor": "1"}) == "watchtower:ns:competitor=1"

    def test_separator_in_value_escaped(self):
        """A colon inside a value cannot fake another key segment."""
        key = encode("ns", {"brand": "a:b"})
        assert key == "watchtower:ns:brand=a%3Ab"

    def test_escaped_values_stay_distinct(self):
        """Values differing only in separator characters never share a key."""
        values = ["a:b", "a_b", "a%3Ab", "a=b", "a%b"]
        keys = {encode("sales_overview", {"brand": v}) for v in values}
        assert len(keys) == len(values)

    def test_separator_in_extras_escaped(self):
        assert encode("ns", level="a:b=c") == "watchtower:ns:level=a%3Ab%3Dc"
        assert encode("ns", level="a:b") != encode("ns", level="a_b")

    def test_custom_prefix(self):
        assert encode("ns", {"brand": "Aer"}, prefix="wt").startswith("wt:ns:")

    def test_long_keys_hashed(self):
        """Long keys keep their namespace head and stay under the limit."""
        brands = ",".join(f"brand{i}" for i in range(100))
        key = encode("sales_overview", {"brand": brands})
        assert len(key) <= 200
        assert key.startswith("watchtower:sales_overview:h=")
        assert key == encode("sales_overview", {"brand": brands})


class TestNamespacePattern:
    """Tests for namespace_pattern()."""

    def test_all_keys(self):
        assert namespace_pattern() == "watchtower:*"

    def test_one_namespace(self):
        assert namespace_pattern("sales_overview") == "watchtower:sales_overview*"

    def test_custom_prefix(self):
        assert namespace_pattern("summary", prefix="wt") == "wt:summary*"
