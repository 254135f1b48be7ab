# tests/test_aliases.py
"""
Tests for the per-function alias tracker.
"""

from rwsep import syntax as S
from rwsep.aliases import AliasTracker


def _field(name):
    return S.SelectorExpr(S.Ident("d"), name)


class TestAliasTracker:

    def test_direct_record(self):
        t = AliasTracker()
        f = _field("Value1")
        t.record("p", f)
        assert t.resolve("p") is f
        assert t.resolve("q") is None
        assert "p" in t and len(t) == 1

    def test_unknown_name(self):
        t = AliasTracker()
        assert t.resolve("nobody") is None
        assert "nobody" not in t

    def test_chain_of_copies(self):
        t = AliasTracker()
        f = _field("Value1")
        t.record("a3", f)
        assert t.record_copy("a2", "a3")
        assert t.record_copy("a1", "a2")
        assert t.resolve("a1") is f

    def test_rebinding_source_keeps_copies(self):
        t = AliasTracker()
        f1, f2 = _field("Value1"), _field("Value2")
        t.record("p", f1)
        t.record_copy("q", "p")
        t.record("p", f2)
        assert t.resolve("q") is f1
        assert t.resolve("p") is f2

    def test_self_copy_relinks(self):
        t = AliasTracker()
        f = _field("Value1")
        t.record("a", f)
        assert t.record_copy("a", "a")
        assert t.resolve("a") is f

    def test_self_copy_adds_no_record(self):
        t = AliasTracker()
        t.record("a", _field("Value1"))
        t.record_copy("a", "a")
        assert len(t._arena) == 1

    def test_revisited_name_gives_up(self):
        t = AliasTracker()
        f1, f2 = _field("Value1"), _field("Value2")
        t.record("a", f1)
        t.record("b", f2)
        t.record_copy("a", "b")
        t.record_copy("b", "a")
        assert t.resolve("a") is f2
        assert t.resolve("b") is None

    def test_long_chain(self):
        t = AliasTracker()
        f = _field("Value1")
        t.record("a0", f)
        for i in range(1, 200):
            t.record_copy(f"a{i}", f"a{i - 1}")
        assert t.resolve("a199") is f

    def test_copy_of_unknown_forgets(self):
        t = AliasTracker()
        t.record("p", _field("Value1"))
        assert not t.record_copy("p", "plain")
        assert "p" not in t
        assert t.resolve("p") is None

    def test_forget(self):
        t = AliasTracker()
        f = _field("Value1")
        t.record("p", f)
        t.record_copy("q", "p")
        t.forget("p")
        assert t.resolve("p") is None
        assert t.resolve("q") is f
        t.forget("never-bound")

    def test_reset(self):
        t = AliasTracker()
        t.record("p", _field("Value1"))
        t.reset()
        assert len(t) == 0
        assert t.resolve("p") is None
