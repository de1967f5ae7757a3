"""
Tests for --select parsing and resolution.
"""

import pytest

from provisionctl.core.engine.graph import UnitGraph
from provisionctl.core.engine.selection import Selection, parse_selection
from provisionctl.core.errors import SelectionError, UnknownUnitError


@pytest.fixture
def graph(make_unit) -> UnitGraph:
    return UnitGraph.from_units([
        make_unit("docker-repo", tags=("containers",)),
        make_unit("docker", depends_on=("docker-repo",), tags=("containers",)),
        make_unit("kubectl", tags=("kubernetes",)),
        make_unit("starship", tags=("shell",)),
    ])


class TestParseSelection:
    def test_all(self):
        assert parse_selection("all") == Selection(mode="all")

    def test_tag(self):
        sel = parse_selection("tag:containers")
        assert sel.mode == "tag"
        assert sel.values == ("containers",)

    def test_multiple_ids_deduplicated(self):
        sel = parse_selection("id:a, b,a")
        assert sel.values == ("a", "b")
        assert str(sel) == "id:a,b"

    @pytest.mark.parametrize("expr", ["", "   ", "everything", "name:x", "tag:", "id:,"])
    def test_invalid(self, expr):
        with pytest.raises(SelectionError):
            parse_selection(expr)


class TestResolve:
    def test_all_ids(self, graph):
        assert parse_selection("all").resolve(graph) == set(graph.ids)

    def test_tags_union(self, graph):
        ids = parse_selection("tag:kubernetes,shell").resolve(graph)
        assert ids == {"kubectl", "starship"}

    def test_unknown_tag(self, graph):
        with pytest.raises(SelectionError, match="nothing|No units tagged"):
            parse_selection("tag:gaming").resolve(graph)

    def test_unknown_id(self, graph):
        with pytest.raises(UnknownUnitError):
            parse_selection("id:docker,nope").resolve(graph)

    def test_ids_do_not_expand_dependencies(self, graph):
        # Plan resolution adds dependencies, not selection
        assert parse_selection("id:docker").resolve(graph) == {"docker"}
        assert graph.resolve_plan({"docker"}).order == ["docker-repo", "docker"]
