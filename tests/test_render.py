from quarry_core.scripting.render import ELLIPSIS, NO_VALUE, render_value


def test_none_renders_as_marker():
    assert render_value(None) == NO_VALUE == "None"


def test_strings_pass_through_verbatim():
    assert render_value("hello 'world'") == "hello 'world'"
    assert render_value("") == ""


def test_containers_render_like_repr():
    assert render_value({"a": [1, 2]}) == "{'a': [1, 2]}"
    assert render_value(42) == "42"


def test_nesting_is_depth_limited():
    rendered = render_value([[[[1]]]], max_depth=2)
    assert "..." in rendered
    assert "1" not in rendered


def test_output_is_length_capped():
    rendered = render_value(list(range(1000)), max_length=20)
    assert len(rendered) == 20
    assert rendered.endswith(ELLIPSIS)


def test_broken_repr_does_not_raise():
    class Broken:
        def __repr__(self):
            raise RuntimeError("nope")

    assert render_value(Broken()).startswith("<unrenderable Broken")
