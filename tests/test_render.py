import pytest

from workbook.compiler import compile_component
from workbook.config import Settings
from workbook.elements import create_element
from workbook.errors import RenderError
from workbook.hooks import use_effect, use_state
from workbook.render import ErrorBoundary, Mount, host_attrs

COUNTER = """
from widgets import Stack, Text, Button
from hooks import use_state, use_effect

export default def Counter(props):
    count, set_count = use_state(props.get("start", 0))
    use_effect(lambda: props["log"].append(count), [count])
    return <Stack>
        <Text>Count: {count}</Text>
        <Button on_click={lambda: set_count(lambda c: c + 1)}>Add</Button>
    </Stack>
"""


def test_mount_renders_widgets_to_html():
    comp = compile_component(COUNTER)
    mount = Mount(comp, {"start": 2, "log": []})
    html = mount.html()
    assert html.startswith('<div class="wb-root"><div class="wb-stack">')
    assert "<p class=\"wb-text\">Count: 2</p>" in html
    assert '<button class="wb-button"' in html
    assert 'type="button"' in html


def test_dispatch_updates_state_and_runs_effects():
    log = []
    mount = Mount(compile_component(COUNTER), {"log": log})
    mount.render()
    assert log == [0]
    button = mount.find_by_text("Add", tag="button")
    mount.dispatch(button.node_id, "click")
    mount.dispatch(button.node_id, "on_click")
    assert mount.find_by_text("Count:", tag="p").text() == "Count: 2"
    assert log == [0, 1, 2]


def test_dispatch_unknown_node():
    mount = Mount(compile_component(COUNTER), {"log": []})
    with pytest.raises(KeyError):
        mount.dispatch("nope")


def test_text_is_escaped():
    comp = compile_component("export default def App(props):\n    return <div>{props['x']}</div>\n")
    html = Mount(comp, {"x": "<script>alert(1)</script>"}).html()
    assert "<script>" not in html
    assert "&lt;script&gt;" in html


def test_labelled_inputs_and_select_options():
    src = (
        "from widgets import TextInput, Select, Title\n"
        "export default def App(props):\n"
        "    return <>\n"
        "        <Title order={3}>Quiz</Title>\n"
        "        <TextInput label=\"Name\" placeholder=\"you\" />\n"
        "        <Select data={['a', {'value': 'b', 'label': 'Bee'}]} />\n"
        "    </>\n"
    )
    html = Mount(compile_component(src)).html()
    assert '<h3 class="wb-title">Quiz</h3>' in html
    assert '<label class="wb-field"><span class="wb-label">Name</span><input' in html
    assert 'placeholder="you"' in html
    assert '<option value="b">Bee</option>' in html


def test_host_attrs_conversion():
    handler = lambda: None
    attrs, handlers = host_attrs(
        {
            "className": "big",
            "style": {"font_size": "12px"},
            "aria_label": "x",
            "disabled": True,
            "hidden": False,
            "onClick": handler,
            "bad key": "y",
        },
        base_class="wb-text",
    )
    assert attrs == {"class": "wb-text big", "style": "font-size: 12px", "aria-label": "x", "disabled": "disabled"}
    assert handlers == {"on_click": handler}


def test_nested_components_keep_separate_state():
    def Item(props):
        value, set_value = use_state(props["start"])
        return create_element("span", {"on_click": lambda: set_value(value + 10)}, value)

    def App(props):
        return create_element("div", None, create_element(Item, {"start": 1}), create_element(Item, {"start": 2}))

    mount = Mount(App)
    mount.render()
    spans = [n for n in mount.nodes() if n.tag == "span"]
    mount.dispatch(spans[1].node_id)
    assert [n.text() for n in mount.nodes() if n.tag == "span"] == ["1", "12"]


def test_effect_cleanup_runs_on_unmount():
    calls = []

    def App(props):
        from workbook.hooks import use_effect

        use_effect(lambda: (calls.append("run"), lambda: calls.append("cleanup"))[1], [])
        return None

    mount = Mount(App)
    mount.render()
    mount.render()
    mount.unmount()
    assert calls == ["run", "cleanup"]


def test_state_update_during_render_loops_forever():
    def App(props):
        value, set_value = use_state(0)
        set_value(value + 1)
        return None

    with pytest.raises(RenderError):
        Mount(App).render()


def test_hooks_outside_render_raise():
    with pytest.raises(RenderError):
        use_state(1)


def test_error_boundary_renders_panel_for_runtime_errors():
    src = "export default def App(props):\n    return props['missing']\n"
    boundary = ErrorBoundary.from_source(src)
    html = boundary.html()
    assert not boundary.ok
    assert isinstance(boundary.error, RenderError)
    assert 'class="wb-error"' in html
    assert "crashed while rendering" in html
    assert "KeyError" in html


def test_error_boundary_renders_panel_for_compile_errors():
    boundary = ErrorBoundary.from_source("import os\n")
    assert not boundary.ok
    assert "could not be compiled" in boundary.html()


def test_error_boundary_catches_budget_overrun_during_render(tmp_path):
    settings = Settings(data_dir=tmp_path, cache_dir=tmp_path, component_max_steps=500, component_max_seconds=5.0)
    src = "export default def App(props):\n    while True:\n        pass\n"
    boundary = ErrorBoundary.from_source(src, settings=settings)
    html = boundary.html()
    assert isinstance(boundary.error, RenderError)
    assert "budget" in html


def test_error_boundary_isolates_failing_handler():
    src = (
        "from widgets import Button\n"
        "export default def App(props):\n"
        "    return <Button on_click={lambda: 1 / 0}>Boom</Button>\n"
    )
    boundary = ErrorBoundary.from_source(src)
    assert "Boom" in boundary.html()
    node = boundary.mount.find_by_text("Boom")
    html = boundary.dispatch(node.node_id)
    assert "ZeroDivisionError" in html
    assert not boundary.ok


def test_string_event_and_script_url_attributes_are_dropped():
    attrs, handlers = host_attrs(
        {
            "onclick": "alert(1)",
            "onMouseOver": "steal()",
            "on_click": "x",
            "open": True,
            "href": "javascript:alert(1)",
            "src": " java\tscript:alert(1)",
            "action": "https://example.com/send",
            "poster": "data:image/png;base64,AAAA",
        }
    )
    assert attrs == {"open": "open", "action": "https://example.com/send", "poster": "data:image/png;base64,AAAA"}
    assert handlers == {}


def test_inline_script_attribute_is_not_rendered():
    src = "export default def App(props):\n    return <div onclick=\"alert(document.cookie)\">x</div>\n"
    html = Mount(compile_component(src)).html()
    assert "onclick" not in html
    assert "<div>x</div>" in html


@pytest.mark.parametrize("tag", ["img src=x onerror=alert(1) a", "script", "iframe", "IFRAME", "x>"])
def test_unsafe_tag_names_fail_to_render(tag):
    def App(props):
        return create_element(tag, None)

    with pytest.raises(RenderError):
        Mount(App).render()


def test_script_element_becomes_error_panel():
    src = "export default def App(props):\n    return <div>x<script>alert(2)</script></div>\n"
    boundary = ErrorBoundary.from_source(src)
    html = boundary.html()
    assert not boundary.ok
    assert "<script>" not in html
    assert "not an allowed element" in html


def test_failing_effect_cleanup_on_unmount_is_a_render_error():
    def App(props):
        use_effect(lambda: (lambda: 1 / 0), [])
        return "x"

    mount = Mount(App)
    mount.render()
    with pytest.raises(RenderError):
        mount.unmount()


def test_error_boundary_catches_failing_cleanup_of_removed_child():
    def Child(props):
        use_effect(lambda: (lambda: 1 / 0), [])
        return "child"

    def App(props):
        shown, set_shown = use_state(True)
        return create_element("button", {"on_click": lambda: set_shown(False)}, create_element(Child) if shown else None)

    boundary = ErrorBoundary(App)
    assert "child" in boundary.html()
    button = boundary.mount.find(lambda n: n.tag == "button")
    html = boundary.dispatch(button.node_id)
    assert "ZeroDivisionError" in html
    assert not boundary.ok
