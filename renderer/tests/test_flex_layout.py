from renderer.app.layout.flexbox import FlexLayout, TextMetrics, resolve_length
from renderer.app.schemas.document import Style, ViewNode


def _layout(tree: dict, width: float = 200, height: float = 100):
    node = ViewNode.model_validate(tree)
    engine = FlexLayout(bind_image=lambda node: None)
    return engine.layout(node, 0.0, 0.0, width, height)


def _geometry(box):
    return [(c.x, c.y, c.width, c.height) for c in box.children]


def test_grow_shares_free_space_and_stretches_cross_axis():
    box = _layout(
        {
            "type": "view",
            "children": [
                {"type": "view", "style": {"flex": 1}},
                {"type": "view", "style": {"flex": 1}},
            ],
        }
    )

    assert _geometry(box) == [(0, 0, 100, 100), (100, 0, 100, 100)]


def test_default_direction_is_row():
    assert Style().is_row
    assert not Style.model_validate({"flexDirection": "column"}).is_row


def test_column_justify_center():
    box = _layout(
        {
            "type": "view",
            "style": {"flexDirection": "column", "justifyContent": "center"},
            "children": [{"type": "view", "style": {"height": 20}}],
        }
    )

    assert _geometry(box) == [(0, 40, 200, 20)]


def test_padding_offsets_children():
    box = _layout(
        {
            "type": "view",
            "style": {"padding": 10},
            "children": [{"type": "view", "style": {"flex": 1}}],
        }
    )

    assert _geometry(box) == [(10, 10, 180, 80)]


def test_row_reverse_places_first_child_last():
    box = _layout(
        {
            "type": "view",
            "style": {"flexDirection": "row-reverse"},
            "children": [
                {"type": "view", "style": {"width": 50}},
                {"type": "view", "style": {"width": 50}},
            ],
        }
    )

    assert [c.x for c in box.children] == [150, 100]


def test_wrap_moves_overflowing_items_to_next_line():
    child = {"type": "view", "style": {"width": 80, "height": 30}}
    box = _layout(
        {
            "type": "view",
            "style": {"flexWrap": "wrap", "alignItems": "flex-start"},
            "children": [child, child, child],
        }
    )

    assert [(c.x, c.y) for c in box.children] == [(0, 0), (80, 0), (0, 30)]


def test_space_between():
    box = _layout(
        {
            "type": "view",
            "style": {"justifyContent": "space-between"},
            "children": [
                {"type": "view", "style": {"width": 40}},
                {"type": "view", "style": {"width": 40}},
            ],
        }
    )

    assert [c.x for c in box.children] == [0, 160]


def test_unbound_image_is_a_placeholder_box():
    box = _layout(
        {
            "type": "view",
            "children": [
                {"type": "image", "asset": "PHOTO", "style": {"width": 60, "height": 40}}
            ],
        }
    )

    image = box.children[0]
    assert image.kind == "image"
    assert image.image is None
    assert image.placeholder == "PHOTO"
    assert (image.width, image.height) == (60, 40)


def test_text_wraps_to_the_available_width():
    lines = TextMetrics().wrap("alpha beta gamma", Style(), 60)

    assert lines == ["alpha", "beta", "gamma"]


def test_lengths():
    assert resolve_length("50%", 300) == 150
    assert resolve_length("12px", None) == 12
    assert resolve_length("50%", None) is None
    assert resolve_length("auto", 100) is None
