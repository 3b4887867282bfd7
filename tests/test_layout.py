"""
Tests for importing layout-format (editor) documents.
"""

import json

import pytest


def _node(node_id, node_type, pos, inputs=None, widgets=None, **extra):
    node = {
        "id": node_id,
        "type": node_type,
        "pos": pos,
        "size": [300, 100],
        "inputs": inputs or [],
        "outputs": [],
        "mode": 0,
    }
    if widgets is not None:
        node["widgets_values"] = widgets
    node.update(extra)
    return node


def _input(name, link, slot_type="*"):
    return {"name": name, "type": slot_type, "link": link}


@pytest.fixture
def layout_doc():
    return {
        "last_node_id": 10,
        "last_link_id": 6,
        "nodes": [
            _node(4, "CheckpointLoaderSimple", [0, 0], widgets=["model.safetensors"]),
            _node(6, "CLIPTextEncode", [400, 0], [_input("clip", 1, "CLIP")], ["a cat"]),
            _node(7, "CLIPTextEncode", [400, 150], [_input("clip", 5, "CLIP")], ["blurry"]),
            _node(5, "EmptyLatentImage", [400, 300], widgets=[512, 768, 1]),
            _node(
                3,
                "KSampler",
                [800, 0],
                [
                    _input("model", 2, "MODEL"),
                    _input("positive", 3, "CONDITIONING"),
                    _input("negative", 4, "CONDITIONING"),
                    _input("latent_image", 6, "LATENT"),
                ],
                [42, "randomize", 20, 7.5, "euler", "normal", 1.0],
            ),
            _node(10, "Note", [0, 500], widgets=["remember the seed"]),
        ],
        "links": [
            [1, 4, 1, 6, 0, "CLIP"],
            [2, 4, 0, 3, 0, "MODEL"],
            [3, 6, 0, 3, 1, "CONDITIONING"],
            [4, 7, 0, 3, 2, "CONDITIONING"],
            [5, 4, 1, 7, 0, "CLIP"],
            [6, 5, 0, 3, 3, "LATENT"],
        ],
        "groups": [
            {"title": "Prompts", "bounding": [400, 0, 10, 150]},
            {"title": "Nothing here", "bounding": [5000, 5000, 10, 10]},
        ],
        "version": 0.4,
    }


class TestWidgetMapping:
    """Test widget values landing on the right inputs."""

    def test_widgets_follow_schema_order(self, layout_doc, schema):
        from comfy_compiler.layout import import_layout

        graph = import_layout(layout_doc, schema).graph
        sampler = graph.get("3")

        assert sampler.literal("seed") == 42
        assert sampler.literal("steps") == 20
        assert sampler.literal("cfg") == 7.5
        assert sampler.literal("sampler_name") == "euler"
        assert sampler.literal("scheduler") == "normal"
        assert sampler.literal("denoise") == 1.0
        assert graph.get("5").literal("height") == 768

    def test_control_token_not_emitted(self, layout_doc, schema):
        """The frontend-only control value after a seed is skipped."""
        from comfy_compiler.layout import import_layout

        sampler = import_layout(layout_doc, schema).graph.get("3")

        assert "randomize" not in [sampler.literal(name) for name in sampler.inputs]
        assert "control_after_generate" not in sampler.inputs

    def test_seed_without_control_token(self, layout_doc, schema):
        from comfy_compiler.layout import import_layout

        layout_doc["nodes"][4]["widgets_values"] = [42, 20, 7.5, "euler", "normal", 1.0]
        sampler = import_layout(layout_doc, schema).graph.get("3")

        assert sampler.literal("seed") == 42
        assert sampler.literal("steps") == 20

    def test_connection_wins_over_widget(self, schema):
        """A widget input converted to a socket and linked becomes a connection."""
        from comfy_compiler.graph import Connection
        from comfy_compiler.layout import import_layout

        doc = {
            "nodes": [
                _node(11, "StringSource", [0, 0]),
                _node(6, "CLIPTextEncode", [300, 0], [_input("text", 7, "STRING")], ["ignored"]),
            ],
            "links": [[7, 11, 0, 6, 0, "STRING"]],
        }
        node = import_layout(doc, schema).graph.get("6")

        assert node.inputs["text"] == Connection("11", 0)

    def test_named_widget_values(self, schema):
        from comfy_compiler.layout import import_layout

        doc = {
            "nodes": [
                _node(5, "EmptyLatentImage", [0, 0], widgets={"width": 1024, "height": 640}),
            ]
        }
        node = import_layout(doc, schema).graph.get("5")

        assert node.literal("width") == 1024
        assert node.literal("height") == 640
        assert "batch_size" not in node.inputs

    def test_unknown_node_type_warns(self, schema):
        from comfy_compiler.layout import import_layout

        doc = {"nodes": [_node(12, "MysteryNode", [0, 0], widgets=[1, 2])]}
        result = import_layout(doc, schema)

        assert result.warnings == ['Node "MysteryNode" (#12): inputs could not be fully mapped']
        assert result.graph.get("12").class_type == "MysteryNode"
        assert result.graph.get("12").inputs == {}

    def test_unknown_node_without_widgets_is_silent(self, schema):
        from comfy_compiler.layout import import_layout

        doc = {"nodes": [_node(12, "MysteryNode", [0, 0], widgets=[])]}

        assert import_layout(doc, schema).warnings == []


class TestConnections:
    """Test link table resolution."""

    def test_links_become_connections(self, layout_doc, schema):
        from comfy_compiler.graph import Connection
        from comfy_compiler.layout import import_layout

        sampler = import_layout(layout_doc, schema).graph.get("3")

        assert sampler.inputs["model"] == Connection("4", 0)
        assert sampler.inputs["positive"] == Connection("6", 0)
        assert sampler.inputs["negative"] == Connection("7", 0)
        assert sampler.inputs["latent_image"] == Connection("5", 0)

    def test_dict_links(self, schema):
        from comfy_compiler.graph import Connection
        from comfy_compiler.layout import import_layout

        doc = {
            "nodes": [
                _node(1, "CheckpointLoaderSimple", [0, 0], widgets=["m"]),
                _node(2, "VAEDecode", [300, 0], [_input("vae", 9, "VAE")]),
            ],
            "links": [
                {"id": 9, "origin_id": 1, "origin_slot": 2, "target_id": 2, "target_slot": 1}
            ],
        }

        assert import_layout(doc, schema).graph.get("2").inputs["vae"] == Connection("1", 2)

    def test_missing_link_is_dropped(self, schema):
        from comfy_compiler.layout import import_layout

        doc = {"nodes": [_node(2, "VAEDecode", [0, 0], [_input("vae", 99, "VAE")])]}
        node = import_layout(doc, schema).graph.get("2")

        assert "vae" not in node.inputs

    def test_reroutes_collapse(self, schema):
        """Connections through reroute nodes point at the real producer."""
        from comfy_compiler.graph import Connection
        from comfy_compiler.layout import import_layout

        doc = {
            "nodes": [
                _node(1, "CheckpointLoaderSimple", [0, 0], widgets=["m"]),
                _node(20, "Reroute", [200, 0], [_input("", 1)]),
                _node(21, "Reroute", [300, 0], [_input("", 2)]),
                _node(3, "KSampler", [400, 0], [_input("model", 3, "MODEL")]),
            ],
            "links": [
                [1, 1, 0, 20, 0, "MODEL"],
                [2, 20, 0, 21, 0, "*"],
                [3, 21, 0, 3, 0, "*"],
            ],
        }
        graph = import_layout(doc, schema).graph

        assert graph.get("3").inputs["model"] == Connection("1", 0)
        assert "20" not in graph and "21" not in graph

    def test_reroute_loop_terminates(self, schema):
        from comfy_compiler.layout import import_layout

        doc = {
            "nodes": [
                _node(20, "Reroute", [0, 0], [_input("", 2)]),
                _node(21, "Reroute", [100, 0], [_input("", 1)]),
                _node(3, "KSampler", [400, 0], [_input("model", 3, "MODEL")]),
            ],
            "links": [[1, 20, 0, 21, 0, "*"], [2, 21, 0, 20, 0, "*"], [3, 21, 0, 3, 0, "*"]],
        }

        assert "model" not in import_layout(doc, schema).graph.get("3").inputs

    def test_connection_to_note_removed(self, schema):
        from comfy_compiler.layout import import_layout

        doc = {
            "nodes": [
                _node(10, "Note", [0, 0], widgets=["x"]),
                _node(2, "VAEDecode", [300, 0], [_input("vae", 1, "VAE")]),
            ],
            "links": [[1, 10, 0, 2, 1, "VAE"]],
        }

        assert "vae" not in import_layout(doc, schema).graph.get("2").inputs


class TestStructure:
    """Test notes, groups, modes and degraded documents."""

    def test_notes_are_separated(self, layout_doc, schema):
        from comfy_compiler.layout import import_layout

        graph = import_layout(layout_doc, schema).graph

        assert "10" not in graph
        assert len(graph.notes) == 1
        assert graph.notes[0].title == "Note"
        assert graph.notes[0].content == "remember the seed"

    def test_group_bounds_are_inclusive(self, layout_doc, schema):
        """Nodes on the boundary edge are members; empty groups are dropped."""
        from comfy_compiler.layout import import_layout

        groups = import_layout(layout_doc, schema).graph.groups

        assert len(groups) == 1
        assert groups[0].title == "Prompts"
        assert groups[0].id == 1
        assert set(groups[0].member_node_ids) == {"6", "7"}

    def test_node_without_position_is_not_grouped(self, schema):
        from comfy_compiler.layout import import_layout

        doc = {
            "nodes": [
                {"id": 1, "type": "SaveImage"},
                {"id": 2, "type": "SaveImage", "pos": ["left", None]},
                _node(3, "SaveImage", [5, 5]),
            ],
            "groups": [{"id": 1, "title": "G", "bounding": [-10, -10, 20, 20]}],
        }
        graph = import_layout(doc, schema).graph

        assert set(graph.nodes) == {"1", "2", "3"}
        assert [g.member_node_ids for g in graph.groups] == [["3"]]

    def test_group_keeps_authored_id(self, layout_doc, schema):
        from comfy_compiler.layout import import_layout

        layout_doc["groups"][0]["id"] = 42

        assert import_layout(layout_doc, schema).graph.groups[0].id == 42

    def test_mode_and_title_kept(self, schema):
        from comfy_compiler.graph import NodeMode
        from comfy_compiler.layout import import_layout

        doc = {
            "nodes": [
                _node(2, "LoraLoaderModelOnly", [0, 0], mode=4, title="My LoRA"),
                _node(3, "SaveImage", [0, 0], title="SaveImage"),
            ]
        }
        graph = import_layout(doc, schema).graph

        assert graph.get("2").mode == NodeMode.BYPASSED
        assert graph.get("2").title == "My LoRA"
        assert graph.get("3").title is None

    def test_skips_invalid_nodes(self, schema):
        from comfy_compiler.layout import import_layout

        doc = {"nodes": [_node(-1, "SaveImage", [0, 0]), {"id": 5}, "junk", _node(6, "", [0, 0])]}

        assert len(import_layout(doc, schema).graph) == 0

    def test_missing_sections_degrade(self, schema):
        """No links and no groups is not an error."""
        from comfy_compiler.layout import import_layout

        doc = {"nodes": [_node(1, "SaveImage", [0, 0], widgets=["out"])], "links": None}
        result = import_layout(doc, schema)

        assert result.graph.get("1").literal("filename_prefix") == "out"
        assert result.graph.groups == []

    def test_output_is_canonical(self, layout_doc, schema):
        from comfy_compiler.layout import import_layout

        data = json.loads(import_layout(layout_doc, schema).content)

        assert data["nodes"]["3"]["inputs"]["model"] == ["4", 0]
        assert data["nodes"]["4"] == {
            "class_type": "CheckpointLoaderSimple",
            "inputs": {"ckpt_name": "model.safetensors"},
        }
        assert data["notes"][0]["content"] == "remember the seed"

    def test_invalid_json(self):
        from comfy_compiler.exceptions import WorkflowParseError
        from comfy_compiler.layout import import_layout

        with pytest.raises(WorkflowParseError):
            import_layout('{"nodes": [')

    def test_is_layout_document(self, layout_doc, txt2img_workflow):
        from comfy_compiler.layout import is_layout_document

        assert is_layout_document(layout_doc)
        assert not is_layout_document({"nodes": txt2img_workflow})
        assert not is_layout_document(txt2img_workflow)
