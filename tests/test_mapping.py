"""
Tests for workflow categories and semantic field mapping.
"""

import pytest


def _graph(nodes, schema=None):
    from comfy_compiler.graph import parse_workflow

    return parse_workflow(nodes, schema)


class TestCategories:
    """Test category detection and per-category field sets."""

    @pytest.mark.parametrize(
        "class_types, expected",
        [
            ({"CheckpointLoaderSimple", "KSampler"}, "tti"),
            ({"UNETLoader"}, "tti"),
            ({"CheckpointLoaderSimple", "LoadImage", "SetLatentNoiseMask"}, "iti_inpainting"),
            ({"UNETLoader", "TextEncodeQwenImageEditPlus", "LoadImage"}, "iti_editing"),
            ({"UNETLoader", "CreateVideo"}, "ttv"),
            ({"UNETLoader", "CreateVideo", "LoadImage"}, "itv"),
            ({"SaveImage"}, None),
        ],
    )
    def test_detect_category(self, class_types, expected):
        from comfy_compiler.templates import detect_category

        category = detect_category(class_types)

        assert (category.value if category else None) == expected

    def test_required_keys(self):
        from comfy_compiler.templates import WorkflowCategory, required_keys

        assert required_keys(WorkflowCategory.TEXT_TO_IMAGE) == ["positive_text"]
        assert required_keys(WorkflowCategory.IMAGE_TO_VIDEO) == ["positive_text", "image"]
        assert WorkflowCategory.IMAGE_TO_VIDEO.needs_input_image
        assert WorkflowCategory.TEXT_TO_VIDEO.is_video

    def test_basic_guider_drops_cfg_and_negative(self):
        from comfy_compiler.templates import WorkflowCategory, optional_keys

        keys = optional_keys(WorkflowCategory.TEXT_TO_IMAGE, {"BasicGuider"})

        assert "cfg" not in keys
        assert "negative_text" not in keys
        assert "steps" in keys

    def test_dual_clip_loader(self):
        from comfy_compiler.templates import WorkflowCategory, optional_keys

        image_keys = optional_keys(WorkflowCategory.TEXT_TO_IMAGE, {"DualCLIPLoader"})
        video_keys = optional_keys(WorkflowCategory.TEXT_TO_VIDEO, {"DualCLIPLoader"})

        assert "clip_name" not in image_keys
        assert image_keys.index("clip_name1") + 1 == image_keys.index("clip_name2")
        assert "clip_name" in video_keys

    def test_placeholder_keys(self):
        from comfy_compiler.templates import key_for_placeholder, placeholder_for_key

        assert key_for_placeholder("positive_prompt") == "positive_text"
        assert key_for_placeholder("highnoise_unet_name") == "unet_name"
        assert key_for_placeholder("steps") == "steps"
        assert placeholder_for_key("image") == "image_filename"
        assert placeholder_for_key("width") == "width"

    def test_display_info(self):
        from comfy_compiler.templates import create_required_field

        known = create_required_field("cfg")
        unknown = create_required_field("shift")

        assert known.display_name == "CFG Scale"
        assert unknown.display_name == "Shift"
        assert unknown.description == "Required field: shift"


class TestPromptCandidates:
    """Test positive/negative classification of text encoders."""

    def test_traced_through_sampler_inputs(self, txt2img_graph, schema):
        from comfy_compiler.mapping import find_prompt_candidates

        candidates = find_prompt_candidates(txt2img_graph, schema)

        assert [c.node_id for c in candidates["positive_text"]] == ["6"]
        assert [c.node_id for c in candidates["negative_text"]] == ["7"]
        assert candidates["positive_text"][0].current_value == "a cat"
        assert candidates["positive_text"][0].input_key == "text"

    def test_traced_through_passthrough_nodes(self, schema):
        """Conditioning nodes between the encoder and the sampler are followed."""
        from comfy_compiler.mapping import trace_conditioning

        graph = _graph(
            {
                "6": {"class_type": "CLIPTextEncode", "inputs": {"text": "a"}},
                "7": {"class_type": "CLIPTextEncode", "inputs": {"text": "b"}},
                "10": {
                    "class_type": "ConditioningConcat",
                    "inputs": {"conditioning_to": ["6", 0], "conditioning_from": ["7", 0]},
                },
                "11": {"class_type": "ConditioningSetArea", "inputs": {"conditioning_in": ["10", 0]}},
                "3": {"class_type": "KSampler", "inputs": {"negative": ["11", 0]}},
            },
            schema,
        )

        assert trace_conditioning(graph, "6") == "negative"
        assert trace_conditioning(graph, "7") == "negative"

    def test_trace_stops_at_non_conditioning_nodes(self, schema):
        from comfy_compiler.mapping import trace_conditioning

        graph = _graph(
            {
                "6": {"class_type": "CLIPTextEncode", "inputs": {"text": "a"}},
                "3": {"class_type": "KSampler", "inputs": {"model": ["6", 0]}},
                "9": {"class_type": "KSampler", "inputs": {"positive": ["3", 0]}},
            },
            schema,
        )

        assert trace_conditioning(graph, "6") is None

    def test_trace_cycle_terminates(self):
        from comfy_compiler.mapping import trace_conditioning

        graph = _graph(
            {
                "1": {"class_type": "A", "inputs": {"x": ["2", 0]}},
                "2": {"class_type": "B", "inputs": {"y": ["1", 0]}},
            }
        )

        assert trace_conditioning(graph, "1") is None

    def test_single_conditioning_guider_is_positive(self):
        from comfy_compiler.mapping import trace_conditioning

        graph = _graph(
            {
                "6": {"class_type": "CLIPTextEncode", "inputs": {"text": "a"}},
                "22": {"class_type": "BasicGuider", "inputs": {"conditioning": ["6", 0]}},
            }
        )

        assert trace_conditioning(graph, "6") == "positive"

    def test_title_fallback(self, schema):
        """Unconnected encoders fall back to their titles."""
        from comfy_compiler.mapping import find_prompt_candidates

        graph = _graph(
            {
                "1": {
                    "class_type": "CLIPTextEncode",
                    "inputs": {"text": "ugly"},
                    "_meta": {"title": "Negative Prompt"},
                },
                "2": {"class_type": "CLIPTextEncode", "inputs": {"text": "?"}},
            },
            schema,
        )
        candidates = find_prompt_candidates(graph, schema)

        assert [c.node_id for c in candidates["negative_text"]] == ["1", "2"]
        assert [c.node_id for c in candidates["positive_text"]] == ["2"]

    def test_connected_text_is_a_candidate(self, schema):
        """An encoder fed by a string node is still a prompt candidate."""
        from comfy_compiler.mapping import find_prompt_candidates

        graph = _graph(
            {
                "1": {"class_type": "StringJoin", "inputs": {"separator": " "}},
                "2": {"class_type": "CLIPTextEncode", "inputs": {"text": ["1", 0]}},
                "3": {"class_type": "KSampler", "inputs": {"positive": ["2", 0]}},
            },
            schema,
        )
        positive = find_prompt_candidates(graph, schema)["positive_text"]

        assert [(c.node_id, c.input_key, c.current_value) for c in positive] == [
            ("2", "text", None)
        ]

    def test_localized_string_inputs(self):
        """Without text/prompt inputs, CONDITIONING nodes with STRING inputs are used."""
        from comfy_compiler.mapping import find_prompt_candidates
        from comfy_compiler.schema import NodeTypeSchema

        object_info = {
            "TextEncodeLocalized": {
                "input": {"required": {"文本": ["STRING", {"multiline": True}], "clip": ["CLIP"]}},
                "output": ["CONDITIONING"],
            },
            "KSampler": {
                "input": {
                    "required": {"positive": ["CONDITIONING"], "negative": ["CONDITIONING"]}
                },
                "output": ["LATENT"],
            },
        }
        localized = NodeTypeSchema.from_object_info(object_info)
        graph = _graph(
            {
                "6": {"class_type": "TextEncodeLocalized", "inputs": {"文本": "一只猫"}},
                "7": {"class_type": "TextEncodeLocalized", "inputs": {"文本": "模糊"}},
                "3": {"class_type": "KSampler", "inputs": {"positive": ["6", 0], "negative": ["7", 0]}},
            },
            localized,
        )
        candidates = find_prompt_candidates(graph, localized)

        assert [(c.node_id, c.input_key) for c in candidates["positive_text"]] == [("6", "文本")]
        assert [(c.node_id, c.input_key) for c in candidates["negative_text"]] == [("7", "文本")]
        assert candidates["positive_text"][0].current_value == "一只猫"


class TestFieldCandidates:
    """Test candidates for non-prompt fields."""

    def test_inputs_by_key(self, txt2img_graph, schema):
        from comfy_compiler.mapping import find_field_candidates

        steps = find_field_candidates("steps", txt2img_graph, schema)
        width = find_field_candidates("width", txt2img_graph, schema)

        assert [(c.node_id, c.current_value) for c in steps] == [("3", 20)]
        assert [(c.node_id, c.class_type) for c in width] == [("5", "EmptyLatentImage")]

    def test_frame_rate_alias(self):
        from comfy_compiler.mapping import find_field_candidates
        from comfy_compiler.schema import NodeTypeSchema

        graph = _graph({"1": {"class_type": "CreateVideo", "inputs": {"frame_rate": 16}}})
        candidates = find_field_candidates("fps", graph, NodeTypeSchema.empty())

        assert [c.input_key for c in candidates] == ["frame_rate"]

    def test_noise_path_fields_need_their_placeholder(self):
        from comfy_compiler.mapping import find_field_candidates
        from comfy_compiler.schema import NodeTypeSchema

        graph = _graph(
            {
                "1": {"class_type": "UNETLoader", "inputs": {"unet_name": "{{highnoise_unet_name}}"}},
                "2": {"class_type": "UNETLoader", "inputs": {"unet_name": "{{lownoise_unet_name}}"}},
            }
        )
        schema = NodeTypeSchema.empty()

        assert [c.node_id for c in find_field_candidates("highnoise_unet_name", graph, schema)] == [
            "1"
        ]
        assert [c.node_id for c in find_field_candidates("lownoise_unet_name", graph, schema)] == [
            "2"
        ]

    def test_image_fallback_to_enum_input(self, schema):
        """Custom image loaders are found by IMAGE output plus a file choice."""
        from comfy_compiler.mapping import find_field_candidates

        graph = _graph(
            {"1": {"class_type": "LoadImageFromFolder", "inputs": {"file": "a.png"}}}, schema
        )
        candidates = find_field_candidates("image", graph, schema)

        assert [(c.node_id, c.input_key) for c in candidates] == [("1", "file")]


class TestMappingState:
    """Test the mapping state and template writing."""

    def test_analyze_txt2img(self, txt2img_graph, schema):
        from comfy_compiler.mapping import analyze_field_mappings
        from comfy_compiler.templates import WorkflowCategory

        state = analyze_field_mappings(txt2img_graph, WorkflowCategory.TEXT_TO_IMAGE, schema)

        assert state.all_fields_mapped
        assert state.unmapped_fields == []
        assert state.field_mappings[0].field.field_key == "positive_text"
        assert state.field_mappings[0].required
        assert state.get("negative_text").selected_candidate.node_id == "7"
        assert state.get("lora_name").selected_index == -1
        assert not state.get("lora_name").required

    def test_unmapped_required_field(self, schema):
        from comfy_compiler.mapping import analyze_field_mappings
        from comfy_compiler.templates import WorkflowCategory

        graph = _graph({"1": {"class_type": "CheckpointLoaderSimple", "inputs": {}}}, schema)
        state = analyze_field_mappings(graph, WorkflowCategory.IMAGE_INPAINTING, schema)

        assert not state.all_fields_mapped
        assert [f.field_key for f in state.unmapped_fields] == ["positive_text", "image"]

    def test_select_and_clear(self, txt2img_graph, schema):
        from comfy_compiler.exceptions import InvalidParameterError
        from comfy_compiler.mapping import analyze_field_mappings
        from comfy_compiler.templates import WorkflowCategory

        state = analyze_field_mappings(txt2img_graph, WorkflowCategory.TEXT_TO_IMAGE, schema)
        cleared = state.get("steps").clear_selection()

        assert cleared.needs_remapping
        assert not cleared.is_mapped
        assert cleared.select(0).is_mapped
        with pytest.raises(InvalidParameterError):
            cleared.select(5)

        unselected = state.select("positive_text", -1)
        assert not unselected.all_fields_mapped
        assert state.all_fields_mapped

    def test_json_round_trip(self, txt2img_graph, schema):
        from comfy_compiler.mapping import WorkflowMappingState, analyze_field_mappings
        from comfy_compiler.templates import WorkflowCategory

        state = analyze_field_mappings(txt2img_graph, WorkflowCategory.TEXT_TO_IMAGE, schema)

        assert WorkflowMappingState.from_json(state.to_json()) == state

    def test_from_json_invalid(self):
        from comfy_compiler.exceptions import InvalidParameterError
        from comfy_compiler.mapping import WorkflowMappingState

        with pytest.raises(InvalidParameterError):
            WorkflowMappingState.from_json('{"workflowType": "nope", "fieldMappings": []}')
        with pytest.raises(InvalidParameterError):
            WorkflowMappingState.from_json("[")

    def test_apply_field_mappings(self, txt2img_graph, schema):
        from comfy_compiler.mapping import analyze_field_mappings, apply_field_mappings
        from comfy_compiler.templates import WorkflowCategory

        state = analyze_field_mappings(txt2img_graph, WorkflowCategory.TEXT_TO_IMAGE, schema)
        template = apply_field_mappings(txt2img_graph, state)

        assert template.get("6").literal("text") == "{{positive_prompt}}"
        assert template.get("7").literal("text") == "{{negative_prompt}}"
        assert template.get("3").literal("steps") == "{{steps}}"
        assert template.get("4").literal("ckpt_name") == "{{ckpt_name}}"
        assert txt2img_graph.get("6").literal("text") == "a cat"

    def test_apply_skips_unknown_nodes_and_inputs(self, txt2img_graph):
        from comfy_compiler.mapping import apply_field_mappings

        template = apply_field_mappings(
            txt2img_graph, {"steps": ("404", "steps"), "cfg": ("3", "no_such_input")}
        )

        assert template.get("3").literal("steps") == 20
        assert "no_such_input" not in template.get("3").inputs

    def test_apply_replaces_connected_prompt(self, schema):
        """A prompt fed by another node becomes the placeholder literal."""
        from comfy_compiler.graph import Connection
        from comfy_compiler.mapping import analyze_field_mappings, apply_field_mappings
        from comfy_compiler.templates import WorkflowCategory

        graph = _graph(
            {
                "1": {"class_type": "StringJoin", "inputs": {"separator": " "}},
                "4": {"class_type": "CheckpointLoaderSimple", "inputs": {"ckpt_name": "m"}},
                "6": {"class_type": "CLIPTextEncode", "inputs": {"text": ["1", 0], "clip": ["4", 1]}},
                "3": {"class_type": "KSampler", "inputs": {"positive": ["6", 0], "steps": 20}},
            },
            schema,
        )
        state = analyze_field_mappings(graph, WorkflowCategory.TEXT_TO_IMAGE, schema)
        template = apply_field_mappings(graph, state)

        assert state.get("positive_text").selected_candidate.node_id == "6"
        assert template.get("6").literal("text") == "{{positive_prompt}}"
        assert graph.get("6").inputs["text"] == Connection("1", 0)
