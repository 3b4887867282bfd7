"""
Shared fixtures: a small object_info document and a text-to-image workflow.
"""

import copy

import pytest

OBJECT_INFO = {
    "CheckpointLoaderSimple": {
        "input": {"required": {"ckpt_name": [["model.safetensors", "other.safetensors"]]}},
        "output": ["MODEL", "CLIP", "VAE"],
        "output_name": ["MODEL", "CLIP", "VAE"],
        "category": "loaders",
    },
    "UNETLoader": {
        "input": {
            "required": {
                "unet_name": [["high.safetensors", "low.safetensors"]],
                "weight_dtype": [["default", "fp8_e4m3fn"]],
            }
        },
        "output": ["MODEL"],
    },
    "CLIPTextEncode": {
        "input": {
            "required": {
                "text": ["STRING", {"multiline": True}],
                "clip": ["CLIP"],
            }
        },
        "output": ["CONDITIONING"],
    },
    "KSampler": {
        "input": {
            "required": {
                "model": ["MODEL"],
                "seed": ["INT", {"default": 0, "min": 0, "max": 2**64 - 1}],
                "steps": ["INT", {"default": 20, "min": 1, "max": 10000}],
                "cfg": ["FLOAT", {"default": 8.0, "min": 0.0, "max": 100.0, "step": 0.1}],
                "sampler_name": [["euler", "dpmpp_2m"]],
                "scheduler": [["normal", "karras"]],
                "positive": ["CONDITIONING"],
                "negative": ["CONDITIONING"],
                "latent_image": ["LATENT"],
                "denoise": ["FLOAT", {"default": 1.0, "min": 0.0, "max": 1.0}],
            }
        },
        "output": ["LATENT"],
    },
    "KSamplerAdvanced": {
        "input": {
            "required": {
                "model": ["MODEL"],
                "noise_seed": ["INT", {"default": 0}],
                "steps": ["INT", {"default": 20}],
                "start_at_step": ["INT", {"default": 0}],
                "positive": ["CONDITIONING"],
                "negative": ["CONDITIONING"],
                "latent_image": ["LATENT"],
            }
        },
        "output": ["LATENT"],
    },
    "EmptyLatentImage": {
        "input": {
            "required": {
                "width": ["INT", {"default": 512}],
                "height": ["INT", {"default": 512}],
                "batch_size": ["INT", {"default": 1}],
            }
        },
        "output": ["LATENT"],
    },
    "VAEDecode": {
        "input": {"required": {"samples": ["LATENT"], "vae": ["VAE"]}},
        "output": ["IMAGE"],
    },
    "SaveImage": {
        "input": {
            "required": {
                "images": ["IMAGE"],
                "filename_prefix": ["STRING", {"default": "ComfyUI"}],
            }
        },
        "output": [],
    },
    "LoadImage": {
        "input": {"required": {"image": [["photo.png", "cat.png"], {"image_upload": True}]}},
        "output": ["IMAGE", "MASK"],
    },
    "LoadImageFromFolder": {
        "input": {"required": {"file": ["COMBO", {"options": ["a.png", "b.png"]}]}},
        "output": ["IMAGE"],
    },
    "LoraLoaderModelOnly": {
        "input": {
            "required": {
                "model": ["MODEL"],
                "lora_name": [["detail.safetensors", "style.safetensors"]],
                "strength_model": ["FLOAT", {"default": 1.0}],
            }
        },
        "output": ["MODEL"],
    },
    "ModelSamplingSD3": {
        "input": {"required": {"model": ["MODEL"], "shift": ["FLOAT", {"default": 8.0}]}},
        "output": ["MODEL"],
    },
    "ConditioningConcat": {
        "input": {
            "required": {
                "conditioning_to": ["CONDITIONING"],
                "conditioning_from": ["CONDITIONING"],
            }
        },
        "output": ["CONDITIONING"],
    },
    "StringJoin": {
        "input": {
            "required": {"a": ["STRING", {"forceInput": True}]},
            "optional": {"separator": ["STRING", {"default": " "}]},
        },
        "output": ["STRING"],
    },
}

TXT2IMG_WORKFLOW = {
    "3": {
        "class_type": "KSampler",
        "inputs": {
            "seed": 1,
            "steps": 20,
            "cfg": 7.0,
            "sampler_name": "euler",
            "scheduler": "normal",
            "denoise": 1.0,
            "model": ["4", 0],
            "positive": ["6", 0],
            "negative": ["7", 0],
            "latent_image": ["5", 0],
        },
    },
    "4": {"class_type": "CheckpointLoaderSimple", "inputs": {"ckpt_name": "model.safetensors"}},
    "5": {
        "class_type": "EmptyLatentImage",
        "inputs": {"width": 512, "height": 512, "batch_size": 1},
    },
    "6": {"class_type": "CLIPTextEncode", "inputs": {"text": "a cat", "clip": ["4", 1]}},
    "7": {"class_type": "CLIPTextEncode", "inputs": {"text": "blurry", "clip": ["4", 1]}},
    "8": {"class_type": "VAEDecode", "inputs": {"samples": ["3", 0], "vae": ["4", 2]}},
    "9": {
        "class_type": "SaveImage",
        "inputs": {"filename_prefix": "ComfyUI", "images": ["8", 0]},
    },
}


@pytest.fixture
def object_info():
    return copy.deepcopy(OBJECT_INFO)


@pytest.fixture
def schema(object_info):
    from comfy_compiler.schema import NodeTypeSchema

    return NodeTypeSchema.from_object_info(object_info)


@pytest.fixture
def txt2img_workflow():
    return copy.deepcopy(TXT2IMG_WORKFLOW)


@pytest.fixture
def txt2img_graph(txt2img_workflow, schema):
    from comfy_compiler.graph import parse_workflow

    return parse_workflow(txt2img_workflow, schema)
