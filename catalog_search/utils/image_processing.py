"""
In-process embedding generation.
Text embeddings come from Sentence-Transformers, image embeddings from Open-CLIP.
Models are lazy loaded on first use so importing this module stays cheap.
"""

import base64
import io
import logging
from typing import List

import requests
from PIL import Image

from catalog_search.utils.result_normalizer import resolve_storage_uri

logger = logging.getLogger(__name__)

# Initialize models as None - will be lazy loaded
_clip_model = None
_preprocess = None
_text_model = None
_device = None


def get_device():
    """Get the compute device (cuda or cpu)"""
    global _device
    if _device is None:
        import torch
        _device = "cuda" if torch.cuda.is_available() else "cpu"
        logger.info(f"[Image Processing] Using device: {_device}")
    return _device


def get_clip_model():
    """Lazy load Open-CLIP model for visual embedding"""
    global _clip_model, _preprocess

    if _clip_model is None:
        import open_clip
        logger.info("[Image Processing] Loading Open-CLIP model...")
        _clip_model, _, _preprocess = open_clip.create_model_and_transforms(
            'ViT-B-32',
            pretrained='laion2b_s34b_b79k'
        )
        _clip_model = _clip_model.to(get_device())
        _clip_model.eval()
        logger.info("[Image Processing] Open-CLIP model loaded successfully")

    return _clip_model, _preprocess


def get_text_model():
    """Lazy load Sentence-Transformers model for text embeddings"""
    global _text_model

    if _text_model is None:
        from sentence_transformers import SentenceTransformer
        logger.info("[Image Processing] Loading Sentence-Transformers model...")
        _text_model = SentenceTransformer('all-MiniLM-L6-v2')
        logger.info("[Image Processing] Sentence-Transformers model loaded successfully")

    return _text_model


def download_image(uri: str) -> Image.Image:
    """Load an image from a Data URL, storage URI or HTTP(S) URL"""
    if uri.startswith('data:image'):
        # Format: data:image/[format];base64,[data]
        try:
            _, encoded = uri.split(',', 1)
            image = Image.open(io.BytesIO(base64.b64decode(encoded)))
        except Exception as e:
            raise ValueError(f"Failed to decode Data URL: {str(e)}")
    else:
        url = resolve_storage_uri(uri)
        logger.info(f"[Image Processing] Downloading image from: {url[:80]}")
        response = requests.get(url, timeout=30)
        if response.status_code != 200:
            raise ValueError(f"Failed to download image from {url}, status code: {response.status_code}")
        image = Image.open(io.BytesIO(response.content))

    if image.mode != 'RGB':
        image = image.convert('RGB')
    return image


def fit_dimension(embedding: List[float], dimension: int) -> List[float]:
    """Zero-pad or truncate so the vector matches the column dimension"""
    if len(embedding) < dimension:
        embedding = embedding + [0.0] * (dimension - len(embedding))
    return embedding[:dimension]


def generate_visual_embedding(image: Image.Image) -> List[float]:
    """Generate a normalized Open-CLIP visual embedding for an image"""
    import torch

    clip_model, preprocess = get_clip_model()
    image_input = preprocess(image).unsqueeze(0).to(get_device())

    with torch.no_grad():
        embedding = clip_model.encode_image(image_input)
        embedding /= embedding.norm(dim=-1, keepdim=True)
        embedding = embedding.cpu().numpy().flatten()

    logger.debug(f"[Image Processing] Visual embedding generated: dimension {len(embedding)}")
    return embedding.tolist()


def generate_text_embedding(text: str) -> List[float]:
    """Generate a Sentence-Transformers text embedding"""
    if not text or text.strip() == "":
        raise ValueError("Cannot embed empty text")

    text_model = get_text_model()
    embedding = text_model.encode(text, convert_to_numpy=True, normalize_embeddings=True)

    logger.debug(f"[Image Processing] Text embedding generated: dimension {len(embedding)}")
    return embedding.tolist()


def embed_image_uri(uri: str) -> List[float]:
    return generate_visual_embedding(download_image(uri))
