from services.quality.quality_assessor import QualityAssessor, default_quality_metrics
from services.quality.image_metrics import DecodedImage, decode_image

__all__ = ["QualityAssessor", "default_quality_metrics", "DecodedImage", "decode_image"]
