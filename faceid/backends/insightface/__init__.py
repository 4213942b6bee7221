"""InsightFace backend for face identification.

Components:
- SCRFDDetector: Face detection using SCRFD model
- ArcFaceEmbedder: 512-D face embeddings using ArcFace
"""

from faceid.backends.insightface.detector import SCRFDDetector
from faceid.backends.insightface.embedder import ArcFaceEmbedder

__all__ = [
    "SCRFDDetector",
    "ArcFaceEmbedder",
]
