"""
Gesture recognition models.

Provides:
    - SensorFeatureExtractor: IMU sequence → 51-feature statistical vector
    - DTWMatcher / TemplateStore: nearest-exemplar matching over raw sequences
    - SoftmaxModel: trainable multinomial classifier over features
    - predict_nearest_neighbor: distance-weighted feature-space baseline
"""

from models.dtw_matcher import DTWMatcher, TemplateStore
from models.feature_extractor import SensorFeatureExtractor
from models.nearest_neighbor import predict_nearest_neighbor
from models.softmax_classifier import SoftmaxModel

__all__ = [
    "SensorFeatureExtractor",
    "DTWMatcher",
    "TemplateStore",
    "SoftmaxModel",
    "predict_nearest_neighbor",
]
