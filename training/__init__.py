"""
Training package for the softmax gesture classifier.

Provides:
    - GestureDataset: immutable dataset of labelled feature vectors
    - train.py: standalone training CLI
    - evaluate.py: held-out split evaluation and its CLI
"""
