from .registry import MODEL_REGISTRY, get_model, instantiate_model
from .regressor import SweRegressor

__all__ = ["MODEL_REGISTRY", "SweRegressor", "get_model", "instantiate_model"]
